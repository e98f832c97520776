"""In-process cache provider with per-entry expiry."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import timedelta

from corekit.cache import ProviderNoSuchKeyError


@dataclass(frozen=True)
class Entry:
    """A stored value and the monotonic time after which it is stale."""

    value: bytes
    expires_at: float


def _seconds(ttl: timedelta | float) -> float:
    return ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)


class MemoryProvider:
    """Keeps cache entries in a dictionary guarded by a lock."""

    def __init__(self) -> None:
        self._storage: dict[str, Entry] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _key(group: str, key: str) -> str:
        return f"{group}:{key}"

    def has(self, group: str, key: str) -> bool:
        with self._lock:
            return self._key(group, key) in self._storage

    def get(self, group: str, key: str) -> bytes:
        """Return the stored bytes; expired entries are dropped and reported missing."""
        group_key = self._key(group, key)
        with self._lock:
            entry = self._storage.get(group_key)
            if entry is None:
                raise ProviderNoSuchKeyError(f"no key found: {group_key}")
            if time.monotonic() > entry.expires_at:
                del self._storage[group_key]
                raise ProviderNoSuchKeyError(f"no key found: {group_key}")
            return entry.value

    def set(self, group: str, key: str, value: bytes, ttl: timedelta | float) -> None:
        entry = Entry(bytes(value), time.monotonic() + _seconds(ttl))
        with self._lock:
            self._storage[self._key(group, key)] = entry