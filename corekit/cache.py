"""A typed cache over a byte-oriented storage provider."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import timedelta
from typing import Any, Generic, Protocol, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class CacheError(Exception):
    """Base error for cache operations."""


class MarshalError(CacheError):
    """A value could not be serialised."""


class UnmarshalError(CacheError):
    """Stored bytes could not be deserialised."""


class ProviderNoSuchKeyError(CacheError, LookupError):
    """The provider has no entry for the key."""


class ProviderGetError(CacheError):
    """Reading a key from the provider failed."""


class ProviderSetError(CacheError):
    """Writing a key to the provider failed."""


class Marshaller(Protocol):
    def marshal(self, value: Any) -> bytes: ...

    def unmarshal(self, value: bytes) -> Any: ...


class Provider(Protocol):
    def has(self, group: str, key: str) -> bool: ...

    def get(self, group: str, key: str) -> bytes: ...

    def set(self, group: str, key: str, value: bytes, ttl: timedelta) -> None: ...


class JsonMarshaller:
    """Serialises values as JSON."""

    def marshal(self, value: Any) -> bytes:
        return json.dumps(value).encode("utf-8")

    def unmarshal(self, value: bytes) -> Any:
        return json.loads(value)


class Cache(Generic[K, V]):
    """Stores values of one group under string keys, with a fixed TTL."""

    def __init__(
        self,
        group: str,
        marshaller: Marshaller,
        provider: Provider,
        default: V,
        ttl: timedelta,
    ) -> None:
        self.group = group
        self.marshaller = marshaller
        self.provider = provider
        self.default = default
        self.ttl = ttl

    def has(self, key: K) -> bool:
        return self.provider.has(self.group, str(key))

    def get(self, key: K) -> V:
        """Return the cached value, or the default when the key is absent."""
        try:
            raw = self.provider.get(self.group, str(key))
        except ProviderNoSuchKeyError:
            return self.default
        except Exception as err:
            raise ProviderGetError(f"reading key from provider: {err}") from err
        try:
            return self.marshaller.unmarshal(raw)
        except Exception as err:
            raise UnmarshalError(f"unmarshalling: {err}") from err

    def set(self, key: K, value: V) -> None:
        try:
            raw = self.marshaller.marshal(value)
        except Exception as err:
            raise MarshalError(f"marshaling: {err}") from err
        try:
            self.provider.set(self.group, str(key), raw, self.ttl)
        except Exception as err:
            raise ProviderSetError(f"writing key to provider: {err}") from err


class CacheProxy(Generic[K, V]):
    """Reads through a cache, filling it from ``getter`` on a miss."""

    def __init__(self, cache: Cache[K, V], getter: Callable[[K], V]) -> None:
        self.cache = cache
        self.getter = getter

    def get(self, key: K) -> V:
        if self.cache.has(key):
            return self.cache.get(key)
        value = self.getter(key)
        self.cache.set(key, value)
        return value