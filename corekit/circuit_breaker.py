"""Circuit breaker that stops calling a failing dependency for a while."""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, TypeVar, Union

DEFAULT_CONSECUTIVE_FAILURES = 5
_DEFAULT_TIMEOUT = 60.0

T = TypeVar("T")
Duration = Union[timedelta, float]

_log = logging.getLogger("corekit.circuit_breaker")


class OpenStateError(RuntimeError):
    """Raised when a call is refused because the breaker is open."""

    def __init__(self, message: str = "circuit breaker is open") -> None:
        super().__init__(message)


class TooManyRequestsError(RuntimeError):
    """Raised when the half-open breaker already has its quota of trial calls."""

    def __init__(self, message: str = "too many requests") -> None:
        super().__init__(message)


class UnexpectedTypeError(TypeError):
    """The breaker returned a value that is not of the expected type."""

    def __init__(self, result: Any, fallback: Any) -> None:
        super().__init__(
            f"circuit breaker returned unexpected type: {type(result).__name__}"
        )
        self.result = result
        self.fallback = fallback


class BreakerState(enum.Enum):
    CLOSED = "closed"
    HALF_OPEN = "half-open"
    OPEN = "open"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Breaker settings; durations are seconds or timedeltas.

    ``max_requests`` of 0 means 1, ``timeout`` of 0 means 60 seconds,
    ``interval`` of 0 never resets the counters in the closed state,
    ``consecutive_failures`` of 0 means the default threshold, and a positive
    ``bucket_period`` switches to a rolling window over ``interval``.
    """

    enabled: bool = False
    name: str = ""
    max_requests: int = 0
    interval: Duration = 0.0
    timeout: Duration = 0.0
    consecutive_failures: int = 0
    bucket_period: Duration = 0.0


def _seconds(value: Duration) -> float:
    return value.total_seconds() if isinstance(value, timedelta) else float(value)


@dataclass
class _Counts:
    requests: int = 0
    total_successes: int = 0
    total_failures: int = 0
    consecutive_successes: int = 0
    consecutive_failures: int = 0


@dataclass
class _Bucket:
    start: float
    requests: int = 0
    successes: int = 0
    failures: int = 0


class PassthroughBreaker:
    """A breaker that never trips: every call goes straight through."""

    def execute(self, fn: Callable[[], Any]) -> None:
        fn()

    def execute_with_result(self, fn: Callable[[], T]) -> T:
        return fn()


class CircuitBreaker:
    """Counts consecutive failures and refuses calls while open."""

    def __init__(
        self,
        config: CircuitBreakerConfig,
        should_ignore_error: Callable[[BaseException], bool] | None = None,
    ) -> None:
        self.name = config.name
        self._max_requests = config.max_requests if config.max_requests > 0 else 1
        self._interval = max(_seconds(config.interval), 0.0)
        timeout = _seconds(config.timeout)
        self._timeout = timeout if timeout > 0 else _DEFAULT_TIMEOUT
        bucket_period = _seconds(config.bucket_period)
        self._rolling = bucket_period > 0 and self._interval > 0
        self._bucket_period = bucket_period if self._rolling else 0.0
        self._threshold = config.consecutive_failures or DEFAULT_CONSECUTIVE_FAILURES
        self._should_ignore_error = should_ignore_error

        self._lock = threading.Lock()
        self._state = BreakerState.CLOSED
        self._generation = 0
        self._counts = _Counts()
        self._buckets: deque[_Bucket] = deque()
        self._expiry: float | None = None
        self._new_generation(time.monotonic())

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._current_state(time.monotonic())

    def execute(self, fn: Callable[[], Any]) -> None:
        """Call ``fn`` through the breaker; its exceptions propagate unchanged."""
        self.execute_with_result(fn)

    def execute_with_result(self, fn: Callable[[], T]) -> T:
        """Call ``fn`` through the breaker and return what it returns."""
        generation = self._before_request()
        try:
            result = fn()
        except BaseException as err:
            self._after_request(generation, self._is_successful(err))
            raise
        self._after_request(generation, True)
        return result

    def _is_successful(self, err: BaseException) -> bool:
        return (
            isinstance(err, Exception)
            and self._should_ignore_error is not None
            and bool(self._should_ignore_error(err))
        )

    def _before_request(self) -> int:
        with self._lock:
            now = time.monotonic()
            state = self._current_state(now)
            if state is BreakerState.OPEN:
                raise OpenStateError()
            if state is BreakerState.HALF_OPEN and self._counts.requests >= self._max_requests:
                raise TooManyRequestsError()
            self._counts.requests += 1
            if self._rolling:
                self._bucket(now).requests += 1
            return self._generation

    def _after_request(self, generation: int, success: bool) -> None:
        with self._lock:
            now = time.monotonic()
            state = self._current_state(now)
            if generation != self._generation:
                return
            if success:
                self._on_success(state, now)
            else:
                self._on_failure(state, now)

    def _on_success(self, state: BreakerState, now: float) -> None:
        counts = self._counts
        counts.total_successes += 1
        counts.consecutive_successes += 1
        counts.consecutive_failures = 0
        if self._rolling:
            self._bucket(now).successes += 1
        if state is BreakerState.HALF_OPEN and counts.consecutive_successes >= self._max_requests:
            self._set_state(BreakerState.CLOSED, now)

    def _on_failure(self, state: BreakerState, now: float) -> None:
        if state is BreakerState.HALF_OPEN:
            self._set_state(BreakerState.OPEN, now)
            return
        if state is BreakerState.CLOSED:
            counts = self._counts
            counts.total_failures += 1
            counts.consecutive_failures += 1
            counts.consecutive_successes = 0
            if self._rolling:
                self._bucket(now).failures += 1
            if counts.consecutive_failures >= self._threshold:
                self._set_state(BreakerState.OPEN, now)

    def _current_state(self, now: float) -> BreakerState:
        if self._state is BreakerState.CLOSED:
            if self._rolling:
                self._evict(now)
            elif self._expiry is not None and self._expiry <= now:
                self._new_generation(now)
        elif self._state is BreakerState.OPEN:
            if self._expiry is not None and self._expiry <= now:
                self._set_state(BreakerState.HALF_OPEN, now)
        return self._state

    def _set_state(self, state: BreakerState, now: float) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        self._new_generation(now)
        _log.warning(
            "circuit breaker state changed: %s -> %s",
            previous,
            state,
            extra={"name": self.name, "from": str(previous), "to": str(state)},
        )

    def _new_generation(self, now: float) -> None:
        self._generation += 1
        self._counts = _Counts()
        self._buckets.clear()
        if self._state is BreakerState.CLOSED:
            self._expiry = now + self._interval if self._interval > 0 and not self._rolling else None
        elif self._state is BreakerState.OPEN:
            self._expiry = now + self._timeout
        else:
            self._expiry = None

    def _bucket(self, now: float) -> _Bucket:
        self._evict(now)
        if not self._buckets or now >= self._buckets[-1].start + self._bucket_period:
            self._buckets.append(_Bucket(start=now))
        return self._buckets[-1]

    def _evict(self, now: float) -> None:
        window_start = now - self._interval
        while self._buckets and self._buckets[0].start + self._bucket_period <= window_start:
            old = self._buckets.popleft()
            self._counts.requests -= old.requests
            self._counts.total_successes -= old.successes
            self._counts.total_failures -= old.failures


def new_circuit_breaker(
    config: CircuitBreakerConfig,
    should_ignore_error: Callable[[BaseException], bool] | None = None,
) -> CircuitBreaker | PassthroughBreaker:
    """Build a breaker, or a pass-through one when the config disables it.

    ``should_ignore_error`` marks errors that must not count as failures.
    """
    if not config.enabled:
        return PassthroughBreaker()
    return CircuitBreaker(config, should_ignore_error)


def execute(circuit_breaker: Any, fn: Callable[[], Any]) -> None:
    """Run ``fn`` through ``circuit_breaker``, or directly when it is ``None``."""
    if circuit_breaker is not None:
        circuit_breaker.execute(fn)
        return
    fn()


def execute_with_result(
    circuit_breaker: Any,
    fn: Callable[[], T],
    fallback: T | None = None,
    expected_type: type | tuple[type, ...] | None = None,
) -> T:
    """Run ``fn`` through the breaker and return its result.

    When ``expected_type`` is given and the breaker hands back something else,
    :class:`UnexpectedTypeError` is raised carrying ``fallback``.
    """
    if circuit_breaker is None:
        return fn()
    result = circuit_breaker.execute_with_result(fn)
    if expected_type is not None and not isinstance(result, expected_type):
        raise UnexpectedTypeError(result, fallback)
    return result