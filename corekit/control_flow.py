"""Cancellation, interrupt handling and orderly shutdown of registered services."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

_log = logging.getLogger("corekit.control_flow")


class ControlFlow:
    """Tracks services to stop on shutdown and a process-wide cancel flag."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._services: dict[str, Callable[[], Any]] = {}
        self._lock = threading.Lock()

    def register_closable_service(self, name: str, closer: Any) -> None:
        """Register an object whose ``close()`` stops it."""
        self.register_shutdown_service(name, closer.close)

    def register_stoppable_service(self, name: str, stoppable: Any) -> None:
        """Register an object whose ``stop()`` stops it."""
        self.register_shutdown_service(name, stoppable.stop)

    def register_shutdown_service(self, name: str, stop: Callable[[], Any]) -> None:
        """Register a callable to run on shutdown; a repeated name replaces the old one."""
        with self._lock:
            self._services[name] = stop

    def services(self) -> list[str]:
        """Return the names of the registered services, sorted."""
        with self._lock:
            return sorted(self._services)

    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def wait_for_interrupt(self) -> bool:
        """Block until cancelled or interrupted with SIGINT.

        Returns ``True`` when an interrupt arrived, which also cancels.
        """
        interrupted = threading.Event()

        def _handler(signum: int, frame: Any) -> None:
            interrupted.set()

        installed = False
        previous: Any = signal.SIG_DFL
        try:
            previous = signal.signal(signal.SIGINT, _handler)
            installed = True
        except ValueError:
            pass

        try:
            while not self._cancelled.is_set() and not interrupted.is_set():
                self._cancelled.wait(0.05)
        finally:
            if installed:
                signal.signal(signal.SIGINT, previous if previous is not None else signal.SIG_DFL)

        if interrupted.is_set():
            _log.info("shutting down, canceling context")
            self.cancel()
            return True
        _log.info("context done, shutting down")
        return False

    @staticmethod
    def _stop_one(name: str, stop: Callable[[], Any]) -> BaseException | None:
        _log.info("Shutting down service %s...", name)
        try:
            stop()
        except Exception as err:
            _log.error("Failed to shutdown service %s: %s", name, err)
            return err
        _log.info("Service %s shut down successfully", name)
        return None

    def shutdown(self) -> dict[str, BaseException]:
        """Stop all services concurrently; return the errors keyed by service name."""
        with self._lock:
            _log.info("Shutting down...")
            failures: dict[str, BaseException] = {}
            if self._services:
                with ThreadPoolExecutor(max_workers=len(self._services)) as pool:
                    futures = {
                        name: pool.submit(self._stop_one, name, stop)
                        for name, stop in self._services.items()
                    }
                    for name, future in futures.items():
                        err = future.result()
                        if err is not None:
                            failures[name] = err
            _log.info("Shutdown complete")
            return failures