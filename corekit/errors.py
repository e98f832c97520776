"""Errors that carry a machine-readable code, parameters and a cause."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class CodedError(Exception):
    """An exception with a stable code, a message, parameters and an optional cause."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        cause: BaseException | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.params: dict[str, Any] = dict(params or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message

    def _copy(self) -> CodedError:
        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        clone.args = self.args
        clone.params = dict(self.params)
        clone.__cause__ = self.__cause__
        return clone

    def with_param(self, key: str, value: Any) -> CodedError:
        """Return a copy with one more parameter set."""
        clone = self._copy()
        clone.params[key] = value
        return clone

    def with_params(self, params: Mapping[str, Any]) -> CodedError:
        """Return a copy with the given parameters merged in."""
        clone = self._copy()
        clone.params.update(params)
        return clone

    def with_cause(self, cause: BaseException | None) -> CodedError:
        """Return a copy whose cause is the given exception."""
        clone = self._copy()
        clone.cause = cause
        clone.__cause__ = cause
        return clone


def _matches(err: BaseException, target: Any) -> bool:
    if isinstance(target, type):
        return isinstance(err, target)
    if err is target:
        return True
    if isinstance(target, CodedError) and isinstance(err, CodedError):
        return err.code == target.code
    return False


def error_is(err: BaseException | None, target: Any) -> bool:
    """Tell whether ``err`` or anything in its cause chain matches ``target``.

    ``target`` may be an exception class, or an error instance; coded errors
    match when their codes are equal.
    """
    seen: set[int] = set()
    current = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if _matches(current, target):
            return True
        following = current.cause if isinstance(current, CodedError) else None
        current = following if following is not None else current.__cause__
    return False