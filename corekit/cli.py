"""Running external command-line tools and collecting their output."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

_log = logging.getLogger("corekit.cli")


class ExecError(RuntimeError):
    """The command could not be run, or failed."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int = -1,
        stdout: bytes = b"",
        stderr: bytes = b"",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class ExitCodeError(ExecError):
    """The command ran but exited with a non-zero code."""


@dataclass(frozen=True)
class ExecResult:
    exit_code: int
    stdout: bytes
    stderr: bytes


def _environment(env: Mapping[str, str] | None) -> dict[str, str] | None:
    if env is None:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def exec_command(
    args: Sequence[Any],
    *,
    cwd: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
    fail_if_exit_code_not_zero: bool = True,
) -> ExecResult:
    """Run ``args`` and capture its output.

    ``env`` is added on top of the current environment. A command killed by a
    signal reports exit code -1. With ``fail_if_exit_code_not_zero`` a non-zero
    exit raises :class:`ExitCodeError`.
    """
    argv = [os.fspath(arg) for arg in args]
    try:
        completed = subprocess.run(
            argv,
            cwd=cwd,
            env=_environment(env),
            capture_output=True,
            check=False,
        )
    except OSError as err:
        raise ExecError(f"exec command: {err}") from err

    exit_code = completed.returncode if completed.returncode >= 0 else -1
    if fail_if_exit_code_not_zero and exit_code != 0:
        message = f"exit code: {exit_code}"
        if completed.stderr:
            message = f"{message}: {_text(completed.stderr)}"
        raise ExitCodeError(
            message, exit_code=exit_code, stdout=completed.stdout, stderr=completed.stderr
        )
    return ExecResult(exit_code, completed.stdout, completed.stderr)


class Cli:
    """Runs one tool with varying arguments and logs every run."""

    def __init__(self, tool_path: str | os.PathLike[str]) -> None:
        self._tool_path = os.fspath(tool_path)

    @property
    def path(self) -> str:
        return self._tool_path

    def run_command(self, env: Mapping[str, str] | None, *args: str) -> ExecResult:
        """Run the tool with ``args``; raise :class:`ExecError` on any failure."""
        command = shlex.join([self._tool_path, *args])
        started = time.monotonic()

        def fields(success: bool, exit_code: int, stdout: bytes, stderr: bytes) -> dict[str, Any]:
            result: dict[str, Any] = {
                "exit_code": exit_code,
                "success": success,
                "args_count": len(args),
                "execution_time": int((time.monotonic() - started) * 1000),
            }
            if stderr:
                result["stderr"] = _text(stderr)
                result["stderr_len"] = len(stderr)
            if stdout:
                result["stdout_len"] = len(stdout)
            return result

        try:
            result = exec_command([self._tool_path, *args], env=env)
        except ExecError as err:
            _log.error(
                "%s: %s",
                command,
                err,
                extra=fields(False, err.exit_code, err.stdout, err.stderr),
            )
            raise

        _log.debug(command, extra=fields(True, result.exit_code, result.stdout, result.stderr))
        return result