"""Data model of a flow: actions, their responses, drivers and result parsing."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import yaml


class FlowError(Exception):
    """Base error for flows."""

    default_message = "flow error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class NoScriptDriverError(FlowError):
    default_message = "no script driver"


class ActionNoOptionsError(FlowError):
    default_message = "no options provided"


class ActionTooManyOptionsError(FlowError):
    default_message = "too many options provided"


class ActionArgsTooManyOptionsError(FlowError):
    default_message = "too many options for action args provided"


class ActionEnvTooManyOptionsError(FlowError):
    default_message = "too many options for action env provided"


class CommandFailedError(FlowError):
    default_message = "command failed"


class AsMapStringStringError(FlowError):
    default_message = "asMapStringString"


class UnmarshalResultObjectError(FlowError):
    default_message = "unmarshal result object failed"


@dataclass(frozen=True)
class Action:
    """One step of a flow: a command, an inline script or a script file.

    The ``with_*`` methods return a modified copy.
    """

    name: str
    command: str = ""
    work_dir: str = ""
    env: dict[str, str] = field(default_factory=dict)
    env_template: str = ""
    env_script: str = ""
    args: list[str] = field(default_factory=list)
    args_template: str = ""
    args_script: str = ""
    fail_if_non_zero_code: bool | None = None
    stdout: str = ""
    stderr: str = ""
    script_file: str = ""
    script: str = ""
    when: str = ""

    def _replace(self, **changes: Any) -> Action:
        return dataclasses.replace(self, **changes)

    def with_command(self, cmd: str, *args: str) -> Action:
        return self._replace(command=cmd, args=list(args))

    def with_work_dir(self, directory: str) -> Action:
        return self._replace(work_dir=directory)

    def with_envs(self, env: Mapping[str, str]) -> Action:
        return self._replace(env=dict(env))

    def with_env(self, key: str, value: str) -> Action:
        return self._replace(env={**self.env, key: value})

    def with_env_template(self, template: str) -> Action:
        return self._replace(env_template=template)

    def with_env_script(self, script: str) -> Action:
        return self._replace(env_script=script)

    def with_args(self, *args: str) -> Action:
        return self._replace(args=list(args))

    def with_args_template(self, template: str) -> Action:
        return self._replace(args_template=template)

    def with_args_script(self, script: str) -> Action:
        return self._replace(args_script=script)

    def with_fail_if_non_zero_code(self, fail: bool) -> Action:
        return self._replace(fail_if_non_zero_code=fail)

    def with_stdout(self, stdout: str) -> Action:
        return self._replace(stdout=stdout)

    def with_stderr(self, stderr: str) -> Action:
        return self._replace(stderr=stderr)

    def with_script(self, script: str) -> Action:
        return self._replace(script=script)

    def with_script_file(self, file: str) -> Action:
        return self._replace(script_file=file)

    def with_when(self, when: str) -> Action:
        return self._replace(when=when)


def _to_int32(value: int) -> int:
    return ((int(value) + 2**31) % 2**32) - 2**31


@dataclass
class ActionResponse:
    """Outcome of one action; the ``with_*`` methods update it in place."""

    error_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration: int = 0
    skipped: bool = False
    result: str = ""

    def with_exit_code(self, exit_code: int) -> ActionResponse:
        self.error_code = exit_code
        return self

    def with_stdout(self, stdout: str) -> ActionResponse:
        self.stdout = stdout
        return self

    def with_stderr(self, stderr: str) -> ActionResponse:
        self.stderr = stderr
        return self

    def with_duration(self, millis: int) -> ActionResponse:
        """Set the duration in milliseconds, stored as a 32-bit value."""
        self.duration = _to_int32(millis)
        return self

    def with_skipped(self, skipped: bool) -> ActionResponse:
        self.skipped = skipped
        return self

    def with_result(self, result: str) -> ActionResponse:
        self.result = result
        return self


_STRING_FIELDS = (
    "name",
    "command",
    "work_dir",
    "env_template",
    "env_script",
    "args_template",
    "args_script",
    "stdout",
    "stderr",
    "script_file",
    "script",
    "when",
)


def _scalar_text(value: Any, what: str) -> str:
    if isinstance(value, (Mapping, list, tuple)):
        raise FlowError(f"{what}: expected a string, got {type(value).__name__}")
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _action_from_dict(data: Any, index: int) -> Action:
    if not isinstance(data, Mapping):
        raise FlowError(f"action at index {index}: expected a mapping")
    kwargs: dict[str, Any] = {
        key: _scalar_text(data[key], f"action at index {index} field {key}")
        for key in _STRING_FIELDS
        if key in data
    }
    kwargs.setdefault("name", "")
    env = data.get("env")
    if env is not None:
        if not isinstance(env, Mapping):
            raise FlowError(f"action at index {index} field env: expected a mapping")
        kwargs["env"] = {
            str(key): _scalar_text(value, f"action at index {index} env {key}")
            for key, value in env.items()
        }
    args = data.get("args")
    if args is not None:
        if not isinstance(args, list):
            raise FlowError(f"action at index {index} field args: expected a list")
        kwargs["args"] = [_scalar_text(arg, f"action at index {index} arg") for arg in args]
    fail = data.get("fail_if_non_zero_code")
    if fail is not None:
        if not isinstance(fail, bool):
            raise FlowError(f"action at index {index} field fail_if_non_zero_code: expected a bool")
        kwargs["fail_if_non_zero_code"] = fail
    return Action(**kwargs)


@dataclass
class FlowConfig:
    """The ordered list of actions a flow runs."""

    actions: list[Action] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> FlowConfig:
        """Build a config from a parsed YAML or JSON document."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise FlowError("flow config: expected a mapping")
        actions = data.get("actions") or []
        if not isinstance(actions, list):
            raise FlowError("flow config field actions: expected a list")
        return cls([_action_from_dict(item, index) for index, item in enumerate(actions)])


@dataclass
class FlowEnv:
    """Working directory and template/script context of one flow run."""

    work_dir: str = ""
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class FlowResult:
    """Responses of all actions of a run, keyed by action name."""

    actions_responses: dict[str, ActionResponse] = field(default_factory=dict)


@runtime_checkable
class TemplateDriver(Protocol):
    def execute(self, env: FlowEnv, name: str, source: str) -> str: ...


@runtime_checkable
class ScriptDriver(Protocol):
    def execute(self, env: FlowEnv, name: str, script: str) -> Any: ...

    def value_to_string(self, value: Any) -> str: ...

    def value_to_bool(self, value: Any) -> bool: ...

    def value_to_string_slice(self, value: Any) -> list[str]: ...

    def value_to_map_string_string(self, value: Any) -> dict[str, str]: ...

    def any_to_value(self, value: Any) -> Any: ...

    def new_error(self, err: BaseException) -> Any: ...

    def throw(self, err: BaseException) -> None: ...


def as_map_string_string(obj: Mapping[str, Any]) -> dict[str, str]:
    """Return ``obj`` as a string-to-string mapping; every value must be a string."""
    result: dict[str, str] = {}
    for key, value in obj.items():
        if not isinstance(value, str):
            raise AsMapStringStringError(
                f"asMapStringString: json object key {key} is not a string"
            )
        result[key] = value
    return result


def unmarshal_template_result_slice(result: str) -> list[str]:
    """Read a template result as a list of strings.

    A YAML flow sequence gives its items, a quoted string gives one item,
    anything else is taken as one literal item. Surrounding space is dropped.
    """
    result = result.strip()
    if result.startswith("["):
        try:
            parsed = yaml.load(result, Loader=yaml.BaseLoader)
        except yaml.YAMLError as err:
            raise FlowError(f"unmarshalling result as slice of strings: {err}") from err
        if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
            raise FlowError("unmarshalling result as slice of strings: not a list of strings")
        return parsed
    if result.startswith('"'):
        try:
            parsed = yaml.load(result, Loader=yaml.BaseLoader)
        except yaml.YAMLError as err:
            raise FlowError(f"unmarshalling result as string: {err}") from err
        if not isinstance(parsed, str):
            raise FlowError("unmarshalling result as string: not a string")
        return [parsed]
    return [result]


def unmarshal_template_result_object(result: str) -> dict[str, Any]:
    """Read a template result that must be a YAML flow mapping."""
    result = result.strip()
    if not result.startswith("{"):
        raise UnmarshalResultObjectError()
    try:
        parsed = yaml.safe_load(result)
    except yaml.YAMLError as err:
        raise FlowError(f"unmarshalling result as object: {err}") from err
    if not isinstance(parsed, dict) or not all(isinstance(key, str) for key in parsed):
        raise FlowError("unmarshalling result as object: not an object with string keys")
    return parsed