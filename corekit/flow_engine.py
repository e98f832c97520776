"""Runs the actions of a flow: commands, inline scripts and script files."""

from __future__ import annotations

import errno
import logging
import os
import posixpath
import time
from pathlib import Path
from typing import Any

from corekit.cli import ExecError, exec_command
from corekit.flow_model import (
    Action,
    ActionArgsTooManyOptionsError,
    ActionEnvTooManyOptionsError,
    ActionNoOptionsError,
    ActionResponse,
    ActionTooManyOptionsError,
    CommandFailedError,
    FlowConfig,
    FlowEnv,
    FlowError,
    FlowResult,
    NoScriptDriverError,
    ScriptDriver,
    TemplateDriver,
    as_map_string_string,
    unmarshal_template_result_object,
    unmarshal_template_result_slice,
)

_log = logging.getLogger("corekit.flow")


class ActionNoNameError(FlowError):
    """An action has an empty name."""

    code = "flow.action_no_name"
    default_message = "action does not contain an action name"


class ActionDuplicateNameError(FlowError):
    """Two actions share a name."""

    code = "flow.action_name_duplicate"
    default_message = "action name is duplicated"


def _format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:.3f}ms"
    return f"{seconds:.3f}s"


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _ensure_dir(directory: str) -> None:
    if os.path.exists(directory) and not os.path.isdir(directory):
        raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), directory)
    os.makedirs(directory, exist_ok=True)


class Flow:
    """Validates and runs the actions of a :class:`FlowConfig` in order."""

    def __init__(
        self,
        config: FlowConfig,
        storage: Any = None,
        template_driver: TemplateDriver | None = None,
        script_driver: ScriptDriver | None = None,
    ) -> None:
        self.config = config
        self.storage = storage
        self.template_driver = template_driver
        self.script_driver = script_driver

    def validate(self) -> None:
        """Check that every action has a name and that names are unique."""
        names: set[str] = set()
        for index, action in enumerate(self.config.actions):
            if not action.name:
                raise ActionNoNameError(f"{ActionNoNameError.default_message}: index {index}")
            if action.name in names:
                raise ActionDuplicateNameError(
                    f"{ActionDuplicateNameError.default_message}: {action.name} at index {index}"
                )
            names.add(action.name)

    def run(self, env: FlowEnv | None = None) -> FlowResult:
        """Run all actions; the first failure stops the run and is raised."""
        env = env if env is not None else FlowEnv()
        result = FlowResult()
        for action in self.config.actions:
            started = time.monotonic()
            try:
                response = self._run_action(env, action)
            except Exception as err:
                elapsed = _format_duration(time.monotonic() - started)
                raise FlowError(f"action '{action.name}' failed in {elapsed}: {err}") from err
            elapsed_seconds = time.monotonic() - started
            _log.debug("Action '%s' executed in %s", action.name, _format_duration(elapsed_seconds))
            result.actions_responses[action.name] = response.with_duration(int(elapsed_seconds * 1000))
        return result

    def _require_script_driver(self) -> ScriptDriver:
        if self.script_driver is None:
            raise NoScriptDriverError()
        return self.script_driver

    def eval_template(self, env: FlowEnv, name: str, source: str) -> str:
        if self.template_driver is None:
            raise FlowError("no template driver")
        return self.template_driver.execute(env, name, source)

    def eval_script(self, env: FlowEnv, name: str, script: str) -> Any:
        return self._require_script_driver().execute(env, name, script)

    def value_to_string(self, value: Any) -> str:
        return self._require_script_driver().value_to_string(value)

    def value_to_bool(self, value: Any) -> bool:
        return self._require_script_driver().value_to_bool(value)

    def value_to_string_slice(self, value: Any) -> list[str]:
        return self._require_script_driver().value_to_string_slice(value)

    def value_to_map_string_string(self, value: Any) -> dict[str, str]:
        return self._require_script_driver().value_to_map_string_string(value)

    def any_to_value(self, value: Any) -> Any:
        return self._require_script_driver().any_to_value(value)

    def new_error(self, err: BaseException) -> Any:
        return self._require_script_driver().new_error(err)

    def throw(self, err: BaseException) -> None:
        self._require_script_driver().throw(err)

    def _template(self, env: FlowEnv, name: str, source: str) -> str:
        if self.template_driver is None:
            return source
        return self.template_driver.execute(env, name, source)

    def _script(self, env: FlowEnv, name: str, source: str) -> Any:
        return self._require_script_driver().execute(env, name, source)

    def _run_action(self, env: FlowEnv, action: Action) -> ActionResponse:
        has_command = bool(action.command)
        has_script = bool(action.script)
        has_script_file = bool(action.script_file)
        options = sum((has_command, has_script, has_script_file))
        if options == 0:
            raise ActionNoOptionsError()
        if options > 1:
            raise ActionTooManyOptionsError()

        try:
            run_it = self._when(env, action)
        except Exception as err:
            raise FlowError(f"when failed: {err}") from err
        if not run_it:
            return ActionResponse().with_skipped(True)

        if has_command:
            return self._run_command(env, action)
        if has_script:
            return self._run_script_code(env, f"action.{action.name}.script", action.script)
        return self._run_script_file(env, action)

    def _when(self, env: FlowEnv, action: Action) -> bool:
        if not action.when:
            return True
        try:
            value = self._script(env, f"action.{action.name}.when", action.when)
        except Exception as err:
            raise FlowError(f"eval js when: {err}") from err
        try:
            return self._require_script_driver().value_to_bool(value)
        except Exception as err:
            raise FlowError(f"jsValue to bool: {err}") from err

    def _templated(self, env: FlowEnv, action: Action, part: str, label: str, source: str) -> str:
        if not source:
            return source
        try:
            return self._template(env, f"action.{action.name}.{part}", source)
        except Exception as err:
            raise FlowError(f"eval template for action '{action.name}' {label}: {err}") from err

    def _run_command(self, env: FlowEnv, action: Action) -> ActionResponse:
        _log.debug("Running action '%s' as command", action.name)
        fail_if_non_zero = True if action.fail_if_non_zero_code is None else action.fail_if_non_zero_code

        command = self._templated(env, action, "command", "command", action.command)
        work_dir = self._templated(env, action, "work_dir", "work dir", action.work_dir) or env.work_dir

        if work_dir:
            try:
                _ensure_dir(work_dir)
            except OSError as err:
                raise FlowError(f"mkdir {work_dir}: {err}") from err

        stdout_path = self._templated(env, action, "stdout", "stdout", action.stdout)
        if stdout_path and not stdout_path.startswith("/"):
            stdout_path = posixpath.join(work_dir, stdout_path)

        stderr_path = self._templated(env, action, "stderr", "stderr", action.stderr)
        if stderr_path and not stderr_path.startswith("/"):
            stderr_path = posixpath.join(work_dir, stderr_path)

        try:
            args = self._action_args(env, action)
        except Exception as err:
            raise FlowError(f"get action '{action.name}' arguments: {err}") from err

        try:
            envs = self._action_env(env, action)
        except Exception as err:
            raise FlowError(f"get action '{action.name}' environment: {err}") from err

        _log.debug("Running command: %s %s", command, " ".join(args))

        try:
            executed = exec_command(
                [command, *args],
                cwd=work_dir or None,
                env=envs,
                fail_if_exit_code_not_zero=False,
            )
        except ExecError as err:
            raise CommandFailedError(
                f"command failed: command '{command}' for action '{action.name}' failed: "
                f"{err}: {_text(err.stderr)}"
            ) from err

        response = (
            ActionResponse()
            .with_exit_code(executed.exit_code)
            .with_stdout(_text(executed.stdout))
            .with_stderr(_text(executed.stderr))
        )

        if stdout_path:
            _log.debug("Writing command '%s' stdout to %s", action.name, stdout_path)
            response.stdout = ""
            try:
                Path(stdout_path).write_bytes(executed.stdout)
            except OSError as err:
                raise FlowError(
                    f"write command stdout '{action.name}' to {stdout_path}: {err}"
                ) from err

        if stderr_path:
            _log.debug("Writing command '%s' stderr to %s", action.name, stderr_path)
            response.stderr = ""
            try:
                Path(stderr_path).write_bytes(executed.stderr)
            except OSError as err:
                raise FlowError(
                    f"write command stderr '{action.name}' to {stderr_path}: {err}"
                ) from err

        if fail_if_non_zero and executed.exit_code != 0:
            raise CommandFailedError(
                f"command failed: command '{command}', action '{action.name}', "
                f"exit code {executed.exit_code}: {_text(executed.stderr)}"
            )

        return response

    def _action_env(self, env: FlowEnv, action: Action) -> dict[str, str]:
        has_env = bool(action.env)
        has_template = bool(action.env_template)
        has_script = bool(action.env_script)
        if sum((has_env, has_template, has_script)) > 1:
            raise ActionEnvTooManyOptionsError()

        if has_env:
            envs: dict[str, str] = {}
            for key, value in action.env.items():
                name = f"action.{action.name}.{key}"
                try:
                    envs[key] = self._template(env, name, value)
                except Exception as err:
                    raise FlowError(f"eval env {name} key {key}: {err}") from err
            return envs

        if has_template:
            name = f"action.{action.name}.env_template"
            try:
                rendered = self._template(env, name, action.env_template)
            except Exception as err:
                raise FlowError(f"eval env template {name}: {err}") from err
            try:
                parsed = unmarshal_template_result_object(rendered)
            except Exception as err:
                raise FlowError(f"unmarshal env template {name}: {err}") from err
            try:
                return as_map_string_string(parsed)
            except Exception as err:
                raise FlowError(f"asMapStringString env for action {action.name}: {err}") from err

        if has_script:
            name = f"action.{action.name}.env_script"
            try:
                value = self._script(env, name, action.env_script)
            except Exception as err:
                raise FlowError(f"eval env script {name}: {err}") from err
            try:
                return dict(self._require_script_driver().value_to_map_string_string(value))
            except Exception as err:
                raise FlowError(f"eval env script {name} result to string: {err}") from err

        return {}

    def _action_args(self, env: FlowEnv, action: Action) -> list[str]:
        has_args = bool(action.args)
        has_template = bool(action.args_template)
        has_script = bool(action.args_script)
        if sum((has_args, has_template, has_script)) > 1:
            raise ActionArgsTooManyOptionsError()

        args: list[str] = []
        if has_args:
            for index, arg in enumerate(action.args):
                name = f"action.{action.name}.{index}"
                try:
                    args.append(self._template(env, name, arg).strip())
                except Exception as err:
                    raise FlowError(f"eval arg {name} index {index}: {err}") from err
        elif has_template:
            name = f"action.{action.name}.args_template"
            try:
                rendered = self._template(env, name, action.args_template)
            except Exception as err:
                raise FlowError(f"eval arg template {name}: {err}") from err
            try:
                args.extend(unmarshal_template_result_slice(rendered))
            except Exception as err:
                raise FlowError(f"unmarshal arg template {name}: {err}") from err
        elif has_script:
            name = f"action.{action.name}.args_script"
            try:
                value = self._script(env, name, action.args_script)
            except Exception as err:
                raise FlowError(f"eval arg script {name}: {err}") from err
            try:
                args.extend(self._require_script_driver().value_to_string_slice(value))
            except Exception as err:
                raise FlowError(f"eval arg script {name} result to string: {err}") from err

        return [arg for arg in args if arg]

    def _run_script_file(self, env: FlowEnv, action: Action) -> ActionResponse:
        try:
            filename = self._template(env, f"action.{action.name}.script_filename", action.script_file)
        except Exception as err:
            raise FlowError(f"eval action script filename {action.name}: {err}") from err

        if filename.startswith("/"):
            try:
                data: Any = Path(filename).read_bytes()
            except OSError as err:
                raise FlowError(f"open {filename}: {err}") from err
        else:
            storage_filename = posixpath.join(env.work_dir, filename)
            if self.storage is None:
                raise FlowError(f"open storage file {storage_filename}: no storage")
            try:
                handle = self.storage.read_file(storage_filename)
            except Exception as err:
                raise FlowError(f"open storage file {storage_filename}: {err}") from err
            try:
                data = handle.read()
            except OSError as err:
                raise FlowError(f"read {filename}: {err}") from err
            finally:
                try:
                    handle.close()
                except Exception as err:  # noqa: BLE001
                    _log.error("failed to close file %s: %s", filename, err)

        code = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else str(data)
        return self._run_script_code(env, posixpath.basename(filename), code)

    def _run_script_code(self, env: FlowEnv, name: str, code: str) -> ActionResponse:
        driver = self._require_script_driver()
        try:
            value = driver.execute(env, name, code)
        except Exception as err:
            raise FlowError(f"eval script {name}: {err}") from err
        try:
            text = driver.value_to_string(value)
        except Exception as err:
            raise FlowError(f"eval script {name} result to string: {err}") from err
        return ActionResponse().with_result(text)