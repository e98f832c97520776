import os

import pytest

from corekit.errors import error_is
from corekit.flow_engine import ActionDuplicateNameError, ActionNoNameError, Flow
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
    NoScriptDriverError,
)

CMD_TRUE = "true"
CMD_FALSE = "false"
CMD_ECHO = "echo"
CMD_MKDIR = "mkdir"
CMD_PRINTENV = "printenv"
FILE_CONTENT = b"Hello, world!"


class SampleError(Exception):
    pass


def _answer(responses, calls, method, key):
    calls.append((method, key))
    table = responses.get(method, {})
    if key not in table:
        raise AssertionError(f"unexpected call {method}{key!r}")
    answer = table[key]
    if isinstance(answer, BaseException):
        raise answer
    return answer


class FakeTemplateDriver:
    def __init__(self, responses):
        self.responses = {"execute": responses}
        self.calls = []

    def execute(self, env, name, source):
        return _answer(self.responses, self.calls, "execute", (name, source))


class FakeScriptDriver:
    def __init__(self, **responses):
        self.responses = responses
        self.calls = []

    def execute(self, env, name, script):
        return _answer(self.responses, self.calls, "execute", (name, script))

    def value_to_string(self, value):
        return _answer(self.responses, self.calls, "value_to_string", value)

    def value_to_bool(self, value):
        return _answer(self.responses, self.calls, "value_to_bool", value)

    def value_to_string_slice(self, value):
        return _answer(self.responses, self.calls, "value_to_string_slice", value)

    def value_to_map_string_string(self, value):
        return _answer(self.responses, self.calls, "value_to_map_string_string", value)

    def any_to_value(self, value):
        return _answer(self.responses, self.calls, "any_to_value", value)

    def new_error(self, err):
        return _answer(self.responses, self.calls, "new_error", err)

    def throw(self, err):
        self.calls.append(("throw", err))
        raise err


class FakeStorage:
    def __init__(self, files):
        self.files = files
        self.requested = []

    def read_file(self, path):
        self.requested.append(path)
        return open(self.files[path], "rb")


def _flow(actions, storage=None, template=None, script=None):
    return Flow(FlowConfig(list(actions)), storage, template, script)


def _assert_response(actual, expected):
    assert actual.error_code == expected.error_code
    assert actual.stdout == expected.stdout
    assert actual.stderr == expected.stderr
    assert actual.skipped == expected.skipped
    assert actual.result == expected.result
    assert actual.duration >= 0


@pytest.mark.parametrize(
    "actions, expected",
    [
        ([Action("")], ActionNoNameError),
        ([Action("test"), Action("test")], ActionDuplicateNameError),
    ],
    ids=["no_name_error", "duplicate_name_error"],
)
def test_validate_errors(actions, expected):
    with pytest.raises(expected):
        _flow(actions).validate()


def test_validate_ok_and_empty_run():
    engine = _flow([])
    assert engine.validate() is None
    assert _flow([Action("a"), Action("b")]).validate() is None
    assert engine.run(FlowEnv()).actions_responses == {}


def test_duplicate_message_names_index():
    with pytest.raises(ActionDuplicateNameError, match="test at index 1"):
        _flow([Action("test"), Action("test")]).validate()


def test_eval_delegates_to_drivers():
    env = FlowEnv()
    template = FakeTemplateDriver(
        {("test1", "test1_source"): "test1_result", ("test2", "test2_source"): SampleError()}
    )
    script = FakeScriptDriver(
        execute={("test3", "test3_source"): "test3_result", ("test4", "test4_source"): SampleError()},
        value_to_string={"test5": "test5_result", "test6": SampleError()},
        value_to_bool={"test7": True, "test8": SampleError()},
        value_to_string_slice={"test9": ["1", "2", "3"], "test10": SampleError()},
        value_to_map_string_string={"test11": {"a": "1", "b": "2"}, "test12": SampleError()},
    )
    engine = _flow([], template=template, script=script)

    assert engine.eval_template(env, "test1", "test1_source") == "test1_result"
    with pytest.raises(SampleError):
        engine.eval_template(env, "test2", "test2_source")
    assert engine.eval_script(env, "test3", "test3_source") == "test3_result"
    with pytest.raises(SampleError):
        engine.eval_script(env, "test4", "test4_source")
    assert engine.value_to_string("test5") == "test5_result"
    with pytest.raises(SampleError):
        engine.value_to_string("test6")
    assert engine.value_to_bool("test7") is True
    with pytest.raises(SampleError):
        engine.value_to_bool("test8")
    assert engine.value_to_string_slice("test9") == ["1", "2", "3"]
    with pytest.raises(SampleError):
        engine.value_to_string_slice("test10")
    assert engine.value_to_map_string_string("test11") == {"a": "1", "b": "2"}
    with pytest.raises(SampleError):
        engine.value_to_map_string_string("test12")


def test_value_helpers_and_throw():
    problem = SampleError("boom")
    script = FakeScriptDriver(any_to_value={5: "five"}, new_error={problem: "wrapped"})
    engine = _flow([], script=script)
    assert engine.any_to_value(5) == "five"
    assert engine.new_error(problem) == "wrapped"
    with pytest.raises(SampleError, match="boom"):
        engine.throw(problem)


def test_eval_script_without_driver():
    with pytest.raises(NoScriptDriverError):
        _flow([]).eval_script(FlowEnv(), "x", "y")


@pytest.mark.parametrize(
    "action, expected",
    [
        (Action("test"), ActionNoOptionsError),
        (Action("test").with_command(CMD_TRUE).with_script("hello"), ActionTooManyOptionsError),
        (Action("test").with_command(CMD_TRUE).with_script_file("hello.js"), ActionTooManyOptionsError),
        (Action("test").with_script("hello").with_script_file("hello.js"), ActionTooManyOptionsError),
        (
            Action("test").with_command(CMD_TRUE).with_args("1", "2", "3").with_args_template("hello"),
            ActionArgsTooManyOptionsError,
        ),
        (
            Action("test").with_command(CMD_TRUE).with_args("1", "2", "3").with_args_script("hello"),
            ActionArgsTooManyOptionsError,
        ),
        (
            Action("test").with_command(CMD_TRUE).with_args_template("hello").with_args_script("hello"),
            ActionArgsTooManyOptionsError,
        ),
        (
            Action("test").with_command(CMD_TRUE).with_env("foo", "bar").with_env_template("hello"),
            ActionEnvTooManyOptionsError,
        ),
        (
            Action("test").with_command(CMD_TRUE).with_envs({"foo": "bar"}).with_env_script("hello"),
            ActionEnvTooManyOptionsError,
        ),
        (
            Action("test").with_command(CMD_TRUE).with_env_template("hello").with_env_script("hello"),
            ActionEnvTooManyOptionsError,
        ),
        (Action("test").with_command(CMD_FALSE), CommandFailedError),
        (Action("test").with_command(CMD_TRUE).with_when("hello"), NoScriptDriverError),
        (Action("test").with_script("hello"), NoScriptDriverError),
    ],
    ids=[
        "one_action_no_options",
        "too_many_options",
        "too_many_options2",
        "too_many_options3",
        "args_too_many_options",
        "args_too_many_options2",
        "args_too_many_options3",
        "env_too_many_options",
        "env_too_many_options2",
        "env_too_many_options3",
        "command_fail",
        "when_fail",
        "script_fail",
    ],
)
def test_run_errors_without_drivers(action, expected):
    with pytest.raises(FlowError) as excinfo:
        _flow([action]).run(FlowEnv())
    assert error_is(excinfo.value, expected)


def test_work_dir_is_a_file(tmp_path):
    file_path = tmp_path / "file"
    file_path.write_bytes(FILE_CONTENT)
    action = Action("test").with_command(CMD_TRUE).with_work_dir(str(file_path))
    with pytest.raises(FlowError) as excinfo:
        _flow([action]).run(FlowEnv())
    assert error_is(excinfo.value, NotADirectoryError)


@pytest.mark.parametrize(
    "action, expected",
    [
        (Action("test").with_command(CMD_ECHO, "hello"), ActionResponse().with_stdout("hello\n")),
        (Action("test").with_command(CMD_ECHO).with_args("-n", "hello"), ActionResponse().with_stdout("hello")),
        (
            Action("test").with_command(CMD_FALSE).with_fail_if_non_zero_code(False),
            ActionResponse().with_exit_code(1),
        ),
        (
            Action("test").with_command(CMD_PRINTENV, "TEST_ENV").with_env("TEST_ENV", "hello"),
            ActionResponse().with_stdout("hello\n"),
        ),
        (
            Action("test").with_command(CMD_PRINTENV, "TEST_ENV").with_env_template("{TEST_ENV: 'hello'}"),
            ActionResponse().with_stdout("hello\n"),
        ),
    ],
    ids=["command_stdout", "command_two_args_stdout", "command_fail_exit_code", "env", "env_template"],
)
def test_run_commands(action, expected):
    result = _flow([action]).run(FlowEnv())
    assert list(result.actions_responses) == ["test"]
    _assert_response(result.actions_responses["test"], expected)


def test_command_stderr():
    action = Action("test").with_command(CMD_MKDIR, ".").with_fail_if_non_zero_code(False)
    response = _flow([action]).run(FlowEnv()).actions_responses["test"]
    assert response.error_code == 1
    assert response.stdout == ""
    assert response.stderr.startswith("mkdir:")
    assert "File exists" in response.stderr
    assert response.stderr.endswith("\n")


def test_when_true():
    env = FlowEnv()
    script = FakeScriptDriver(execute={("action.test.when", "hello"): "value"}, value_to_bool={"value": True})
    action = Action("test").with_command(CMD_TRUE).with_when("hello")
    result = _flow([action], script=script).run(env)
    _assert_response(result.actions_responses["test"], ActionResponse())
    assert script.calls == [("execute", ("action.test.when", "hello")), ("value_to_bool", "value")]


def test_when_false():
    script = FakeScriptDriver(execute={("action.test.when", "hello"): "value"}, value_to_bool={"value": False})
    action = Action("test").with_command(CMD_TRUE).with_when("hello")
    result = _flow([action], script=script).run(FlowEnv())
    _assert_response(result.actions_responses["test"], ActionResponse().with_skipped(True))


def test_stdout_file(tmp_path):
    action = Action("test").with_command(CMD_ECHO, "hello").with_stdout("stdout_file.txt")
    result = _flow([action]).run(FlowEnv(str(tmp_path)))
    _assert_response(result.actions_responses["test"], ActionResponse())
    assert (tmp_path / "stdout_file.txt").read_text() == "hello\n"


def test_stderr_file(tmp_path):
    action = (
        Action("test")
        .with_command(CMD_MKDIR, ".")
        .with_fail_if_non_zero_code(False)
        .with_stderr("stdout_file.error.txt")
    )
    result = _flow([action]).run(FlowEnv(str(tmp_path)))
    _assert_response(result.actions_responses["test"], ActionResponse().with_exit_code(1))
    assert "File exists" in (tmp_path / "stdout_file.error.txt").read_text()


def test_stdout_file_work_dir(tmp_path):
    work_dir = tmp_path / "work"
    another = tmp_path / "another"
    action = (
        Action("test")
        .with_command(CMD_ECHO, "hello")
        .with_work_dir(str(another))
        .with_stdout("stdout_file.txt")
    )
    result = _flow([action]).run(FlowEnv(str(work_dir)))
    _assert_response(result.actions_responses["test"], ActionResponse())
    assert (another / "stdout_file.txt").read_text() == "hello\n"
    assert not (work_dir / "stdout_file.txt").exists()


def test_stderr_file_work_dir(tmp_path):
    another = tmp_path / "another"
    action = (
        Action("test")
        .with_command(CMD_MKDIR, ".")
        .with_work_dir(str(another))
        .with_fail_if_non_zero_code(False)
        .with_stderr("stdout_file.error.txt")
    )
    result = _flow([action]).run(FlowEnv(str(tmp_path / "work")))
    _assert_response(result.actions_responses["test"], ActionResponse().with_exit_code(1))
    assert "File exists" in (another / "stdout_file.error.txt").read_text()


def test_args_template():
    template = FakeTemplateDriver(
        {
            ("action.test.command", CMD_ECHO): CMD_ECHO,
            ("action.test.args_template", "hello"): "['hello ',' world',' foo ']",
        }
    )
    action = Action("test").with_command(CMD_ECHO).with_args_template("hello")
    result = _flow([action], template=template).run(FlowEnv())
    _assert_response(result.actions_responses["test"], ActionResponse().with_stdout("hello   world  foo \n"))


def test_args_template_command_fails():
    template = FakeTemplateDriver({("action.test.command", CMD_ECHO): SampleError()})
    action = Action("test").with_command(CMD_ECHO).with_args_template("hello")
    with pytest.raises(FlowError) as excinfo:
        _flow([action], template=template).run(FlowEnv())
    assert error_is(excinfo.value, SampleError)


def test_args_template_render_fails():
    template = FakeTemplateDriver(
        {
            ("action.test.command", CMD_ECHO): CMD_ECHO,
            ("action.test.args_template", "hello"): SampleError(),
        }
    )
    action = Action("test").with_command(CMD_ECHO).with_args_template("hello")
    with pytest.raises(FlowError) as excinfo:
        _flow([action], template=template).run(FlowEnv())
    assert error_is(excinfo.value, SampleError)


def test_args_script():
    script = FakeScriptDriver(
        execute={("action.test.args_script", "hello"): "world"},
        value_to_string_slice={"world": ["hello ", " world", " foo "]},
    )
    action = Action("test").with_command(CMD_ECHO).with_args_script("hello")
    result = _flow([action], script=script).run(FlowEnv())
    _assert_response(result.actions_responses["test"], ActionResponse().with_stdout("hello   world  foo \n"))


@pytest.mark.parametrize(
    "responses",
    [
        {"execute": {("action.test.args_script", "hello"): SampleError()}},
        {
            "execute": {("action.test.args_script", "hello"): "world"},
            "value_to_string_slice": {"world": SampleError()},
        },
    ],
    ids=["args_script_fail", "args_script_fail2"],
)
def test_args_script_failures(responses):
    script = FakeScriptDriver(**responses)
    action = Action("test").with_command(CMD_ECHO).with_args_script("hello")
    with pytest.raises(FlowError) as excinfo:
        _flow([action], script=script).run(FlowEnv())
    assert error_is(excinfo.value, SampleError)


def test_env_script():
    script = FakeScriptDriver(
        execute={("action.test.env_script", "hello"): "world"},
        value_to_map_string_string={"world": {"TEST_ENV": "foo"}},
    )
    action = Action("test").with_command(CMD_PRINTENV, "TEST_ENV").with_env_script("hello")
    result = _flow([action], script=script).run(FlowEnv())
    _assert_response(result.actions_responses["test"], ActionResponse().with_stdout("foo\n"))


def test_script_result_conversion_fails():
    script = FakeScriptDriver(
        execute={("action.test.script", "hello"): "world"},
        value_to_string={"world": SampleError()},
    )
    with pytest.raises(FlowError) as excinfo:
        _flow([Action("test").with_script("hello")], script=script).run(FlowEnv())
    assert error_is(excinfo.value, SampleError)


def test_script_result():
    script = FakeScriptDriver(
        execute={("action.test.script", "hello"): "world"},
        value_to_string={"world": "done"},
    )
    result = _flow([Action("test").with_script("hello")], script=script).run(FlowEnv())
    _assert_response(result.actions_responses["test"], ActionResponse().with_result("done"))


def test_script_file_from_storage(tmp_path):
    file_path = tmp_path / "file"
    file_path.write_bytes(FILE_CONTENT)
    storage = FakeStorage({"hello.js": file_path})
    script = FakeScriptDriver(
        execute={("hello.js", FILE_CONTENT.decode()): "foo bar"},
        value_to_string={"foo bar": "baz"},
    )
    result = _flow([Action("test").with_script_file("hello.js")], storage=storage, script=script).run(FlowEnv())
    _assert_response(result.actions_responses["test"], ActionResponse().with_result("baz"))
    assert storage.requested == ["hello.js"]


def test_script_file_absolute_path(tmp_path):
    file_path = tmp_path / "run.js"
    file_path.write_bytes(b"1 + 1")
    script = FakeScriptDriver(execute={("run.js", "1 + 1"): 2}, value_to_string={2: "2"})
    action = Action("test").with_script_file(os.fspath(file_path))
    result = _flow([action], script=script).run(FlowEnv())
    assert result.actions_responses["test"].result == "2"


def test_actions_run_in_order_and_stop_on_failure(tmp_path):
    marker = tmp_path / "marker"
    actions = [
        Action("first").with_command(CMD_FALSE),
        Action("second").with_command("touch", os.fspath(marker)),
    ]
    with pytest.raises(FlowError, match="action 'first' failed"):
        _flow(actions).run(FlowEnv())
    assert not marker.exists()


def test_multiple_actions_all_recorded():
    actions = [Action("a").with_command(CMD_ECHO, "one"), Action("b").with_command(CMD_ECHO, "two")]
    result = _flow(actions).run(FlowEnv())
    assert {name: r.stdout for name, r in result.actions_responses.items()} == {"a": "one\n", "b": "two\n"}