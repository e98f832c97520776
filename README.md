# corekit

Small building blocks for backend services and tools.

## Installation

    pip install corekit

For running the test suite:

    pip install "corekit[test]"
    pytest

## What's inside

- `corekit.errors`: `CodedError` is an exception with a machine-readable
  `code`, a `message`, a `params` dictionary and an optional `cause`.
  `with_param`, `with_params` and `with_cause` return modified copies.
  `error_is(err, target)` walks the cause chain. It matches an exception
  class, the same instance, or a `CodedError` with an equal code.
- `corekit.encoder`: `Encoder` is a repeating-key XOR encoder. `encode` and
  `decode` work on bytes. `encode_string` and `decode_string` work on text in
  base64. Invalid base64 raises `Base64DecodeError`. This hides values; it is
  not encryption.
- `corekit.env`: `AppEnv` is a frozen dataclass that describes the running
  build: environment name, CI pipeline id, git tag, branch, commit and start
  time. `as_fields()` returns these details as a dictionary for logging.
- `corekit.base_env`: `BaseEnv` holds an `AppEnv` and a `logging.Logger`
  (`corekit` by default). It logs "Initializing application" with the version
  fields when it is created.
- `corekit.cache`:
  - `Cache` stores values of one group under string keys with a fixed TTL.
    It works through a marshaller and a provider.
  - `get` returns the cache's default when the key is missing.
  - `JsonMarshaller` serialises values as JSON.
  - `CacheProxy` reads through a cache. On a miss it calls a getter and
    stores the result.
  - Failures raise `MarshalError`, `UnmarshalError`, `ProviderGetError` or
    `ProviderSetError`, all subclasses of `CacheError`.
- `corekit.cache_memory`: `MemoryProvider` is a thread-safe in-process
  provider with a per-entry expiry. Expired entries are dropped on read and
  reported as `ProviderNoSuchKeyError`.
- `corekit.circuit_breaker`:
  - `CircuitBreaker` opens after a number of consecutive failures (default 5).
  - While open it refuses calls with `OpenStateError`. After the timeout it
    goes half-open and lets trial calls through. A half-open breaker that is
    already at its limit of trial calls raises `TooManyRequestsError`.
  - A counter-reset interval and a rolling window of buckets are supported.
  - `should_ignore_error` marks errors that do not count as failures.
  - `new_circuit_breaker` returns a `PassthroughBreaker` when the
    `CircuitBreakerConfig` is disabled.
  - `execute` and `execute_with_result` run a call directly when the breaker
    is `None`.
  - When `expected_type` is given to `execute_with_result`, a result of the
    wrong type raises `UnexpectedTypeError`.
- `corekit.control_flow`: `ControlFlow` keeps a registry of services: objects
  with `close()` or `stop()`, or plain callables.
  - `shutdown()` stops them all at once and returns the errors keyed by
    service name.
  - `wait_for_interrupt()` blocks until `cancel()` is called or SIGINT
    arrives. It returns `True` on an interrupt.
- `corekit.cli`:
  - `exec_command` runs a program and returns an `ExecResult` with the exit
    code, stdout and stderr.
  - The `env` you pass is added on top of the current environment.
  - A program that cannot be started raises `ExecError`. By default a
    non-zero exit raises `ExitCodeError`.
  - `Cli` wraps one tool path and logs every `run_command` call.
- `corekit.flow_model`: the data model for flows.
  - `Action` is immutable; its `with_*` methods return copies. `ActionResponse`
    is also built with `with_*` methods.
  - `FlowConfig` has a `from_dict` loader for parsed YAML or JSON.
  - The other types are `FlowEnv` and `FlowResult`.
  - `TemplateDriver` and `ScriptDriver` are protocols.
  - Helpers parse template output: `unmarshal_template_result_slice`,
    `unmarshal_template_result_object` and `as_map_string_string`.
- `corekit.flow_engine`: `Flow` runs a flow's actions in order.
  - `validate()` raises `ActionNoNameError` or `ActionDuplicateNameError`.
  - An action is a command, an inline script or a script file.
  - Each action has templated arguments, environment, working directory and
    stdout/stderr files, and a `when` condition.
  - The first failure stops the run and is raised as a `FlowError`.

## Examples

Caching with a read-through proxy:

    from datetime import timedelta
    from corekit.cache import Cache, CacheProxy, JsonMarshaller
    from corekit.cache_memory import MemoryProvider

    cache = Cache("users", JsonMarshaller(), MemoryProvider(), None, timedelta(minutes=5))
    proxy = CacheProxy(cache, lambda key: {"id": str(key)})
    proxy.get("42")   # computed and stored
    proxy.get("42")   # served from the cache

Protecting a call with a circuit breaker:

    from corekit.circuit_breaker import CircuitBreakerConfig, new_circuit_breaker

    breaker = new_circuit_breaker(
        CircuitBreakerConfig(enabled=True, name="billing", consecutive_failures=3),
        None,
    )
    breaker.execute(lambda: None)

Running a flow of actions:

    from corekit.flow_model import Action, FlowConfig, FlowEnv
    from corekit.flow_engine import Flow

    config = FlowConfig(actions=[Action("greet").with_command("echo", "hello")])
    flow = Flow(config, None, None, None)
    flow.validate()
    result = flow.run(FlowEnv(work_dir=""))
    print(result.actions_responses["greet"].stdout)

## What it does not do

- It does not read configuration files. Load your settings yourself and
  build `CircuitBreakerConfig`, `FlowConfig` (through `FlowConfig.from_dict`)
  and the other objects from them.
- It ships no template or script engine.
  - Without a template driver, `Flow` uses templated fields exactly as
    written.
  - Script actions, `when` conditions and script-based arguments or
    environment need a `ScriptDriver` that you supply. Without one they raise
    `NoScriptDriverError`.
- It ships no file storage. A script file with a relative path is read
  through a storage object you pass to `Flow`; that object must have
  `read_file(path)` returning something with `read()` and `close()`.
- It provides only the in-memory cache provider. Other backends must
  implement the provider methods `has`, `get` and `set`.
- It installs no command-line program.