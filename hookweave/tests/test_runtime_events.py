"""Tests for the embedded event dispatcher."""
import base64
import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from hookweave import runtime
from hookweave.runtime import (
    BoundedRegexCompiler,
    EventDispatcher,
    HookAbort,
    Instrumentation,
    RuntimeLog,
    SinkFailure,
    event_matches,
    program_argv,
)


def make_hook(**overrides):
    hook = {
        "id": "h1",
        "name": None,
        "events": ["tool:before"],
        "type": "process",
        "command": "true",
        "async": False,
        "on_error": "continue",
        "retry_count": 0,
        "retry_delay": 0,
        "timeout": 5000,
        "env": {},
    }
    hook.update(overrides)
    return hook


def make_dispatcher(*hooks, log=None):
    log = log or MagicMock()
    return EventDispatcher(hooks, log, BoundedRegexCompiler(log))


def completed(code=0):
    return subprocess.CompletedProcess(args="x", returncode=code)


class TestEventMatching:
    """Tests for event name matching."""

    def test_exact(self):
        """Exact names match."""
        assert event_matches(["tool:before"], "tool:before")
        assert not event_matches(["tool:before"], "tool:after")

    def test_custom_family(self):
        """Any custom: matcher accepts any custom: event."""
        assert event_matches(["custom:deploy"], "custom:other")
        assert not event_matches(["tool:before"], "custom:deploy")
        assert not event_matches(["custom:deploy"], "tool:before")


class TestFilters:
    """Tests for filter evaluation order and semantics."""

    def test_tool_allow_list(self):
        """tools: ["Bash"] fires for Bash only."""
        with patch.object(runtime.subprocess, "run", return_value=completed()) as run:
            dispatcher = make_dispatcher(make_hook(filter={"tools": ["Bash"]}))
            dispatcher.emit("tool:before", {"toolName": "Edit"})
            assert run.call_count == 0
            dispatcher.emit("tool:before", {"toolName": "Bash"})
            assert run.call_count == 1

    def test_tool_deny_list(self):
        """tools_exclude blocks listed tools."""
        with patch.object(runtime.subprocess, "run", return_value=completed()) as run:
            dispatcher = make_dispatcher(make_hook(filter={"tools_exclude": ["Read"]}))
            dispatcher.emit("tool:before", {"toolName": "Read"})
            dispatcher.emit("tool:before", {"toolName": "Write"})
            assert run.call_count == 1

    def test_message_types(self):
        """message_types compares against messageType."""
        hook = make_hook(events=["message:user", "message:assistant"], filter={"message_types": ["user"]})
        with patch.object(runtime.subprocess, "run", return_value=completed()) as run:
            dispatcher = make_dispatcher(hook)
            dispatcher.emit("message:assistant", {"messageType": "assistant"})
            dispatcher.emit("message:user", {"messageType": "user"})
            assert run.call_count == 1

    def test_regex_over_serialized_payload(self):
        """Regex filters search the JSON payload."""
        with patch.object(runtime.subprocess, "run", return_value=completed()) as run:
            dispatcher = make_dispatcher(make_hook(filter={"regex": r"rm -rf"}))
            dispatcher.emit("tool:before", {"input": {"command": "ls"}})
            dispatcher.emit("tool:before", {"input": {"command": "rm -rf /tmp/x"}})
            assert run.call_count == 1

    def test_dangerous_regex_treated_as_absent(self):
        """A catastrophic-backtracking regex makes the filter pass."""
        with patch.object(runtime.subprocess, "run", return_value=completed()) as run:
            dispatcher = make_dispatcher(make_hook(filter={"regex": r"(a+)+$"}))
            dispatcher.emit("tool:before", {"input": "a" * 40 + "!"})
            assert run.call_count == 1

    def test_overlong_regex_treated_as_absent(self):
        """A pattern above the length ceiling makes the filter pass."""
        with patch.object(runtime.subprocess, "run", return_value=completed()) as run:
            dispatcher = make_dispatcher(make_hook(filter={"regex": "x" * 600}))
            dispatcher.emit("tool:before", {})
            assert run.call_count == 1

    def test_disabled_hook_absent_is_not_called(self):
        """Hooks for other events are never invoked."""
        with patch.object(runtime.subprocess, "run", return_value=completed()) as run:
            make_dispatcher(make_hook(events=["session:start"])).emit("tool:before", {})
            assert run.call_count == 0


class TestPayloadTransport:
    """Tests for payload construction and subprocess environment."""

    def test_payload_fields_layered_over_data(self):
        """event, timestamp, hookId, hookName override the data bag."""
        dispatcher = make_dispatcher()
        payload = dispatcher.build_payload(make_hook(name="Audit"), "tool:before", {"event": "spoof", "x": 1})
        assert payload["event"] == "tool:before"
        assert payload["hookId"] == "h1"
        assert payload["hookName"] == "Audit"
        assert payload["x"] == 1
        assert "timestamp" in payload

    def test_env_carries_plain_and_base64(self):
        """Both encodings of the payload reach the child; never the command line."""
        hook = make_hook(command="echo hi", env={"EXTRA": "1"})
        with patch.object(runtime.subprocess, "run", return_value=completed()) as run:
            make_dispatcher(hook).emit("tool:before", {"toolName": "Bash", "toolId": "t1", "input": "$(reboot)"})
        args, kwargs = run.call_args
        assert args[0] == "echo hi"
        env = kwargs["env"]
        data = json.loads(env["HOOKWEAVE_DATA"])
        assert data["input"] == "$(reboot)"
        assert json.loads(base64.b64decode(env["HOOKWEAVE_DATA_BASE64"])) == data
        assert env["HOOKWEAVE_EVENT"] == "tool:before"
        assert env["HOOKWEAVE_HOOK_ID"] == "h1"
        assert env["HOOKWEAVE_TOOL_NAME"] == "Bash"
        assert env["HOOKWEAVE_TOOL_ID"] == "t1"
        assert env["EXTRA"] == "1"

    def test_unserializable_data_does_not_raise(self):
        """Arbitrary objects fall back to str()."""
        with patch.object(runtime.subprocess, "run", return_value=completed()) as run:
            make_dispatcher(make_hook()).emit("tool:before", {"obj": object(), "tags": {"a"}})
        assert run.call_count == 1

    def test_program_argv_by_extension(self):
        """Interpreter is chosen from the script extension."""
        assert program_argv("/x/hook.py")[1] == "/x/hook.py"
        assert program_argv("/x/hook.mjs") == ["node", "/x/hook.mjs"]
        assert program_argv("/x/hook.sh") == ["/x/hook.sh"]


class TestErrorPolicy:
    """Tests for continue/abort/retry."""

    def test_retry_attempts_total(self):
        """retry_count=2 means exactly 3 attempts."""
        hook = make_hook(on_error="retry", retry_count=2, retry_delay=0)
        with patch.object(runtime.subprocess, "run", return_value=completed(1)) as run:
            make_dispatcher(hook).emit("tool:before", {})
        assert run.call_count == 3

    def test_retry_stops_on_success(self):
        """A successful attempt ends the retry loop."""
        hook = make_hook(on_error="retry", retry_count=5, retry_delay=0)
        with patch.object(runtime.subprocess, "run", side_effect=[completed(1), completed(0)]) as run:
            make_dispatcher(hook).emit("tool:before", {})
        assert run.call_count == 2

    def test_backoff_is_exponential_and_capped(self):
        """Waits double per attempt and never exceed the cap."""
        hook = make_hook(on_error="retry", retry_count=3, retry_delay=20000)
        dispatcher = make_dispatcher(hook)
        with patch.object(runtime.subprocess, "run", return_value=completed(1)), \
                patch.object(dispatcher._stopping, "wait") as wait:
            dispatcher.emit("tool:before", {})
        assert [c.args[0] for c in wait.call_args_list] == [20.0, 30.0, 30.0]

    def test_continue_swallows_failure(self):
        """continue logs and returns normally."""
        log = MagicMock()
        with patch.object(runtime.subprocess, "run", return_value=completed(2)):
            make_dispatcher(make_hook(), log=log).emit("tool:before", {})
        assert any(c.args[1] == "Hook failed" for c in log.call_args_list)

    def test_abort_raises_for_blocking(self):
        """abort on a blocking hook propagates HookAbort."""
        with patch.object(runtime.subprocess, "run", return_value=completed(1)):
            with pytest.raises(HookAbort) as exc:
                make_dispatcher(make_hook(on_error="abort")).emit("tool:before", {})
        assert exc.value.hook_id == "h1"

    def test_blocking_hooks_run_in_registration_order(self):
        """Blocking hooks execute sequentially in order."""
        hooks = [make_hook(id="a", command="first"), make_hook(id="b", command="second")]
        with patch.object(runtime.subprocess, "run", return_value=completed()) as run:
            make_dispatcher(*hooks).emit("tool:before", {})
        assert [c.args[0] for c in run.call_args_list] == ["first", "second"]

    def test_timeout_is_a_sink_failure(self):
        """Timeouts count as failures under the policy."""
        hook = make_hook(on_error="abort")
        with patch.object(runtime.subprocess, "run", side_effect=subprocess.TimeoutExpired("x", 1)):
            with pytest.raises(HookAbort):
                make_dispatcher(hook).emit("tool:before", {})

    def test_unexpected_error_never_escapes(self):
        """Anything other than HookAbort stays inside the runtime."""
        dispatcher = make_dispatcher(make_hook())
        with patch.object(dispatcher, "build_payload", side_effect=RuntimeError("boom")):
            dispatcher.emit("tool:before", {})


class TestDetachedSinks:
    """Tests for fire-and-forget delivery."""

    def test_async_process_is_detached(self):
        """async hooks use Popen in a new session and are not waited on."""
        with patch.object(runtime.subprocess, "Popen") as popen, \
                patch.object(runtime.subprocess, "run") as run:
            make_dispatcher(make_hook(**{"async": True})).emit("tool:before", {})
        assert run.call_count == 0
        assert popen.call_args.kwargs["start_new_session"] is True
        popen.return_value.wait.assert_not_called()

    def test_async_abort_does_not_raise(self):
        """Detached hooks cannot veto; start failures are logged."""
        with patch.object(runtime.subprocess, "Popen", side_effect=OSError("nope")):
            make_dispatcher(make_hook(on_error="abort", **{"async": True})).emit("tool:before", {})

    def test_script_sink_runs_real_program(self, recording_hook):
        """Script sinks receive the payload through the environment."""
        script, out = recording_hook()
        make_dispatcher(make_hook(type="script", command=None, script=script)).emit(
            "tool:before", {"toolName": "Bash"})
        event, encoded = out.read_text().strip().split("\t")
        assert event == "tool:before"
        assert json.loads(base64.b64decode(encoded))["toolName"] == "Bash"

    def test_failing_script_retried(self, recording_hook):
        """A non-zero exit triggers the retry policy."""
        script, out = recording_hook("fail.py", exit_code=3)
        hook = make_hook(type="script", script=script, on_error="retry", retry_count=1, retry_delay=0)
        make_dispatcher(hook).emit("tool:before", {})
        assert len(out.read_text().splitlines()) == 2


class TestWebhook:
    """Tests for webhook delivery."""

    def _response(self, status):
        response = MagicMock()
        response.status = status
        response.__enter__.return_value = response
        return response

    def test_post_headers_and_body(self):
        """POST carries JSON body plus event and hook id headers."""
        hook = make_hook(type="webhook", webhook="https://example.invalid/hook")
        dispatcher = make_dispatcher(hook)
        with patch.object(runtime.urllib.request, "urlopen", return_value=self._response(204)) as urlopen:
            assert dispatcher.deliver(hook, {"event": "tool:before"}, '{"event": "tool:before"}', blocking=False)
        request = urlopen.call_args.args[0]
        assert request.get_method() == "POST"
        assert request.get_header("X-hookweave-event") == "tool:before"
        assert request.get_header("X-hookweave-hook-id") == "h1"
        assert json.loads(request.data) == {"event": "tool:before"}

    def test_non_2xx_is_failure(self):
        """Status outside 2xx is a sink failure."""
        hook = make_hook(type="webhook", webhook="https://example.invalid/hook")
        dispatcher = make_dispatcher(hook)
        with patch.object(runtime.urllib.request, "urlopen", return_value=self._response(302)):
            with pytest.raises(SinkFailure):
                dispatcher.invoke(hook, {"event": "e"}, "{}")

    def test_webhook_is_fire_and_forget(self):
        """emit returns after handing delivery to a background thread."""
        hook = make_hook(type="webhook", webhook="https://example.invalid/hook", on_error="abort")
        dispatcher = make_dispatcher(hook)
        with patch.object(dispatcher.scheduler, "spawn_and_forget") as spawn:
            dispatcher.emit("tool:before", {})
        assert spawn.call_count == 1


class TestRuntimeLog:
    """Tests for the runtime JSON-lines log."""

    def test_disabled_writes_nothing(self, tmp_path):
        """Disabled logs never create the file."""
        log = RuntimeLog({"enabled": False, "log_file": str(tmp_path / "events.log")})
        log("error", "x")
        assert not (tmp_path / "events.log").exists()

    def test_level_threshold(self, tmp_path):
        """Entries below the configured level are dropped."""
        path = tmp_path / "events.log"
        log = RuntimeLog({"enabled": True, "log_file": str(path), "log_level": "warn"})
        log("info", "dropped")
        log("error", "kept", {"k": 1})
        entries = [json.loads(line) for line in path.read_text().splitlines()]
        assert [e["message"] for e in entries] == ["kept"]
        assert entries[0]["data"] == {"k": 1}


class TestEmitCommand:
    """Tests for the /emit command definition."""

    def test_emits_custom_event(self):
        """Arguments become a custom: event with parsed JSON data."""
        instrumentation = Instrumentation()
        with patch.object(instrumentation.events, "emit") as emit:
            result = instrumentation.emit_command()["call"]('deploy {"env": "prod"}')
        emit.assert_called_once_with("custom:deploy", {"env": "prod"})
        assert "custom:deploy" in result["value"]

    def test_non_json_kept_raw(self):
        """Unparsable data is passed as raw text."""
        instrumentation = Instrumentation()
        with patch.object(instrumentation.events, "emit") as emit:
            instrumentation.emit_from_command("ping not json")
        emit.assert_called_once_with("custom:ping", {"raw": "not json"})

    def test_requires_event_name(self):
        """Empty arguments are a usage error."""
        with pytest.raises(ValueError):
            Instrumentation().emit_from_command("  ")
