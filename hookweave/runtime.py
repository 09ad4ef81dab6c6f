"""
Embedded hook/transform runtime.

This module is importable on its own (tests exercise it directly) and is also
spliced verbatim into host programs by hookweave.codegen, inside a bootstrap
function. That second life imposes a few rules on this file:

- standard library only, imported at the top (the generator rewrites these
  imports into bindings obtained through the host's module loader)
- no multi-line string literals other than docstrings (the body is re-indented)
- no `global` statements and no forward references in annotations

Provides:
- RuntimeLog: JSON-lines log honouring the configured level
- BoundedRegexCompiler: length/shape-checked, cached filter regexes
- EventDispatcher: emit() fan-out to process, script and webhook sinks
- TransformDispatcher: run_stage() pipeline over external programs
- Instrumentation: the facade bound to the host's handle
"""
import base64
import datetime
import json
import os
import re
import subprocess
import sys
import tempfile
import threading
import urllib.error
import urllib.request
from collections import OrderedDict

MAX_REGEX_LENGTH = 500
MAX_REGEX_INPUT = 100000
MAX_REGEX_CACHE = 256
DEFAULT_TIMEOUT_MS = 5000
DEFAULT_RETRY_DELAY_MS = 1000
MAX_BACKOFF_S = 30.0
CUSTOM_PREFIX = "custom:"
LOG_LEVELS = {"debug": 0, "info": 1, "warn": 2, "error": 3}
NODE_EXTENSIONS = (".js", ".mjs", ".cjs")

ENV_EVENT = "HOOKWEAVE_EVENT"
ENV_DATA = "HOOKWEAVE_DATA"
ENV_DATA_BASE64 = "HOOKWEAVE_DATA_BASE64"
ENV_HOOK_ID = "HOOKWEAVE_HOOK_ID"
ENV_HOOK_NAME = "HOOKWEAVE_HOOK_NAME"
ENV_TOOL_NAME = "HOOKWEAVE_TOOL_NAME"
ENV_TOOL_ID = "HOOKWEAVE_TOOL_ID"
ENV_INPUT_FILE = "HOOKWEAVE_INPUT_FILE"
ENV_OUTPUT_FILE = "HOOKWEAVE_OUTPUT_FILE"
ENV_TRANSFORM_TYPE = "HOOKWEAVE_TRANSFORM_TYPE"
ENV_TRANSFORM_ID = "HOOKWEAVE_TRANSFORM_ID"
ENV_DEBUG = "HOOKWEAVE_DEBUG"

# Checked after escapes and character classes are neutralised
_ESCAPED = re.compile(r"\\.")
_CHAR_CLASS = re.compile(r"\[[^\]]*\]")
_ADJACENT_QUANTIFIERS = re.compile(r"[*+}]\??[*+{]")
_GROUP_PREFIX = re.compile(r"\(\?(?:P<\w+>|<\w+>|<[=!]|[:=!>])")
_INLINE_GROUP = re.compile(r"\(\?(?:P=\w+|[aiLmsux-]*)\)")


class SinkFailure(Exception):
    """A process, script or webhook delivery failed or timed out."""


class TransformFailure(Exception):
    """A transform program crashed, timed out, or wrote no usable output."""


class HookAbort(Exception):
    """A blocking hook with onError=abort failed; stops the host operation."""

    def __init__(self, hook_id, reason):
        self.hook_id = hook_id
        self.reason = reason
        super().__init__(f"hook {hook_id!r} aborted: {reason}")


def _now_iso():
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _json_default(value):
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return str(value)


def serialize(value):
    """JSON-encode host data without ever raising."""
    try:
        return json.dumps(value, default=_json_default)
    except (TypeError, ValueError, RecursionError):
        return json.dumps(repr(value))


def program_argv(path):
    """Command line for an external program, chosen by extension."""
    path = os.path.expanduser(path)
    ext = os.path.splitext(path)[1].lower()
    if ext == ".py":
        return [sys.executable, path]
    if ext in NODE_EXTENSIONS:
        return ["node", path]
    return [path]


def event_matches(patterns, event):
    """Exact name, or both sides in the custom: family."""
    if event in patterns:
        return True
    return event.startswith(CUSTOM_PREFIX) and any(p.startswith(CUSTOM_PREFIX) for p in patterns)


def _nested_quantifier(skeleton):
    """True if a quantified group contains a quantifier at any depth."""
    skeleton = _GROUP_PREFIX.sub("(", _INLINE_GROUP.sub("x", skeleton))
    stack = []
    for index, char in enumerate(skeleton):
        if char == "(":
            stack.append(False)
        elif char == ")":
            if not stack:
                continue
            inner = stack.pop()
            quantified = skeleton[index + 1:index + 2] in ("*", "+", "{")
            if inner and quantified:
                return True
            if stack and (inner or quantified):
                stack[-1] = True
        elif char in "*+}" and stack:
            stack[-1] = True
    return False


def _timeout_s(spec):
    return (spec.get("timeout") or DEFAULT_TIMEOUT_MS) / 1000.0


# =============================================================================
# Logging
# =============================================================================

class RuntimeLog:
    """JSON-lines log for the embedded runtime.

    Writes nothing unless enabled; HOOKWEAVE_DEBUG mirrors every entry to
    stderr regardless of level.
    """

    def __init__(self, settings=None):
        settings = settings or {}
        self.enabled = bool(settings.get("enabled"))
        self.path = os.path.expanduser(
            settings.get("log_file") or os.path.join("~", ".hookweave", "events.log")
        )
        self.threshold = LOG_LEVELS.get(settings.get("log_level") or "info", 1)
        self.mirror = bool(os.environ.get(ENV_DEBUG))
        self._lock = threading.Lock()

    def __call__(self, level, message, data=None):
        if self.mirror:
            print(f"[hookweave:{level}] {message} {serialize(data or {})}", file=sys.stderr)
        if not self.enabled or LOG_LEVELS.get(level, 1) < self.threshold:
            return
        entry = serialize({
            "timestamp": _now_iso(),
            "level": level,
            "message": message,
            "data": data or {},
        })
        try:
            with self._lock:
                os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(entry + "\n")
        except OSError:
            pass  # Never raise into the host


# =============================================================================
# Bounded Regex Compiler
# =============================================================================

class BoundedRegexCompiler:
    """Validates and caches user-supplied filter patterns.

    Rejected patterns (too long, catastrophic-backtracking shape, invalid) are
    cached as None so each one is reported once.
    """

    def __init__(self, log, max_length=MAX_REGEX_LENGTH, max_input=MAX_REGEX_INPUT,
                 max_entries=MAX_REGEX_CACHE):
        self._log = log
        self.max_length = max_length
        self.max_input = max_input
        self.max_entries = max_entries
        self._cache = OrderedDict()
        self._lock = threading.Lock()

    def rejection_reason(self, pattern):
        if len(pattern) > self.max_length:
            return f"longer than {self.max_length} characters"
        skeleton = _CHAR_CLASS.sub("x", _ESCAPED.sub("x", pattern))
        if _ADJACENT_QUANTIFIERS.search(skeleton):
            return "adjacent quantifiers"
        if _nested_quantifier(skeleton):
            return "nested quantifier"
        return None

    def compile(self, pattern):
        with self._lock:
            if pattern in self._cache:
                self._cache.move_to_end(pattern)
                return self._cache[pattern]

        compiled = None
        reason = self.rejection_reason(pattern)
        if reason is None:
            try:
                compiled = re.compile(pattern)
            except re.error as exc:
                reason = f"invalid: {exc}"
        if reason is not None:
            self._log("warn", "Regex filter rejected", {"pattern": pattern[:100], "reason": reason})

        with self._lock:
            self._cache[pattern] = compiled
            while len(self._cache) > self.max_entries:
                self._cache.popitem(last=False)
        return compiled

    def matches(self, pattern, text):
        """True/False, or None when the filter must be treated as absent."""
        if len(text) > self.max_input:
            self._log("warn", "Payload too large for regex filter, skipping", {"size": len(text)})
            return None
        compiled = self.compile(pattern)
        if compiled is None:
            return None
        return compiled.search(text) is not None


# =============================================================================
# Event Dispatcher
# =============================================================================

class Scheduler:
    """spawn-and-forget / spawn-and-await primitives for sink delivery."""

    def spawn_and_forget(self, fn, name="hookweave-sink"):
        thread = threading.Thread(target=fn, name=name, daemon=True)
        thread.start()
        return thread

    def spawn_and_await(self, fn):
        return fn()


class EventDispatcher:
    """Hook registry plus emit() fan-out.

    Blocking hooks run inline in registration order; async process/script
    hooks are started in a detached session and never waited on; webhooks
    always deliver from a background thread.
    """

    def __init__(self, hooks, log, regexes, scheduler=None):
        self.hooks = tuple(hooks)
        self._log = log
        self._regexes = regexes
        self.scheduler = scheduler or Scheduler()
        self._stopping = threading.Event()

    def matching_hooks(self, event):
        return [h for h in self.hooks if event_matches(h.get("events") or (), event)]

    def emit(self, event, data=None):
        if data is None:
            data = {}
        elif not isinstance(data, dict):
            data = {"value": data}
        self._log("debug", "Event emitted", {"event": event})

        for hook in self.matching_hooks(event):
            try:
                self._fire(hook, event, data)
            except HookAbort:
                raise
            except Exception as exc:
                self._log("error", "Hook execution error", {
                    "hookId": hook.get("id"), "event": event, "error": repr(exc),
                })

    def close(self):
        """Interrupt pending retry waits."""
        self._stopping.set()

    def build_payload(self, hook, event, data):
        payload = dict(data)
        payload["event"] = event
        payload["timestamp"] = _now_iso()
        payload["hookId"] = hook.get("id")
        payload["hookName"] = hook.get("name") or hook.get("id")
        return payload

    def passes_filter(self, hook, payload, serialized):
        """tools -> tools_exclude -> message_types -> regex, first failure wins."""
        flt = hook.get("filter") or {}
        tool_name = payload.get("toolName")

        tools = flt.get("tools")
        if tools and tool_name is not None and tool_name not in tools:
            return False
        excluded = flt.get("tools_exclude")
        if excluded and tool_name is not None and tool_name in excluded:
            return False
        message_types = flt.get("message_types")
        message_type = payload.get("messageType")
        if message_types and message_type is not None and message_type not in message_types:
            return False
        regex = flt.get("regex")
        if regex and self._regexes.matches(regex, serialized) is False:
            return False
        return True

    def _fire(self, hook, event, data):
        payload = self.build_payload(hook, event, data)
        serialized = serialize(payload)
        if not self.passes_filter(hook, payload, serialized):
            self._log("debug", "Hook filtered out", {"hookId": hook.get("id"), "event": event})
            return

        self._log("debug", "Executing hook", {"hookId": hook.get("id"), "event": event, "type": hook.get("type")})
        if hook.get("type") == "webhook":
            self.scheduler.spawn_and_forget(
                lambda: self.deliver(hook, payload, serialized, blocking=False),
                name=f"hookweave-{hook.get('id')}",
            )
        elif hook.get("async", True):
            self._start_detached(hook, payload, serialized)
        else:
            self.scheduler.spawn_and_await(lambda: self.deliver(hook, payload, serialized, blocking=True))

    def deliver(self, hook, payload, serialized, blocking):
        """Invoke the sink under the hook's error policy.

        Returns True on success. Raises HookAbort only for blocking hooks
        whose policy is abort.
        """
        policy = hook.get("on_error") or "continue"
        attempts = 1
        if policy == "retry":
            attempts += max(0, int(hook.get("retry_count") or 0))

        failure = None
        for attempt in range(attempts):
            try:
                self.invoke(hook, payload, serialized)
            except SinkFailure as exc:
                failure = exc
                self._log("warn", "Hook attempt failed", {
                    "hookId": hook.get("id"), "attempt": attempt + 1, "error": str(exc),
                })
                if attempt + 1 < attempts:
                    self._backoff(hook, attempt)
                continue
            self._log("info", "Hook executed", {"hookId": hook.get("id"), "event": payload.get("event")})
            return True

        if policy == "abort" and blocking:
            raise HookAbort(hook.get("id"), str(failure))
        self._log("error", "Hook failed", {"hookId": hook.get("id"), "error": str(failure), "policy": policy})
        return False

    def _backoff(self, hook, attempt):
        base = (hook.get("retry_delay") or 0) / 1000.0
        delay = min(base * (2 ** attempt), MAX_BACKOFF_S)
        if delay > 0:
            self._stopping.wait(delay)

    def invoke(self, hook, payload, serialized):
        """Run one delivery attempt synchronously. Raises SinkFailure."""
        kind = hook.get("type")
        if kind == "webhook":
            self._post(hook, payload, serialized)
        elif kind in ("process", "script"):
            self._run(hook, payload, serialized)
        else:
            raise SinkFailure(f"unknown sink type {kind!r}")

    def sink_env(self, hook, payload, serialized):
        """Child environment. Payload travels as data, never as shell text."""
        env = dict(os.environ)
        env.update(hook.get("env") or {})
        env[ENV_EVENT] = str(payload.get("event"))
        env[ENV_DATA] = serialized
        env[ENV_DATA_BASE64] = base64.b64encode(serialized.encode("utf-8")).decode("ascii")
        env[ENV_HOOK_ID] = str(hook.get("id"))
        env[ENV_HOOK_NAME] = str(hook.get("name") or hook.get("id"))
        if payload.get("toolName") is not None:
            env[ENV_TOOL_NAME] = str(payload["toolName"])
        if payload.get("toolId") is not None:
            env[ENV_TOOL_ID] = str(payload["toolId"])
        return env

    def _command(self, hook):
        """(args, shell) for a process or script sink."""
        if hook.get("type") == "script":
            return program_argv(hook["script"]), False
        return hook["command"], True

    def _run(self, hook, payload, serialized):
        args, shell = self._command(hook)
        try:
            completed = subprocess.run(
                args,
                shell=shell,
                env=self.sink_env(hook, payload, serialized),
                timeout=_timeout_s(hook),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired:
            raise SinkFailure(f"timed out after {_timeout_s(hook):.1f}s")
        except (OSError, ValueError) as exc:
            raise SinkFailure(str(exc))
        if completed.returncode != 0:
            raise SinkFailure(f"exit code {completed.returncode}")

    def _start_detached(self, hook, payload, serialized):
        args, shell = self._command(hook)
        try:
            subprocess.Popen(
                args,
                shell=shell,
                env=self.sink_env(hook, payload, serialized),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            self._log("error", "Detached hook failed to start", {"hookId": hook.get("id"), "error": str(exc)})

    def _post(self, hook, payload, serialized):
        request = urllib.request.Request(
            hook["webhook"],
            data=serialized.encode("utf-8"),
            method="POST",
            headers={
                "Content-Type": "application/json",
                "User-Agent": "hookweave",
                "X-Hookweave-Event": str(payload.get("event")),
                "X-Hookweave-Hook-Id": str(hook.get("id")),
            },
        )
        try:
            with urllib.request.urlopen(request, timeout=_timeout_s(hook)) as response:
                status = response.status
        except urllib.error.HTTPError as exc:
            raise SinkFailure(f"HTTP {exc.code}")
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise SinkFailure(str(exc))
        if not 200 <= status < 300:
            raise SinkFailure(f"HTTP {status}")


# =============================================================================
# Transform Dispatcher
# =============================================================================

class TransformDispatcher:
    """Synchronous, priority-ordered pipeline over external programs.

    Stages arrive pre-sorted and pre-grouped from the generator. Every failure
    is fail-open: the stage keeps the value it had before the failing step.
    """

    def __init__(self, transforms_by_stage, log):
        self.stages = {
            stage: tuple(specs)
            for stage, specs in (transforms_by_stage or {}).items()
            if specs
        }
        self._log = log

    def has_transforms_for_stage(self, stage):
        return stage in self.stages

    def run_stage(self, stage, data, context=None):
        specs = self.stages.get(stage)
        if not specs:
            return data
        context = dict(context or {})
        tool_name = context.get("toolName")

        for spec in specs:
            tools = (spec.get("filter") or {}).get("tools")
            if tools and tool_name is not None and tool_name not in tools:
                continue
            self._log("debug", "Running transform", {"id": spec.get("id"), "type": stage})
            try:
                data = self.execute(spec, {"data": data, "context": context, "type": stage})
            except Exception as exc:
                self._log("error", "Transform failed", {"id": spec.get("id"), "type": stage, "error": str(exc)})
        return data

    def execute(self, spec, envelope):
        """Round-trip one envelope through a transform program.

        Raises TransformFailure; the temporary directory is removed on every
        exit path.
        """
        with tempfile.TemporaryDirectory(prefix="hookweave-transform-") as workdir:
            input_file = os.path.join(workdir, "input.json")
            output_file = os.path.join(workdir, "output.json")
            try:
                with open(input_file, "w", encoding="utf-8") as f:
                    f.write(json.dumps(envelope, default=_json_default))
            except (TypeError, ValueError, RecursionError, OSError) as exc:
                raise TransformFailure(f"cannot write envelope: {exc}")

            env = dict(os.environ)
            env[ENV_INPUT_FILE] = input_file
            env[ENV_OUTPUT_FILE] = output_file
            env[ENV_TRANSFORM_TYPE] = str(envelope.get("type"))
            env[ENV_TRANSFORM_ID] = str(spec.get("id"))
            try:
                completed = subprocess.run(
                    program_argv(spec["script"]),
                    env=env,
                    timeout=_timeout_s(spec),
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except subprocess.TimeoutExpired:
                raise TransformFailure(f"timed out after {_timeout_s(spec):.1f}s")
            except OSError as exc:
                raise TransformFailure(str(exc))
            if completed.returncode != 0:
                self._log("debug", "Transform exited non-zero", {"id": spec.get("id"), "code": completed.returncode})

            try:
                with open(output_file, encoding="utf-8") as f:
                    result = json.load(f)
            except FileNotFoundError:
                raise TransformFailure("no output written")
            except (OSError, ValueError) as exc:
                raise TransformFailure(f"unreadable output: {exc}")

        if not isinstance(result, dict) or "data" not in result:
            raise TransformFailure("output is not an envelope")
        self._log("debug", "Transform succeeded", {"id": spec.get("id")})
        return result["data"]


# =============================================================================
# Facade
# =============================================================================

class Instrumentation:
    """The object a host's call-sites reach through its handle."""

    def __init__(self, hooks=(), transforms=None, logging=None):
        self.log = RuntimeLog(logging)
        self.regexes = BoundedRegexCompiler(self.log)
        self.events = EventDispatcher(hooks, self.log, self.regexes)
        self.transforms = TransformDispatcher(transforms, self.log)

    @classmethod
    def from_config(cls, config):
        return cls(config.get("hooks") or (), config.get("transforms") or {}, config.get("logging") or {})

    def emit(self, event, data=None):
        self.events.emit(event, data)

    def has_transforms_for_stage(self, stage):
        return self.transforms.has_transforms_for_stage(stage)

    def run_stage(self, stage, data, context=None):
        return self.transforms.run_stage(stage, data, context)

    def emit_command(self):
        """Definition of the /emit command appended to the host's command list."""
        return {
            "type": "local",
            "name": "emit",
            "description": "Emit a custom hookweave event (for testing hooks)",
            "argument_hint": "<event-name> [json-data]",
            "is_enabled": lambda: True,
            "is_hidden": False,
            "call": self.emit_from_command,
            "user_facing_name": lambda: "emit",
        }

    def emit_from_command(self, args):
        args = (args or "").strip()
        if not args:
            raise ValueError("Please specify an event name. Usage: /emit <event-name> [json-data]")
        name, _, raw = args.partition(" ")
        event = name if name.startswith(CUSTOM_PREFIX) else CUSTOM_PREFIX + name
        data = {}
        if raw.strip():
            try:
                parsed = json.loads(raw)
                data = parsed if isinstance(parsed, dict) else {"value": parsed}
            except ValueError:
                data = {"raw": raw}
        self.emit(event, data)
        return {"type": "text", "value": f"Emitted event {event} with data: {serialize(data)}"}
