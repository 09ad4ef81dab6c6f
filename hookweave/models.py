"""
Typed configuration contract for hooks and transforms.

Provides:
- Frozen spec dataclasses (HookSpec, HookFilter, TransformSpec, LoggingSettings)
- load_config(): mapping -> InstrumentConfig, with validation
- to_runtime(): the plain-dict form embedded into generated units

The config loader that produces the mapping lives outside this package; both
camelCase (as written in config files) and snake_case keys are accepted.

Usage:
    from hookweave.models import load_config

    config = load_config({
        "hooks": [{"id": "audit", "events": "tool:before", "type": "process",
                   "command": "~/.hookweave/hooks/audit.sh"}],
        "transforms": [],
    })
"""
from dataclasses import dataclass, field
from typing import Any, Mapping

from hookweave.config import (
    CUSTOM_PREFIX,
    ERROR_POLICIES,
    KNOWN_EVENTS,
    LOG_LEVELS,
    RUNTIME_LOG_FILE,
    SINK_ALIASES,
    SINK_KINDS,
    SINK_TARGET_FIELD,
    TRANSFORM_TYPES,
    Limits,
    Timeouts,
)
from hookweave.errors import ConfigError
from hookweave.utils.logging import LogOnce

_log_once = LogOnce(period_sec=300)


def _pick(raw: Mapping, snake: str, camel: str | None = None, default: Any = None) -> Any:
    """Read a key in snake_case, falling back to its camelCase spelling."""
    if snake in raw:
        return raw[snake]
    if camel and camel in raw:
        return raw[camel]
    return default


def _str_list(value: Any, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ConfigError(f"{where}: expected a string or list of strings, got {value!r}")


def _positive_int(value: Any, where: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"{where}: expected a non-negative integer, got {value!r}")
    return value


# =============================================================================
# Spec Dataclasses
# =============================================================================

@dataclass(frozen=True)
class HookFilter:
    """Optional predicates evaluated before a hook's sink fires."""
    tools: tuple[str, ...] = ()
    tools_exclude: tuple[str, ...] = ()
    message_types: tuple[str, ...] = ()
    regex: str | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping | None, where: str) -> "HookFilter | None":
        if raw is None:
            return None
        if not isinstance(raw, Mapping):
            raise ConfigError(f"{where}: filter must be a mapping")
        regex = raw.get("regex")
        if regex is not None and not isinstance(regex, str):
            raise ConfigError(f"{where}: filter.regex must be a string")
        return cls(
            tools=_str_list(raw.get("tools"), f"{where}.tools"),
            tools_exclude=_str_list(_pick(raw, "tools_exclude", "toolsExclude"), f"{where}.toolsExclude"),
            message_types=_str_list(_pick(raw, "message_types", "messageTypes"), f"{where}.messageTypes"),
            regex=regex,
        )

    def to_runtime(self) -> dict:
        out: dict[str, Any] = {}
        if self.tools:
            out["tools"] = list(self.tools)
        if self.tools_exclude:
            out["tools_exclude"] = list(self.tools_exclude)
        if self.message_types:
            out["message_types"] = list(self.message_types)
        if self.regex is not None:
            out["regex"] = self.regex
        return out


@dataclass(frozen=True)
class HookSpec:
    """A rule mapping events to one delivery sink."""
    id: str
    events: tuple[str, ...]
    type: str
    target: str
    name: str | None = None
    enabled: bool = True
    blocking: bool = False
    on_error: str = "continue"
    retry_count: int = Limits.DEFAULT_RETRY_COUNT
    retry_delay: int = Timeouts.RETRY_DELAY_MS
    timeout: int = Timeouts.SINK_TIMEOUT_MS
    env: tuple[tuple[str, str], ...] = ()
    filter: HookFilter | None = None

    @property
    def target_field(self) -> str:
        return SINK_TARGET_FIELD[self.type]

    @classmethod
    def from_mapping(cls, raw: Mapping, index: int) -> "HookSpec":
        if not isinstance(raw, Mapping):
            raise ConfigError(f"hooks[{index}]: expected a mapping")
        hook_id = raw.get("id")
        if not isinstance(hook_id, str) or not hook_id:
            raise ConfigError(f"hooks[{index}]: missing id")
        where = f"hook {hook_id!r}"

        kind = raw.get("type", "process")
        kind = SINK_ALIASES.get(kind, kind)
        if kind not in SINK_KINDS:
            raise ConfigError(f"{where}: unknown sink type {kind!r}")

        # Exactly one target populated, and it must match the sink kind
        populated = [f for f in ("command", "webhook", "script") if raw.get(f)]
        expected = SINK_TARGET_FIELD[kind]
        if populated != [expected]:
            raise ConfigError(
                f"{where}: sink {kind!r} needs exactly {expected!r}, found {populated or 'none'}"
            )
        target = raw[expected]
        if not isinstance(target, str):
            raise ConfigError(f"{where}: {expected} must be a string")

        events = _str_list(raw.get("events"), f"{where}.events")
        if not events:
            raise ConfigError(f"{where}: no events")
        for event in events:
            if event not in KNOWN_EVENTS and not event.startswith(CUSTOM_PREFIX):
                _log_once.warning("models", "unknown_event", event, hook=hook_id)

        on_error = _pick(raw, "on_error", "onError", "continue")
        if on_error not in ERROR_POLICIES:
            raise ConfigError(f"{where}: onError must be one of {ERROR_POLICIES}")

        retry_count = _positive_int(_pick(raw, "retry_count", "retryCount"), f"{where}.retryCount",
                                    Limits.DEFAULT_RETRY_COUNT)
        env = raw.get("env") or {}
        if not isinstance(env, Mapping) or not all(isinstance(v, str) for v in env.values()):
            raise ConfigError(f"{where}: env must map names to strings")

        return cls(
            id=hook_id,
            name=raw.get("name"),
            events=events,
            type=kind,
            target=target,
            enabled=bool(raw.get("enabled", True)),
            blocking=raw.get("async", True) is False,
            on_error=on_error,
            retry_count=min(retry_count, Limits.MAX_RETRY_COUNT),
            retry_delay=_positive_int(_pick(raw, "retry_delay", "retryDelay"), f"{where}.retryDelay",
                                      Timeouts.RETRY_DELAY_MS),
            timeout=_positive_int(raw.get("timeout"), f"{where}.timeout", Timeouts.SINK_TIMEOUT_MS),
            env=tuple(sorted(env.items())),
            filter=HookFilter.from_mapping(raw.get("filter"), where),
        )

    def to_runtime(self) -> dict:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "events": list(self.events),
            "type": self.type,
            self.target_field: self.target,
            "async": not self.blocking,
            "on_error": self.on_error,
            "retry_count": self.retry_count,
            "retry_delay": self.retry_delay,
            "timeout": self.timeout,
            "env": dict(self.env),
        }
        if self.filter is not None:
            out["filter"] = self.filter.to_runtime()
        return out


@dataclass(frozen=True)
class TransformSpec:
    """A typed pipeline stage handled by an external program."""
    id: str
    transform: str
    script: str
    name: str | None = None
    priority: int = Limits.DEFAULT_PRIORITY
    timeout: int = Timeouts.TRANSFORM_TIMEOUT_MS
    enabled: bool = True
    tools: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, raw: Mapping, index: int) -> "TransformSpec":
        if not isinstance(raw, Mapping):
            raise ConfigError(f"transforms[{index}]: expected a mapping")
        transform_id = raw.get("id")
        if not isinstance(transform_id, str) or not transform_id:
            raise ConfigError(f"transforms[{index}]: missing id")
        where = f"transform {transform_id!r}"

        stage = raw.get("transform")
        if stage not in TRANSFORM_TYPES:
            raise ConfigError(f"{where}: unknown transform type {stage!r}")
        script = raw.get("script")
        if not isinstance(script, str) or not script:
            raise ConfigError(f"{where}: missing script")

        priority = raw.get("priority")
        if priority is None:
            priority = Limits.DEFAULT_PRIORITY
        elif isinstance(priority, bool) or not isinstance(priority, int):
            raise ConfigError(f"{where}: priority must be an integer")

        filter_raw = raw.get("filter") or {}
        return cls(
            id=transform_id,
            name=raw.get("name"),
            transform=stage,
            script=script,
            priority=priority,
            timeout=_positive_int(raw.get("timeout"), f"{where}.timeout", Timeouts.TRANSFORM_TIMEOUT_MS),
            enabled=bool(raw.get("enabled", True)),
            tools=_str_list(filter_raw.get("tools"), f"{where}.filter.tools"),
        )

    def to_runtime(self) -> dict:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "transform": self.transform,
            "script": self.script,
            "priority": self.priority,
            "timeout": self.timeout,
        }
        if self.tools:
            out["filter"] = {"tools": list(self.tools)}
        return out


@dataclass(frozen=True)
class LoggingSettings:
    """Runtime log settings for the embedded unit."""
    enabled: bool = False
    log_file: str = str(RUNTIME_LOG_FILE)
    log_level: str = "info"

    @classmethod
    def from_mapping(cls, raw: Mapping | None) -> "LoggingSettings":
        if not raw:
            return cls()
        level = _pick(raw, "log_level", "logLevel", "info")
        if level == "warning":
            level = "warn"
        if level not in LOG_LEVELS:
            raise ConfigError(f"logging: logLevel must be one of {LOG_LEVELS}")
        return cls(
            enabled=bool(raw.get("enabled", False)),
            log_file=_pick(raw, "log_file", "logFile") or str(RUNTIME_LOG_FILE),
            log_level=level,
        )

    def to_runtime(self) -> dict:
        return {"enabled": self.enabled, "log_file": self.log_file, "log_level": self.log_level}


@dataclass(frozen=True)
class InstrumentConfig:
    """Everything one generation run needs."""
    hooks: tuple[HookSpec, ...] = ()
    transforms: tuple[TransformSpec, ...] = ()
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    events_enabled: bool = True
    transforms_enabled: bool = True

    @property
    def active_hooks(self) -> tuple[HookSpec, ...]:
        if not self.events_enabled:
            return ()
        return tuple(h for h in self.hooks if h.enabled)

    @property
    def active_transforms(self) -> tuple[TransformSpec, ...]:
        """Enabled transforms ordered by (priority, declaration order)."""
        if not self.transforms_enabled:
            return ()
        enabled = [t for t in self.transforms if t.enabled]
        # sorted() is stable, so ties keep declaration order
        return tuple(sorted(enabled, key=lambda t: t.priority))

    def stages(self) -> set[str]:
        return {t.transform for t in self.active_transforms}

    def has_work(self) -> bool:
        return bool(self.active_hooks or self.active_transforms)

    def to_runtime(self) -> dict:
        """Plain-dict form embedded into the generated unit.

        Transforms are pre-sorted and pre-grouped by stage.
        """
        by_stage: dict[str, list[dict]] = {}
        for spec in self.active_transforms:
            by_stage.setdefault(spec.transform, []).append(spec.to_runtime())
        return {
            "hooks": [h.to_runtime() for h in self.active_hooks],
            "transforms": by_stage,
            "logging": self.logging.to_runtime(),
        }


# =============================================================================
# Loading
# =============================================================================

def load_config(raw: Mapping) -> InstrumentConfig:
    """
    Build an InstrumentConfig from a configuration mapping.

    Accepts either the flat contract (`hooks`, `transforms`, `logging`) or the
    sectioned form (`events: {enabled, hooks, logging}`,
    `transforms: {enabled, transforms}`).

    Raises:
        ConfigError: on any contract violation, including duplicate ids
    """
    if not isinstance(raw, Mapping):
        raise ConfigError("configuration must be a mapping")

    events_section = raw.get("events")
    if isinstance(events_section, Mapping):
        hooks_raw = events_section.get("hooks") or []
        logging_raw = events_section.get("logging") or raw.get("logging")
        events_enabled = bool(events_section.get("enabled", True))
    else:
        hooks_raw = raw.get("hooks") or []
        logging_raw = raw.get("logging")
        events_enabled = True

    transforms_section = raw.get("transforms")
    if isinstance(transforms_section, Mapping):
        transforms_raw = transforms_section.get("transforms") or []
        transforms_enabled = bool(transforms_section.get("enabled", True))
    else:
        transforms_raw = transforms_section or []
        transforms_enabled = True

    hooks = tuple(HookSpec.from_mapping(h, i) for i, h in enumerate(hooks_raw))
    transforms = tuple(TransformSpec.from_mapping(t, i) for i, t in enumerate(transforms_raw))

    for kind, specs in (("hook", hooks), ("transform", transforms)):
        seen: set[str] = set()
        for spec in specs:
            if spec.id in seen:
                raise ConfigError(f"duplicate {kind} id {spec.id!r}")
            seen.add(spec.id)

    return InstrumentConfig(
        hooks=hooks,
        transforms=transforms,
        logging=LoggingSettings.from_mapping(logging_raw),
        events_enabled=events_enabled,
        transforms_enabled=transforms_enabled,
    )
