"""
Centralized configuration for hookweave.

All tunable constants in one place.
Patch-time modules import from here for consistency; the embedded runtime
keeps its own copies because it cannot import this package inside a host.

Categories:
- Paths: Data directory, log file, backups
- Timeouts: Sink and transform defaults
- Limits: Regex ceilings, retry caps, search windows
- Names: Event names, transform stages, environment variables
"""
import os
from pathlib import Path

# =============================================================================
# Paths
# =============================================================================

DATA_DIR = Path(os.environ.get("HOOKWEAVE_DATA_DIR", Path.home() / ".hookweave"))
LOG_FILE = DATA_DIR / "hookweave.jsonl"
RUNTIME_LOG_FILE = DATA_DIR / "events.log"
BACKUP_SUFFIX = ".hookweave.bak"

# =============================================================================
# Timeouts (milliseconds unless noted)
# =============================================================================

class Timeouts:
    """Timeout and backoff settings."""
    SINK_TIMEOUT_MS = 5000
    TRANSFORM_TIMEOUT_MS = 5000
    RETRY_DELAY_MS = 1000
    MAX_BACKOFF_S = 30.0
    FILE_LOCK_S = 10.0


# =============================================================================
# Limits
# =============================================================================

class Limits:
    """Ceilings and default counts."""
    DEFAULT_PRIORITY = 100
    DEFAULT_RETRY_COUNT = 3
    MAX_RETRY_COUNT = 10

    # Bounded regex compiler
    MAX_REGEX_LENGTH = 500
    MAX_REGEX_INPUT = 100_000
    MAX_REGEX_CACHE = 256

    # Locator
    SECONDARY_WINDOW = 500
    EXCERPT_CHARS = 120
    PATTERN_CACHE = 128

    # Wrap at most this many assistant message sites
    MAX_RESPONSE_SITES = 3

    # Minimum entries for a list literal to count as the command list
    COMMAND_LIST_MIN = 8


# =============================================================================
# Names
# =============================================================================

HANDLE = "_hookweave"
CUSTOM_PREFIX = "custom:"

SINK_KINDS = ("process", "webhook", "script")
SINK_ALIASES = {"command": "process"}
SINK_TARGET_FIELD = {"process": "command", "webhook": "webhook", "script": "script"}

ERROR_POLICIES = ("continue", "abort", "retry")
LOG_LEVELS = ("debug", "info", "warn", "error")

KNOWN_EVENTS = frozenset({
    "tool:before",
    "tool:after",
    "message:user",
    "message:assistant",
    "message:system",
    "session:start",
    "stream:start",
    "stream:chunk",
    "stream:end",
    "thinking:update",
})

TRANSFORM_TYPES = (
    "prompt:before",
    "prompt:system",
    "response:before",
    "tool:input",
    "tool:output",
)


class EnvVars:
    """Environment variable names shared with hook and transform programs."""
    EVENT = "HOOKWEAVE_EVENT"
    DATA = "HOOKWEAVE_DATA"
    DATA_BASE64 = "HOOKWEAVE_DATA_BASE64"
    HOOK_ID = "HOOKWEAVE_HOOK_ID"
    HOOK_NAME = "HOOKWEAVE_HOOK_NAME"
    TOOL_NAME = "HOOKWEAVE_TOOL_NAME"
    TOOL_ID = "HOOKWEAVE_TOOL_ID"
    INPUT_FILE = "HOOKWEAVE_INPUT_FILE"
    OUTPUT_FILE = "HOOKWEAVE_OUTPUT_FILE"
    TRANSFORM_TYPE = "HOOKWEAVE_TRANSFORM_TYPE"
    TRANSFORM_ID = "HOOKWEAVE_TRANSFORM_ID"
    DEBUG = "HOOKWEAVE_DEBUG"
