"""
Structured logging for patch-time code.

Uses loguru for JSON logging with automatic rotation.
Includes log-once pattern for suppressing duplicate warnings.
"""
import sys
import time

from loguru import logger

from hookweave.config import DATA_DIR, LOG_FILE


# =============================================================================
# Log-Once Pattern - Suppress duplicates within a time window
# =============================================================================

class LogOnce:
    """Warnings that repeat within a window are counted instead of logged.

    The first occurrence of a (component, event, message) key is logged; the
    next one after the window closes carries the number of repeats it hid.

    Usage:
        _log_once = LogOnce(period_sec=60)
        _log_once.warning("instrument", "site_skipped", "tool_lifecycle")
    """

    def __init__(self, period_sec: int = 300):
        self.period_sec = period_sec
        self._windows: dict[tuple, list] = {}  # key -> [window_start, hidden]

    def admit(self, key: tuple) -> int | None:
        """Number of hidden repeats if `key` may be logged now, else None."""
        now = time.monotonic()
        window = self._windows.get(key)
        if window is not None and now - window[0] < self.period_sec:
            window[1] += 1
            return None
        self._windows[key] = [now, 0]
        return window[1] if window else 0

    def warning(self, component: str, event_type: str, message: str, **extra):
        hidden = self.admit((component, event_type, message))
        if hidden is None:
            return
        data = {"msg": message, **extra}
        if hidden:
            data["suppressed"] = hidden
        log_event(component, event_type, data, "warning")


# Configure loguru: JSON format, 10MB rotation, keep 3 files.
# Default stderr handler is replaced by the file sink; notices go through notify().
logger.remove()
DATA_DIR.mkdir(parents=True, exist_ok=True)
logger.add(
    LOG_FILE,
    format="{message}",
    serialize=True,
    rotation="10 MB",
    retention=3,
    compression="gz",
    enqueue=True,
    catch=True,
)


def log_event(component: str, event_type: str, data: dict = None, level: str = "info"):
    """
    Log a structured event.

    Args:
        component: Emitting component (e.g., "splicer", "instrument")
        event_type: Event type (e.g., "site_skipped", "edit_applied")
        data: Additional context data
        level: Log level (debug, info, warning, error)
    """
    try:
        log_func = getattr(logger.bind(component=component, **(data or {})), level, None)
        if log_func is None:
            log_func = logger.bind(component=component, **(data or {})).info
        log_func(event_type)
    except Exception:
        pass  # Never raise


def notify(message: str) -> None:
    """Print an operator-visible, non-fatal notice to stderr."""
    print(f"[hookweave] {message}", file=sys.stderr)
