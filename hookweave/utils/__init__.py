"""
Shared utilities for hookweave patch-time code.

Usage:
    from hookweave.utils import log_event, atomic_write_text
    # or
    from hookweave.utils.logging import log_event
"""
from .logging import (
    LogOnce,
    log_event,
    notify,
)

from .io import (
    atomic_write_text,
    backup_file,
    backup_path_for,
    expand_path,
    file_lock,
    read_text,
    restore_backup,
    stable_hash,
)

from .cache import (
    cached_call,
    create_lru_cache,
)

__all__ = [
    # Logging
    "LogOnce",
    "log_event",
    "notify",
    # I/O
    "atomic_write_text",
    "backup_file",
    "backup_path_for",
    "expand_path",
    "file_lock",
    "read_text",
    "restore_backup",
    "stable_hash",
    # Cache
    "cached_call",
    "create_lru_cache",
]
