"""
File I/O utilities with locking.

Includes:
- File locking (file_lock)
- Atomic text writes (atomic_write_text)
- Backups (backup_file, restore_backup)
- Path utilities (expand_path)
- Hashing (stable_hash)
"""
import hashlib
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock

from hookweave.config import BACKUP_SUFFIX, Timeouts

PathLike = str | Path


def stable_hash(text: str, length: int = 12) -> str:
    """Stable SHA-256 digest of text, truncated to `length` hex chars."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:length]


@contextmanager
def file_lock(path: PathLike, timeout: float = Timeouts.FILE_LOCK_S):
    """
    Context manager for an exclusive lock on `path`.

    The lock lives in a sibling `<path>.lock` file so concurrent patch runs
    against the same host file serialize.

    Usage:
        with file_lock("/path/to/host.py"):
            # read, patch, write
    """
    lock = FileLock(f"{Path(path)}.lock", timeout=timeout)
    with lock:
        yield


def read_text(path: PathLike) -> str:
    """Read a UTF-8 text file."""
    return Path(path).read_text(encoding="utf-8")


def atomic_write_text(path: PathLike, text: str) -> None:
    """
    Write text atomically using temp file + rename.

    The temp file is created next to the target so os.replace stays on one
    filesystem; it is removed if anything fails before the rename.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}_", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        if path.exists():
            shutil.copymode(path, temp_path)
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def backup_path_for(path: PathLike) -> Path:
    """Location of the pristine backup for a host file."""
    path = Path(path)
    return path.with_name(path.name + BACKUP_SUFFIX)


def backup_file(path: PathLike) -> Path:
    """
    Copy `path` to its backup location unless a backup already exists.

    The first backup is the pristine host text; later runs must not overwrite
    it with an already-patched copy.

    Returns:
        Path to the backup file
    """
    backup = backup_path_for(path)
    if not backup.exists():
        shutil.copy2(path, backup)
    return backup


def restore_backup(path: PathLike) -> bool:
    """Restore `path` from its backup. Returns False when no backup exists."""
    backup = backup_path_for(path)
    if not backup.exists():
        return False
    atomic_write_text(path, read_text(backup))
    return True


def expand_path(path: str) -> str:
    """Expand ~, environment variables, and normalize path."""
    expanded = os.path.expandvars(os.path.expanduser(path))
    return os.path.normpath(expanded)
