"""Filesystem primitives used by the cache store and the pipeline stages.

This module handles:
- Directory creation and recursive removal
- Single-file and glob-pattern copies with optional modes
- File writes and symlinks inside staged root filesystems
- Directory listing and first-match globbing
- Refusing to recurse into active mount points

Failures are raised as FilesystemError with a stable code.
"""

from __future__ import annotations

import logging
import re
import shutil
import time
from pathlib import Path

from limeos_imagegen.errors import FILESYSTEM_ERROR, ImagegenError

logger = logging.getLogger(__name__)

# Retry policy for removing trees that may hold transiently busy files
REMOVE_RETRIES = 3
REMOVE_RETRY_DELAY = 1.0

# Kernel mount table consulted before recursive removal
MOUNTS_FILE = Path("/proc/self/mounts")

MOUNTED_ERROR = "path_mounted"

_MOUNT_ESCAPE = re.compile(r"\\([0-7]{3})")


class FilesystemError(ImagegenError):
    """Raised when a filesystem primitive fails."""

    def __init__(self, message: str, code: str = FILESYSTEM_ERROR) -> None:
        super().__init__(message, code)


def make_dirs(path: Path) -> Path:
    """Create a directory tree (like ``mkdir -p``).

    Raises:
        FilesystemError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(
            f"Failed to create directory {path}: {e}", code="mkdir_error"
        ) from e
    return path


def copy_file(source: Path, dest: Path, mode: int | None = None) -> Path:
    """Copy a single file, creating parent directories as needed.

    Args:
        source: Path to source file.
        dest: Destination file path.
        mode: Optional file mode applied after the copy.

    Raises:
        FilesystemError: If the copy fails.
    """
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
        if mode is not None:
            dest.chmod(mode)
    except OSError as e:
        raise FilesystemError(
            f"Failed to copy {source} -> {dest}: {e}", code="copy_error"
        ) from e
    return dest


def copy_matching(source_dir: Path, pattern: str, dest_dir: Path) -> int:
    """Copy every file in ``source_dir`` matching ``pattern`` into ``dest_dir``.

    Returns:
        Number of files copied.

    Raises:
        FilesystemError: If nothing matches or a copy fails.
    """
    matches = sorted(p for p in source_dir.glob(pattern) if p.is_file())
    if not matches:
        raise FilesystemError(
            f"No files matching {pattern} in {source_dir}", code="no_match"
        )
    make_dirs(dest_dir)
    for item in matches:
        copy_file(item, dest_dir / item.name)
    return len(matches)


def _unescape_mount_field(field: str) -> str:
    return _MOUNT_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


def mounts_under(path: Path) -> list[Path]:
    """Mount points at or below ``path`` according to the kernel mount table.

    Bind mounts on the same device are invisible to ``st_dev`` checks, so the
    mount table is read instead. An unreadable table yields an empty list.
    """
    try:
        lines = MOUNTS_FILE.read_text(encoding="utf-8").splitlines()
    except OSError:
        return []

    base = path.resolve()
    found = []
    for line in lines:
        fields = line.split()
        if len(fields) < 2:
            continue
        point = Path(_unescape_mount_field(fields[1]))
        if point == base or base in point.parents:
            found.append(point)
    return found


def remove_tree(path: Path) -> bool:
    """Recursively remove a directory (or file) if it exists.

    A directory holding an active mount point is left untouched, since
    ``shutil.rmtree`` would descend into the mounted filesystem.

    Returns:
        True if something was removed, False if the path did not exist.

    Raises:
        FilesystemError: If removal fails or a mount point is still active.
    """
    if not path.exists() and not path.is_symlink():
        return False

    if path.is_dir() and not path.is_symlink():
        active = mounts_under(path)
        if active:
            raise FilesystemError(
                f"Refusing to remove {path}: {active[0]} is still mounted",
                code=MOUNTED_ERROR,
            )

    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as e:
        raise FilesystemError(
            f"Failed to remove {path}: {e}", code="remove_error"
        ) from e
    return True


def remove_tree_with_retries(
    path: Path,
    attempts: int = REMOVE_RETRIES,
    delay: float = REMOVE_RETRY_DELAY,
) -> bool:
    """Remove a tree, retrying a few times before giving up with a warning.

    Returns:
        True if the tree is gone, False if every attempt failed.
    """
    for attempt in range(1, attempts + 1):
        try:
            remove_tree(path)
            return True
        except FilesystemError as e:
            if e.code == MOUNTED_ERROR:
                logger.warning("Leaving %s in place: %s", path, e)
                return False
            if attempt < attempts:
                logger.warning("Cleanup attempt %d failed (%s), retrying...", attempt, e)
                time.sleep(delay)

    logger.warning("Failed to clean up %s after %d attempts", path, attempts)
    return False


def write_file(path: Path, content: str, mode: int | None = None) -> Path:
    """Write text content to a file, creating parent directories.

    Raises:
        FilesystemError: If the write fails.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if mode is not None:
            path.chmod(mode)
    except OSError as e:
        raise FilesystemError(
            f"Failed to write {path}: {e}", code="write_error"
        ) from e
    return path


def make_symlink(target: str | Path, link: Path) -> Path:
    """Create (or replace) a symlink at ``link`` pointing to ``target``.

    The target is stored verbatim so absolute targets stay valid inside a
    root filesystem.

    Raises:
        FilesystemError: If the link cannot be created.
    """
    try:
        link.parent.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(target)
    except OSError as e:
        raise FilesystemError(
            f"Failed to link {link} -> {target}: {e}", code="symlink_error"
        ) from e
    return link


def find_first(directory: Path, pattern: str) -> Path | None:
    """Return the first path (sorted) in ``directory`` matching ``pattern``."""
    if not directory.is_dir():
        return None
    matches = sorted(directory.glob(pattern))
    return matches[0] if matches else None


def list_dir(directory: Path) -> list[Path]:
    """Sorted entries of ``directory``; empty if it does not exist.

    Raises:
        FilesystemError: If the directory cannot be read.
    """
    if not directory.is_dir():
        return []
    try:
        return sorted(directory.iterdir())
    except OSError as e:
        raise FilesystemError(
            f"Failed to list {directory}: {e}", code="list_error"
        ) from e


__all__ = [
    "MOUNTED_ERROR",
    "FilesystemError",
    "copy_file",
    "copy_matching",
    "find_first",
    "list_dir",
    "make_dirs",
    "make_symlink",
    "mounts_under",
    "remove_tree",
    "remove_tree_with_retries",
    "write_file",
]
