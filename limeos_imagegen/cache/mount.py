"""Bind-mount of the host package cache into a root filesystem."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from limeos_imagegen.cache.packages import PACKAGES_SUBDIR
from limeos_imagegen.errors import ImagegenError
from limeos_imagegen.executor import CommandExecutionError, CommandExecutor
from limeos_imagegen.fsops import FilesystemError, make_dirs
from limeos_imagegen.types import OperationResult

logger = logging.getLogger(__name__)

APT_CACHE_SUBDIR = "apt"
ROOT_ARCHIVES_DIR = "var/cache/apt/archives"

UNMOUNT_ERROR = "unmount_failed"


class PackageCacheMountError(ImagegenError):
    """Raised when the package cache stays mounted inside a root filesystem."""

    def __init__(self, message: str, code: str = UNMOUNT_ERROR) -> None:
        super().__init__(message, code)


def apt_cache_dir(cache_dir: Path) -> Path:
    """Host directory holding downloaded ``.deb`` archives."""
    return cache_dir / PACKAGES_SUBDIR / APT_CACHE_SUBDIR


def mount_package_cache(
    executor: CommandExecutor, cache_dir: Path, root: Path
) -> OperationResult:
    """Bind-mount the host package cache onto the root's apt archive directory."""
    source = apt_cache_dir(cache_dir)
    target = root / ROOT_ARCHIVES_DIR
    try:
        make_dirs(source)
        make_dirs(target)
        result = executor.run(["mount", "--bind", str(source), str(target)])
    except (CommandExecutionError, FilesystemError) as e:
        return OperationResult.fallback(f"Package cache mount failed: {e}", code=e.code)

    if not result.success:
        return OperationResult.fallback(
            f"Package cache mount failed: mount exited with {result.exit_code}",
            code="mount_failed",
        )
    return OperationResult.ok("Mounted package cache", target=str(target))


def unmount_package_cache(
    executor: CommandExecutor, root: Path, lazy: bool = False
) -> OperationResult:
    """Unmount the package cache from the root's apt archive directory.

    A lazy unmount detaches the mount immediately even while it is busy.
    """
    target = root / ROOT_ARCHIVES_DIR
    argv = ["umount", "--lazy", str(target)] if lazy else ["umount", str(target)]
    try:
        result = executor.run(argv)
    except CommandExecutionError as e:
        return OperationResult.fallback(f"Package cache unmount failed: {e}", code=e.code)

    if not result.success:
        return OperationResult.fallback(
            f"Package cache unmount failed: umount exited with {result.exit_code}",
            code=UNMOUNT_ERROR,
        )
    return OperationResult.ok("Unmounted package cache")


def release_package_cache(executor: CommandExecutor, root: Path) -> None:
    """Unmount the package cache, falling back to a lazy unmount.

    Raises:
        PackageCacheMountError: If the cache is still mounted afterwards.
    """
    released = unmount_package_cache(executor, root)
    if released.success:
        return

    logger.warning("%s; retrying with a lazy unmount", released.message)
    released = unmount_package_cache(executor, root, lazy=True)
    if not released.success:
        raise PackageCacheMountError(
            f"{released.message}; host package cache is still mounted at "
            f"{root / ROOT_ARCHIVES_DIR}"
        )


@contextmanager
def package_cache_mount(
    executor: CommandExecutor, cache_dir: Path | None, root: Path
) -> Iterator[bool]:
    """Keep the host package cache mounted inside ``root`` for the block.

    Yields True when the mount is active. A missing cache root or a failed
    mount yields False and the block runs without the host cache. An active
    mount is always released, including when the block raises.

    Raises:
        PackageCacheMountError: If the mount cannot be released.
    """
    if cache_dir is None:
        yield False
        return

    mounted = mount_package_cache(executor, cache_dir, root)
    if not mounted.success:
        logger.warning("%s; installing without host package cache", mounted.message)
        yield False
        return

    try:
        yield True
    finally:
        release_package_cache(executor, root)


__all__ = [
    "UNMOUNT_ERROR",
    "PackageCacheMountError",
    "apt_cache_dir",
    "mount_package_cache",
    "package_cache_mount",
    "release_package_cache",
    "unmount_package_cache",
]
