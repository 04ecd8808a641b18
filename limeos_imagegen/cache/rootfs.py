"""Base rootfs tarball cache.

This module handles:
- Locating the cached tarball for the current cache key
- Restoring a cached tarball into a fresh directory
- Saving a built rootfs atomically (partial file, then rename)
- Pruning tarballs written under other keys

Archive creation and extraction are delegated to ``tar``. Every failure is
reported as a fallback result so the caller rebuilds from scratch.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from limeos_imagegen.cache.key import CacheKey
from limeos_imagegen.executor import CommandExecutionError, CommandExecutor
from limeos_imagegen.fsops import FilesystemError, make_dirs, remove_tree
from limeos_imagegen.types import OperationResult

logger = logging.getLogger(__name__)

ROOTFS_PREFIX = "base-rootfs-"
ROOTFS_SUFFIX = ".tar.gz"
PARTIAL_SUFFIX = ".partial"

_ROOTFS_NAME = re.compile(r"base-rootfs-[0-9a-f]{64}\.tar\.gz")


def rootfs_artifact_name(key: CacheKey) -> str:
    """File name of the cached tarball for ``key``."""
    return f"{ROOTFS_PREFIX}{key}{ROOTFS_SUFFIX}"


class RootfsCache:
    """Content-addressed cache of base root filesystems.

    Args:
        cache_dir: Cache root directory.
        key: Cache key of the current build inputs.
        executor: Executor used to run ``tar``.
    """

    def __init__(self, cache_dir: Path, key: CacheKey, executor: CommandExecutor) -> None:
        self.cache_dir = cache_dir
        self.key = key
        self.executor = executor

    @property
    def artifact_path(self) -> Path:
        return self.cache_dir / rootfs_artifact_name(self.key)

    def exists(self) -> Path | None:
        """Return the cached tarball path, or None on a miss."""
        path = self.artifact_path
        if path.is_file():
            logger.info("Found cached base rootfs: %s", path.name)
            return path
        logger.info("No cached base rootfs for key %s", str(self.key)[:12])
        return None

    def restore(self, artifact: Path, dest: Path) -> OperationResult:
        """Extract a cached tarball into ``dest``.

        On failure the partially extracted destination is removed.

        Args:
            artifact: Cached tarball path (as returned by exists()).
            dest: Directory to extract into; created if missing.

        Returns:
            OperationResult; FALLBACK when the caller must rebuild.
        """
        logger.info("Restoring base rootfs from cache...")
        try:
            make_dirs(dest)
            result = self.executor.run(
                ["tar", "--numeric-owner", "-xzf", str(artifact), "-C", str(dest)]
            )
        except (CommandExecutionError, FilesystemError) as e:
            self._discard(dest)
            return OperationResult.fallback(
                f"Cache restore failed: {e}", code=e.code, artifact=str(artifact)
            )

        if not result.success:
            self._discard(dest)
            return OperationResult.fallback(
                f"Cache restore failed: tar exited with {result.exit_code}",
                code="restore_failed",
                artifact=str(artifact),
            )

        return OperationResult.ok("Restored base rootfs from cache", artifact=str(artifact))

    def save(self, source: Path) -> OperationResult:
        """Archive ``source`` into the cache under the current key.

        The archive is written to a ``.partial`` file and renamed into place,
        so a reader never sees a truncated tarball.
        """
        final = self.artifact_path
        partial = final.with_name(final.name + PARTIAL_SUFFIX)
        logger.info("Saving base rootfs to cache...")

        try:
            make_dirs(self.cache_dir)
            result = self.executor.run(
                ["tar", "--numeric-owner", "-czf", str(partial), "-C", str(source), "."]
            )
            if not result.success:
                self._discard(partial)
                return OperationResult.fallback(
                    f"Cache save failed: tar exited with {result.exit_code}",
                    code="save_failed",
                )
            partial.replace(final)
        except (CommandExecutionError, FilesystemError, OSError) as e:
            self._discard(partial)
            return OperationResult.fallback(f"Cache save failed: {e}", code="save_failed")

        logger.info("Cached base rootfs: %s", final.name)
        return OperationResult.ok("Saved base rootfs to cache", artifact=str(final))

    def prune(self) -> list[Path]:
        """Remove rootfs tarballs written under other keys.

        Returns:
            Paths that were removed.
        """
        if not self.cache_dir.is_dir():
            return []

        current = self.artifact_path.name
        removed: list[Path] = []
        for path in sorted(self.cache_dir.iterdir()):
            if path.name == current or not _ROOTFS_NAME.fullmatch(path.name):
                continue
            try:
                path.unlink()
            except OSError as e:
                logger.warning("Failed to prune stale cache entry %s: %s", path.name, e)
                continue
            logger.info("Pruned stale cache entry: %s", path.name)
            removed.append(path)
        return removed

    def _discard(self, path: Path) -> None:
        try:
            remove_tree(path)
        except FilesystemError as e:
            logger.warning("%s", e)


__all__ = ["ROOTFS_PREFIX", "RootfsCache", "rootfs_artifact_name"]
