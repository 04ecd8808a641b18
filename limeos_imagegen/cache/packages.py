"""Cache of downloaded bootloader package bundles, one per boot mode."""

from __future__ import annotations

import logging
from pathlib import Path

from limeos_imagegen.fsops import FilesystemError, copy_matching, remove_tree
from limeos_imagegen.types import BootMode, OperationResult

logger = logging.getLogger(__name__)

PACKAGES_SUBDIR = "packages"
PACKAGE_PATTERN = "*.deb"


class PackageBundleCache:
    """Cached ``.deb`` files for one boot mode under ``<cache>/packages/<mode>``."""

    def __init__(self, cache_dir: Path, mode: BootMode) -> None:
        self.cache_dir = cache_dir
        self.mode = mode

    @property
    def path(self) -> Path:
        return self.cache_dir / PACKAGES_SUBDIR / self.mode.value

    def files(self) -> list[Path]:
        if not self.path.is_dir():
            return []
        return sorted(p for p in self.path.glob(PACKAGE_PATTERN) if p.is_file())

    def exists(self) -> bool:
        """True when at least one package file is cached."""
        return bool(self.files())

    def restore(self, dest: Path) -> OperationResult:
        """Copy cached package files into ``dest``."""
        try:
            count = copy_matching(self.path, PACKAGE_PATTERN, dest)
        except FilesystemError as e:
            return OperationResult.fallback(
                f"Failed to restore {self.mode.value} packages from cache: {e}",
                code=e.code,
            )
        logger.info("Restored %d %s package(s) from cache", count, self.mode.value)
        return OperationResult.ok("Restored packages from cache", count=count)

    def save(self, source: Path) -> OperationResult:
        """Replace the cached bundle with the package files in ``source``.

        Files are copied into a staging directory which is then swapped in,
        so the cached bundle is replaced as a whole. The previous bundle is
        kept until the swap succeeds.
        """
        staging = self.path.with_name(self.path.name + ".partial")
        try:
            remove_tree(staging)
            count = copy_matching(source, PACKAGE_PATTERN, staging)
            self._swap_in(staging)
        except (FilesystemError, OSError) as e:
            try:
                remove_tree(staging)
            except FilesystemError:
                logger.debug("Could not remove staging directory %s", staging)
            return OperationResult.fallback(
                f"Failed to cache {self.mode.value} packages: {e}",
                code="save_failed",
            )
        logger.info("Cached %d %s package(s)", count, self.mode.value)
        return OperationResult.ok("Saved packages to cache", count=count)

    def _swap_in(self, staging: Path) -> None:
        previous = self.path.with_name(self.path.name + ".old")
        remove_tree(previous)
        if self.path.exists():
            self.path.rename(previous)
        try:
            staging.rename(self.path)
        except OSError:
            if previous.exists():
                previous.rename(self.path)
            raise

        try:
            remove_tree(previous)
        except FilesystemError as e:
            logger.warning("Could not remove previous %s bundle: %s", self.mode.value, e)


__all__ = ["PACKAGES_SUBDIR", "PACKAGE_PATTERN", "PackageBundleCache"]
