"""Cache store facade and inspection helpers.

This module handles:
- Opening the cache for a build run (or degrading to an uncached run)
- Reporting what the cache currently holds
- Clearing the cache root
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from limeos_imagegen.cache.key import CacheKey, compute_cache_key, compute_cache_key_for
from limeos_imagegen.cache.mount import apt_cache_dir
from limeos_imagegen.cache.packages import PackageBundleCache
from limeos_imagegen.cache.paths import resolve_cache_dir
from limeos_imagegen.cache.rootfs import RootfsCache
from limeos_imagegen.config import BuildConfig, Settings
from limeos_imagegen.errors import CacheDirectoryError
from limeos_imagegen.executor import CommandExecutor
from limeos_imagegen.fsops import remove_tree
from limeos_imagegen.types import BootMode

logger = logging.getLogger(__name__)


@dataclass
class CacheStore:
    """All cache areas of one cache root.

    Attributes:
        root: Cache root directory.
        key: Cache key of the current build inputs.
        rootfs: Base rootfs tarball cache.
        bundles: Package bundle cache per boot mode.
    """

    root: Path
    key: CacheKey
    rootfs: RootfsCache
    bundles: dict[BootMode, PackageBundleCache] = field(default_factory=dict)

    @classmethod
    def create(cls, root: Path, key: CacheKey, executor: CommandExecutor) -> CacheStore:
        return cls(
            root=root,
            key=key,
            rootfs=RootfsCache(root, key, executor),
            bundles={mode: PackageBundleCache(root, mode) for mode in BootMode},
        )

    def bundle(self, mode: BootMode) -> PackageBundleCache:
        return self.bundles[mode]


def open_cache_store(
    settings: Settings,
    config: BuildConfig,
    executor: CommandExecutor,
    env: Mapping[str, str] | None = None,
) -> CacheStore | None:
    """Open the cache for a build run.

    Returns:
        CacheStore, or None when caching is disabled or no cache root can be
        determined (the run then proceeds uncached).
    """
    if not config.use_cache:
        logger.info("Caching disabled")
        return None

    try:
        root = resolve_cache_dir(settings, env)
    except CacheDirectoryError as e:
        logger.warning("%s; continuing without cache", e)
        return None

    logger.debug("Using cache directory %s", root)
    return CacheStore.create(root, compute_cache_key_for(config), executor)


def describe_cache(
    settings: Settings, env: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Summarize the cache contents for the current settings.

    Raises:
        CacheDirectoryError: If no cache root can be determined.
    """
    root = resolve_cache_dir(settings, env)
    key = compute_cache_key(settings.distribution, settings.cache_version)
    rootfs = RootfsCache(root, key, CommandExecutor())
    artifact = rootfs.artifact_path

    return {
        "cache_dir": str(root),
        "exists": root.is_dir(),
        "key": str(key),
        "rootfs": {
            "path": str(artifact),
            "present": artifact.is_file(),
            "size_bytes": artifact.stat().st_size if artifact.is_file() else None,
        },
        "packages": {
            mode.value: len(PackageBundleCache(root, mode).files()) for mode in BootMode
        },
        "apt_archives": len(list(apt_cache_dir(root).glob("*.deb"))),
    }


def clear_cache(settings: Settings, env: Mapping[str, str] | None = None) -> bool:
    """Remove the whole cache root.

    Returns:
        True if something was removed.

    Raises:
        CacheDirectoryError: If no cache root can be determined.
        FilesystemError: If removal fails.
    """
    root = resolve_cache_dir(settings, env)
    removed = remove_tree(root)
    if removed:
        logger.info("Removed cache directory %s", root)
    return removed


__all__ = ["CacheStore", "clear_cache", "describe_cache", "open_cache_store"]
