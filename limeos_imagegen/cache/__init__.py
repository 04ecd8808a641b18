"""Build cache module.

This module handles:
- Cache root resolution from settings and the environment
- Deterministic cache keys for base root filesystems
- Rootfs tarball and per-boot-mode package bundle caches
- Bind-mounting the host package cache during package installs
"""

from limeos_imagegen.cache.key import CacheKey, compute_cache_key, compute_cache_key_for
from limeos_imagegen.cache.mount import PackageCacheMountError, package_cache_mount
from limeos_imagegen.cache.packages import PackageBundleCache
from limeos_imagegen.cache.paths import resolve_cache_dir
from limeos_imagegen.cache.rootfs import RootfsCache
from limeos_imagegen.cache.store import (
    CacheStore,
    clear_cache,
    describe_cache,
    open_cache_store,
)

__all__ = [
    "CacheKey",
    "CacheStore",
    "PackageBundleCache",
    "PackageCacheMountError",
    "RootfsCache",
    "clear_cache",
    "compute_cache_key",
    "compute_cache_key_for",
    "describe_cache",
    "open_cache_store",
    "package_cache_mount",
    "resolve_cache_dir",
]
