"""Cache key computation for base root filesystems.

This module handles:
- Canonical input snapshot creation from the build configuration
- Deterministic hash computation over normalized inputs

The key covers only inputs that change the base rootfs. The requested OS
version is excluded so every LimeOS release reuses the same base image.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass
from typing import Any

from limeos_imagegen.config import BuildConfig


@dataclass(frozen=True)
class CacheInputs:
    """Canonical representation of the inputs that affect the base rootfs.

    Attributes:
        distribution: Debian release the rootfs is bootstrapped from.
        schema_version: Cache schema version; bumping it invalidates entries.
    """

    distribution: str
    schema_version: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CacheKey:
    """Opaque cache key; ``str()`` yields the 64-char lowercase hex digest."""

    digest: str

    def __str__(self) -> str:
        return self.digest


def serialize_inputs(inputs: CacheInputs) -> str:
    """Serialize cache inputs to canonical JSON (sorted keys, no whitespace)."""
    return json.dumps(inputs.to_dict(), sort_keys=True, separators=(",", ":"))


def compute_cache_key(distribution: str, schema_version: int) -> CacheKey:
    """Compute the cache key for a distribution and schema version.

    Args:
        distribution: Debian release identifier (e.g. 'bookworm').
        schema_version: Cache schema version.

    Returns:
        CacheKey wrapping the SHA-256 digest of the canonical inputs.
    """
    inputs = CacheInputs(distribution=distribution, schema_version=schema_version)
    digest = hashlib.sha256(serialize_inputs(inputs).encode("utf-8")).hexdigest()
    return CacheKey(digest)


def compute_cache_key_for(config: BuildConfig) -> CacheKey:
    """Compute the cache key for a build configuration."""
    return compute_cache_key(config.distribution, config.cache_version)


__all__ = [
    "CacheInputs",
    "CacheKey",
    "compute_cache_key",
    "compute_cache_key_for",
    "serialize_inputs",
]
