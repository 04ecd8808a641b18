"""Version handling module.

This module handles:
- Validating build version strings
- Dotted-integer version comparison
- Resolving component versions against published releases
"""

from limeos_imagegen.versions.resolver import (
    NoMatchingVersionError,
    ReleaseFetchError,
    ReleaseInfo,
    ResolvedVersion,
    resolve_version,
    resolve_with_fallback,
    select_release,
)
from limeos_imagegen.versions.semver import (
    InvalidVersionFormatError,
    compare_versions,
    extract_major,
    strip_version_prefix,
    validate_version,
)

__all__ = [
    "InvalidVersionFormatError",
    "NoMatchingVersionError",
    "ReleaseFetchError",
    "ReleaseInfo",
    "ResolvedVersion",
    "compare_versions",
    "extract_major",
    "resolve_version",
    "resolve_with_fallback",
    "select_release",
    "strip_version_prefix",
    "validate_version",
]
