"""Dotted-integer version parsing, validation and comparison."""

from __future__ import annotations

import re
from itertools import zip_longest

from limeos_imagegen.errors import INVALID_VERSION_FORMAT, ImagegenError

# Accepted format for build versions: X.Y.Z with an optional v/V prefix
VERSION_PATTERN = re.compile(r"[vV]?[0-9]+\.[0-9]+\.[0-9]+")

_LEADING_DIGITS = re.compile(r"[0-9]+")


class InvalidVersionFormatError(ImagegenError):
    """Raised when a version string has no leading integer."""

    def __init__(self, version: str, code: str = INVALID_VERSION_FORMAT) -> None:
        super().__init__(f"Invalid version format: {version!r}", code)
        self.version = version


def strip_version_prefix(version: str) -> str:
    """Remove a single leading 'v' or 'V'."""
    if version[:1] in ("v", "V"):
        return version[1:]
    return version


def validate_version(version: str) -> bool:
    """Return True if ``version`` is X.Y.Z or vX.Y.Z."""
    return VERSION_PATTERN.fullmatch(version) is not None


def extract_major(version: str) -> int:
    """Extract the major version (leading integer before the first '.').

    Raises:
        InvalidVersionFormatError: If no leading integer is present.
    """
    match = _LEADING_DIGITS.match(strip_version_prefix(version))
    if match is None:
        raise InvalidVersionFormatError(version)
    return int(match.group())


def version_segments(version: str) -> tuple[int, ...]:
    """Split a version into integer segments.

    Each dot-separated segment contributes its leading digits; a segment
    without digits counts as 0.
    """
    segments = []
    for part in strip_version_prefix(version).split("."):
        match = _LEADING_DIGITS.match(part)
        segments.append(int(match.group()) if match else 0)
    return tuple(segments)


def compare_versions(v1: str, v2: str) -> int:
    """Compare two versions segment by segment.

    Missing trailing segments are treated as zeros.

    Returns:
        Positive if v1 > v2, negative if v1 < v2, 0 if equal.
    """
    for a, b in zip_longest(version_segments(v1), version_segments(v2), fillvalue=0):
        if a != b:
            return 1 if a > b else -1
    return 0


__all__ = [
    "VERSION_PATTERN",
    "InvalidVersionFormatError",
    "compare_versions",
    "extract_major",
    "strip_version_prefix",
    "validate_version",
    "version_segments",
]
