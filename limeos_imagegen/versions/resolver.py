"""Component version resolution against GitHub releases.

This module handles:
- Fetching the published release list for a component
- Selecting the newest stable release within the requested major version
- Falling back to the requested version verbatim when the listing is unavailable
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from limeos_imagegen.errors import (
    NO_MATCHING_VERSION,
    RELEASE_FETCH_ERROR,
    ImagegenError,
)
from limeos_imagegen.types import Outcome
from limeos_imagegen.versions.semver import (
    InvalidVersionFormatError,
    compare_versions,
    extract_major,
)

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com/repos"
GITHUB_ORG = "limeos-org"
GITHUB_API_VERSION = "2022-11-28"

# Timeout for release metadata requests (seconds)
REQUEST_TIMEOUT = 30


class ReleaseFetchError(ImagegenError):
    """Raised when the release listing cannot be retrieved or parsed."""

    def __init__(self, message: str, code: str = RELEASE_FETCH_ERROR) -> None:
        super().__init__(message, code)


class NoMatchingVersionError(ImagegenError):
    """Raised when no stable release matches the requested major version."""

    def __init__(
        self, component: str, major: int, code: str = NO_MATCHING_VERSION
    ) -> None:
        super().__init__(
            f"No release found for {component} with major version {major}", code
        )
        self.component = component
        self.major = major


class ReleaseInfo(BaseModel):
    """A published release as returned by the releases API."""

    model_config = ConfigDict(extra="ignore")

    tag_name: str = Field(description="Git tag of the release")
    prerelease: bool = Field(default=False)
    draft: bool = Field(default=False)


_RELEASE_LIST = TypeAdapter(list[ReleaseInfo])


@dataclass(frozen=True)
class ResolvedVersion:
    """Outcome of resolving a component version.

    Attributes:
        component: Component repository name.
        requested: Version requested by the user.
        tag: Release tag to fetch.
        outcome: SUCCESS when resolved from the listing, FALLBACK when the
            requested version is used verbatim.
    """

    component: str
    requested: str
    tag: str
    outcome: Outcome = Outcome.SUCCESS


def build_releases_url(
    component: str,
    org: str = GITHUB_ORG,
    api_base: str = GITHUB_API_BASE,
) -> str:
    """Build the releases API URL for a component."""
    return f"{api_base.rstrip('/')}/{org}/{component}/releases"


def fetch_releases(
    client: httpx.Client,
    component: str,
    org: str = GITHUB_ORG,
    api_base: str = GITHUB_API_BASE,
    api_version: str = GITHUB_API_VERSION,
    timeout: float = REQUEST_TIMEOUT,
) -> list[ReleaseInfo]:
    """Fetch the published releases of a component.

    Args:
        client: HTTPX client instance.
        component: Component repository name.
        org: GitHub organization.
        api_base: Releases API base URL.
        api_version: Value for the X-GitHub-Api-Version header.
        timeout: Request timeout in seconds.

    Returns:
        List of ReleaseInfo in API order.

    Raises:
        ReleaseFetchError: On transport failure, HTTP error, or malformed JSON.
    """
    url = build_releases_url(component, org, api_base)
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": api_version,
    }
    logger.debug("Fetching releases from %s", url)

    try:
        response = client.get(url, headers=headers, timeout=timeout)
        response.raise_for_status()
        return _RELEASE_LIST.validate_json(response.content)

    except httpx.HTTPStatusError as e:
        raise ReleaseFetchError(
            f"Releases API returned HTTP {e.response.status_code} for {component}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise ReleaseFetchError(
            f"Timeout fetching releases for {component}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        raise ReleaseFetchError(
            f"Network error fetching releases for {component}: {e}",
            code="network_error",
        ) from e
    except ValidationError as e:
        raise ReleaseFetchError(
            f"Unexpected releases API response for {component}: {e.error_count()} error(s)",
            code="invalid_response",
        ) from e


def select_release(
    releases: Iterable[ReleaseInfo],
    requested: str,
    component: str = "",
) -> str:
    """Select the newest stable release sharing the requested major version.

    Args:
        releases: Candidate releases.
        requested: Requested version (e.g. 'v2.0.0').
        component: Component name, for error messages.

    Returns:
        The selected release tag.

    Raises:
        InvalidVersionFormatError: If ``requested`` has no leading integer.
        NoMatchingVersionError: If no candidate remains after filtering.
    """
    target_major = extract_major(requested)
    best: str | None = None

    for release in releases:
        if release.prerelease or release.draft:
            continue
        try:
            if extract_major(release.tag_name) != target_major:
                continue
        except InvalidVersionFormatError:
            continue
        if best is None or compare_versions(release.tag_name, best) > 0:
            best = release.tag_name

    if best is None:
        raise NoMatchingVersionError(component, target_major)
    return best


def resolve_version(
    client: httpx.Client,
    component: str,
    requested: str,
    **fetch_options: object,
) -> ResolvedVersion:
    """Resolve a component version against its published releases.

    Raises:
        InvalidVersionFormatError: If ``requested`` has no leading integer.
        ReleaseFetchError: If the release listing is unavailable.
        NoMatchingVersionError: If no stable release matches.
    """
    # Validate before touching the network
    extract_major(requested)
    releases = fetch_releases(client, component, **fetch_options)  # type: ignore[arg-type]
    tag = select_release(releases, requested, component)
    logger.info("Resolved %s version: %s -> %s", component, requested, tag)
    return ResolvedVersion(component=component, requested=requested, tag=tag)


def resolve_with_fallback(
    client: httpx.Client,
    component: str,
    requested: str,
    **fetch_options: object,
) -> ResolvedVersion:
    """Resolve a version, using the requested version verbatim if the listing fails.

    Only ReleaseFetchError degrades; invalid formats and missing matches
    still raise.
    """
    try:
        return resolve_version(client, component, requested, **fetch_options)
    except ReleaseFetchError as e:
        logger.warning(
            "Version resolution failed for %s (%s), using exact version %s",
            component,
            e,
            requested,
        )
        return ResolvedVersion(
            component=component,
            requested=requested,
            tag=requested,
            outcome=Outcome.FALLBACK,
        )


__all__ = [
    "GITHUB_API_BASE",
    "GITHUB_API_VERSION",
    "GITHUB_ORG",
    "NoMatchingVersionError",
    "ReleaseFetchError",
    "ReleaseInfo",
    "ResolvedVersion",
    "build_releases_url",
    "fetch_releases",
    "resolve_version",
    "resolve_with_fallback",
    "select_release",
]
