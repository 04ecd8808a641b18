"""Component binary acquisition.

This module handles:
- Reusing locally built component binaries when present
- Resolving component versions against published releases
- Downloading release binaries with SHA-256 verification
- Partitioning failures between required and optional components
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import httpx

from limeos_imagegen.config import Settings
from limeos_imagegen.errors import DOWNLOAD_ERROR, VERIFICATION_ERROR, ImagegenError
from limeos_imagegen.fsops import FilesystemError, copy_file
from limeos_imagegen.types import ComponentSpec
from limeos_imagegen.versions import resolve_with_fallback

logger = logging.getLogger(__name__)

# Chunk size for streaming downloads
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


class DownloadError(ImagegenError):
    """Raised when a release asset cannot be downloaded."""

    def __init__(self, message: str, code: str = DOWNLOAD_ERROR) -> None:
        super().__init__(message, code)


class VerificationError(ImagegenError):
    """Raised when a downloaded file does not match its published checksum."""

    def __init__(self, message: str, code: str = VERIFICATION_ERROR) -> None:
        super().__init__(message, code)


class ComponentFetchError(ImagegenError):
    """Raised when a required component cannot be obtained."""

    def __init__(self, component: str, message: str, code: str) -> None:
        super().__init__(f"Failed to fetch {component}: {message}", code)
        self.component = component


@dataclass
class DownloadResult:
    """Result of a verified download."""

    path: Path
    checksum: str
    size_bytes: int


def create_http_client(settings: Settings) -> httpx.Client:
    """Create the HTTP client used for release metadata and downloads.

    Release downloads redirect to a CDN, so redirects are followed.
    """
    return httpx.Client(
        headers={"User-Agent": settings.user_agent},
        follow_redirects=True,
        timeout=settings.request_timeout,
    )


def build_release_asset_url(
    repo: str, tag: str, asset: str, org: str, download_base: str
) -> str:
    """Build the download URL of a release asset."""
    return f"{download_base.rstrip('/')}/{org}/{repo}/releases/download/{tag}/{asset}"


def parse_checksums(content: str, filename: str) -> str | None:
    """Find the SHA-256 digest for ``filename`` in a checksum manifest.

    Lines have the form ``<64 hex digits><two spaces><filename>``. The name
    must match exactly; substrings of longer names do not count.

    Returns:
        Lowercase hex digest, or None if the file is not listed.
    """
    for line in content.splitlines():
        digest, sep, name = line.strip().partition("  ")
        if not sep or name.strip() != filename:
            continue
        if len(digest) == 64 and all(c in "0123456789abcdefABCDEF" for c in digest):
            return digest.lower()
    return None


def compute_file_sha256(file_path: Path, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    """Compute the SHA-256 checksum of a file."""
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def _discard_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove partial download %s: %s", path, e)


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    expected_checksum: str | None = None,
    timeout: float = 600,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download a file with optional checksum verification.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        expected_checksum: Expected SHA-256 checksum (optional).
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        DownloadResult with path, checksum, and size.

    Raises:
        DownloadError: If the download fails, cannot be written or yields an
            empty file.
        VerificationError: If checksum verification fails.
    """
    logger.info("Downloading %s", url)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            total_bytes = 0
            sha256 = hashlib.sha256()
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    sha256.update(chunk)
                    total_bytes += len(chunk)

    except httpx.HTTPStatusError as e:
        _discard_partial(dest_path)
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        _discard_partial(dest_path)
        raise DownloadError(f"Timeout downloading {url}", code="timeout") from e
    except httpx.RequestError as e:
        _discard_partial(dest_path)
        raise DownloadError(
            f"Network error downloading {url}: {e}", code="network_error"
        ) from e
    except OSError as e:
        _discard_partial(dest_path)
        raise DownloadError(
            f"Failed to write {dest_path}: {e}", code="write_error"
        ) from e

    if total_bytes == 0:
        _discard_partial(dest_path)
        raise DownloadError(f"Downloaded file is empty: {url}", code="empty_download")

    computed = sha256.hexdigest()
    if expected_checksum and computed != expected_checksum.lower():
        _discard_partial(dest_path)
        raise VerificationError(
            f"Checksum mismatch for {dest_path.name}: "
            f"expected {expected_checksum.lower()}, got {computed}"
        )

    logger.info(
        "Downloaded %s (%d bytes, checksum: %s)",
        dest_path.name,
        total_bytes,
        computed[:16] + "...",
    )
    return DownloadResult(path=dest_path, checksum=computed, size_bytes=total_bytes)


def fetch_expected_checksum(
    client: httpx.Client,
    url: str,
    filename: str,
    timeout: float = 30,
) -> str | None:
    """Fetch a checksum manifest and look up ``filename``.

    A missing manifest or entry is not an error; the download then proceeds
    unverified.

    Returns:
        Expected digest, or None if unavailable.
    """
    try:
        response = client.get(url, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Could not fetch checksums from %s: %s", url, e)
        return None

    checksum = parse_checksums(response.text, filename)
    if checksum is None:
        logger.warning("No checksum entry for %s, skipping verification", filename)
    return checksum


class ComponentFetcher:
    """Places component binaries into the build's components directory.

    Args:
        client: HTTPX client instance.
        settings: Settings providing release host and local paths.
        components_dir: Destination directory (``build/components``).
    """

    def __init__(
        self, client: httpx.Client, settings: Settings, components_dir: Path
    ) -> None:
        self.client = client
        self.settings = settings
        self.components_dir = components_dir

    def destination(self, spec: ComponentSpec) -> Path:
        return self.components_dir / spec.repo_name

    def copy_local(self, spec: ComponentSpec) -> Path | None:
        """Copy a locally built binary if one exists.

        Returns:
            Destination path, or None if no local binary is present.

        Raises:
            FilesystemError: If the local binary cannot be read or copied.
        """
        local = self.settings.local_bin_dir / spec.binary_name
        if not local.is_file():
            return None
        try:
            digest = compute_file_sha256(local)
        except OSError as e:
            raise FilesystemError(f"Failed to read {local}: {e}", code="read_error") from e
        logger.info(
            "Using local %s from %s (sha256 %s)", spec.binary_name, local, digest[:16] + "..."
        )
        return copy_file(local, self.destination(spec), mode=0o755)

    def download(self, spec: ComponentSpec, tag: str) -> Path:
        """Download and verify the release binary for ``tag``.

        Raises:
            DownloadError: If the download fails.
            VerificationError: If the checksum does not match.
            FilesystemError: If the binary cannot be made executable.
        """
        settings = self.settings
        url = build_release_asset_url(
            spec.repo_name, tag, spec.repo_name, settings.github_org, settings.download_base
        )
        checksums_url = build_release_asset_url(
            spec.repo_name,
            tag,
            settings.checksums_filename,
            settings.github_org,
            settings.download_base,
        )
        expected = fetch_expected_checksum(
            self.client, checksums_url, spec.repo_name, timeout=settings.request_timeout
        )
        result = download_file(
            self.client,
            url,
            self.destination(spec),
            expected_checksum=expected,
            timeout=settings.download_timeout,
        )
        try:
            result.path.chmod(0o755)
        except OSError as e:
            raise FilesystemError(
                f"Failed to make {result.path} executable: {e}", code="chmod_error"
            ) from e
        return result.path

    def fetch(self, spec: ComponentSpec, version: str) -> Path:
        """Obtain one component binary.

        Raises:
            ImagegenError: Any resolution, download or verification failure.
        """
        local = self.copy_local(spec)
        if local is not None:
            return local

        settings = self.settings
        resolved = resolve_with_fallback(
            self.client,
            spec.repo_name,
            version,
            org=settings.github_org,
            api_base=settings.api_base,
            api_version=settings.api_version,
            timeout=settings.request_timeout,
        )
        return self.download(spec, resolved.tag)

    def fetch_all(
        self, specs: Iterable[ComponentSpec], version: str
    ) -> dict[str, Path]:
        """Fetch every component.

        Returns:
            Mapping of repo name to binary path for components obtained.

        Raises:
            ComponentFetchError: If a required component fails.
        """
        fetched: dict[str, Path] = {}
        for spec in specs:
            try:
                fetched[spec.repo_name] = self.fetch(spec, version)
            except ImagegenError as e:
                if spec.required:
                    raise ComponentFetchError(spec.repo_name, str(e), e.code) from e
                logger.warning("Skipping optional component %s: %s", spec.repo_name, e)
        return fetched


__all__ = [
    "ComponentFetchError",
    "ComponentFetcher",
    "DownloadError",
    "DownloadResult",
    "VerificationError",
    "build_release_asset_url",
    "compute_file_sha256",
    "create_http_client",
    "download_file",
    "fetch_expected_checksum",
    "parse_checksums",
]
