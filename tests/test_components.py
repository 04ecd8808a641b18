"""Tests for component binary acquisition.

These tests use mocked HTTP responses for the releases API, the checksum
manifest and the binary downloads.
"""

import hashlib
import stat

import httpx
import pytest
import respx

from limeos_imagegen.components import (
    ComponentFetchError,
    ComponentFetcher,
    DownloadError,
    VerificationError,
    build_release_asset_url,
    compute_file_sha256,
    create_http_client,
    download_file,
    fetch_expected_checksum,
    parse_checksums,
)
from limeos_imagegen.types import ComponentSpec

API = "https://api.github.com/repos/limeos-org"
DOWNLOADS = "https://github.com/limeos-org"

WIZARD = ComponentSpec("installation-wizard", "limeos-installation-wizard", required=True)
WM = ComponentSpec("window-manager", "limeos-window-manager", required=False)

BINARY = b"\x7fELF wizard binary"
BINARY_SHA = hashlib.sha256(BINARY).hexdigest()


def _asset_url(repo, tag, asset):
    return f"{DOWNLOADS}/{repo}/releases/download/{tag}/{asset}"


class TestBuildReleaseAssetUrl:
    """Tests for build_release_asset_url."""

    def test_url(self):
        url = build_release_asset_url(
            "installation-wizard", "v1.2.0", "SHA256SUMS", "limeos-org", "https://github.com/"
        )
        assert url == _asset_url("installation-wizard", "v1.2.0", "SHA256SUMS")


class TestParseChecksums:
    """Tests for parse_checksums."""

    def test_finds_entry(self):
        digest = "A" * 64
        content = f"{'b' * 64}  window-manager\n{digest}  installation-wizard\n"
        assert parse_checksums(content, "installation-wizard") == "a" * 64

    def test_requires_exact_name(self):
        """A longer file name containing the target should not match."""
        content = f"{'c' * 64}  installation-wizard.sig\n"
        assert parse_checksums(content, "installation-wizard") is None

    def test_rejects_malformed_digest(self):
        content = f"{'z' * 64}  installation-wizard\nabc  installation-wizard\n"
        assert parse_checksums(content, "installation-wizard") is None

    def test_requires_two_space_separator(self):
        content = f"{'d' * 64} installation-wizard\n"
        assert parse_checksums(content, "installation-wizard") is None

    def test_empty(self):
        assert parse_checksums("", "installation-wizard") is None


class TestCreateHttpClient:
    """Tests for create_http_client."""

    def test_client_configuration(self, settings):
        with create_http_client(settings) as client:
            assert client.headers["User-Agent"] == "limeos-iso-builder/1.0"
            assert client.follow_redirects is True


class TestDownloadFile:
    """Tests for download_file."""

    @respx.mock
    def test_download_with_checksum(self, tmp_path):
        url = "https://example.com/bin"
        respx.get(url).mock(return_value=httpx.Response(200, content=BINARY))
        dest = tmp_path / "out" / "bin"

        with httpx.Client() as client:
            result = download_file(client, url, dest, expected_checksum=BINARY_SHA.upper())

        assert result.path == dest
        assert result.checksum == BINARY_SHA
        assert result.size_bytes == len(BINARY)
        assert dest.read_bytes() == BINARY

    @respx.mock
    def test_checksum_mismatch_removes_file(self, tmp_path):
        url = "https://example.com/bin"
        respx.get(url).mock(return_value=httpx.Response(200, content=BINARY))
        dest = tmp_path / "bin"

        with httpx.Client() as client, pytest.raises(VerificationError) as exc_info:
            download_file(client, url, dest, expected_checksum="0" * 64)

        assert exc_info.value.code == "verification_error"
        assert not dest.exists()

    @respx.mock
    def test_empty_body(self, tmp_path):
        url = "https://example.com/bin"
        respx.get(url).mock(return_value=httpx.Response(200, content=b""))
        dest = tmp_path / "bin"

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, url, dest)

        assert exc_info.value.code == "empty_download"
        assert not dest.exists()

    @respx.mock
    def test_http_error(self, tmp_path):
        url = "https://example.com/bin"
        respx.get(url).mock(return_value=httpx.Response(404))

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, url, tmp_path / "bin")

        assert exc_info.value.code == "http_error"

    @respx.mock
    def test_network_error(self, tmp_path):
        url = "https://example.com/bin"
        respx.get(url).mock(side_effect=httpx.ConnectError("refused"))

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, url, tmp_path / "bin")

        assert exc_info.value.code == "network_error"

    @respx.mock
    def test_unwritable_destination(self, tmp_path):
        """A local write failure should surface as a DownloadError."""
        url = "https://example.com/bin"
        respx.get(url).mock(return_value=httpx.Response(200, content=BINARY))
        dest = tmp_path / "bin"
        dest.mkdir()

        with httpx.Client() as client, pytest.raises(DownloadError) as exc_info:
            download_file(client, url, dest)

        assert exc_info.value.code == "write_error"
        assert dest.is_dir()


class TestFetchExpectedChecksum:
    """Tests for fetch_expected_checksum."""

    @respx.mock
    def test_missing_manifest_is_not_an_error(self):
        url = "https://example.com/SHA256SUMS"
        respx.get(url).mock(return_value=httpx.Response(404))

        with httpx.Client() as client:
            assert fetch_expected_checksum(client, url, "installation-wizard") is None

    @respx.mock
    def test_found(self):
        url = "https://example.com/SHA256SUMS"
        respx.get(url).mock(
            return_value=httpx.Response(200, text=f"{BINARY_SHA}  installation-wizard\n")
        )

        with httpx.Client() as client:
            assert fetch_expected_checksum(client, url, "installation-wizard") == BINARY_SHA


class TestComponentFetcher:
    """Tests for ComponentFetcher."""

    def test_local_binary_preferred(self, settings, tmp_path):
        """A locally built binary should be copied without any network access."""
        local = settings.local_bin_dir / WIZARD.binary_name
        local.parent.mkdir(parents=True)
        local.write_bytes(BINARY)
        components_dir = tmp_path / "components"

        with respx.mock(assert_all_called=False) as router, httpx.Client() as client:
            fetcher = ComponentFetcher(client, settings, components_dir)
            path = fetcher.fetch(WIZARD, "1.2.0")
            assert not router.calls

        assert path == components_dir / "installation-wizard"
        assert path.read_bytes() == BINARY
        assert stat.S_IMODE(path.stat().st_mode) == 0o755
        assert compute_file_sha256(path) == BINARY_SHA

    @respx.mock
    def test_resolves_and_downloads(self, settings, tmp_path):
        respx.get(f"{API}/installation-wizard/releases").mock(
            return_value=httpx.Response(
                200, json=[{"tag_name": "v1.2.0"}, {"tag_name": "v1.4.1"}]
            )
        )
        respx.get(_asset_url("installation-wizard", "v1.4.1", "SHA256SUMS")).mock(
            return_value=httpx.Response(200, text=f"{BINARY_SHA}  installation-wizard\n")
        )
        respx.get(_asset_url("installation-wizard", "v1.4.1", "installation-wizard")).mock(
            return_value=httpx.Response(200, content=BINARY)
        )

        with httpx.Client() as client:
            fetcher = ComponentFetcher(client, settings, tmp_path / "components")
            path = fetcher.fetch(WIZARD, "1.2.0")

        assert path.read_bytes() == BINARY
        assert stat.S_IMODE(path.stat().st_mode) == 0o755

    @respx.mock
    def test_listing_failure_uses_requested_tag(self, settings, tmp_path):
        """An unavailable releases API should fall back to the exact version."""
        respx.get(f"{API}/installation-wizard/releases").mock(
            return_value=httpx.Response(403)
        )
        respx.get(_asset_url("installation-wizard", "1.2.0", "SHA256SUMS")).mock(
            return_value=httpx.Response(404)
        )
        download = respx.get(
            _asset_url("installation-wizard", "1.2.0", "installation-wizard")
        ).mock(return_value=httpx.Response(200, content=BINARY))

        with httpx.Client() as client:
            fetcher = ComponentFetcher(client, settings, tmp_path / "components")
            fetcher.fetch(WIZARD, "1.2.0")

        assert download.called

    @respx.mock
    def test_optional_failure_is_skipped(self, settings, tmp_path):
        respx.get(f"{API}/installation-wizard/releases").mock(
            return_value=httpx.Response(200, json=[{"tag_name": "v1.2.0"}])
        )
        respx.get(_asset_url("installation-wizard", "v1.2.0", "SHA256SUMS")).mock(
            return_value=httpx.Response(404)
        )
        respx.get(_asset_url("installation-wizard", "v1.2.0", "installation-wizard")).mock(
            return_value=httpx.Response(200, content=BINARY)
        )
        respx.get(f"{API}/window-manager/releases").mock(
            return_value=httpx.Response(200, json=[{"tag_name": "v9.0.0"}])
        )

        with httpx.Client() as client:
            fetcher = ComponentFetcher(client, settings, tmp_path / "components")
            fetched = fetcher.fetch_all([WIZARD, WM], "1.2.0")

        assert list(fetched) == ["installation-wizard"]

    @respx.mock
    def test_required_failure_raises(self, settings, tmp_path):
        respx.get(f"{API}/installation-wizard/releases").mock(
            return_value=httpx.Response(200, json=[{"tag_name": "v1.2.0"}])
        )
        respx.get(_asset_url("installation-wizard", "v1.2.0", "SHA256SUMS")).mock(
            return_value=httpx.Response(200, text=f"{'0' * 64}  installation-wizard\n")
        )
        respx.get(_asset_url("installation-wizard", "v1.2.0", "installation-wizard")).mock(
            return_value=httpx.Response(200, content=BINARY)
        )

        with httpx.Client() as client, pytest.raises(ComponentFetchError) as exc_info:
            ComponentFetcher(client, settings, tmp_path / "components").fetch_all(
                [WIZARD], "1.2.0"
            )

        assert exc_info.value.component == "installation-wizard"
        assert exc_info.value.code == "verification_error"
        assert not (tmp_path / "components" / "installation-wizard").exists()

    @respx.mock
    def test_optional_write_failure_is_skipped(self, settings, tmp_path):
        components_dir = tmp_path / "components"
        (components_dir / "window-manager").mkdir(parents=True)
        for repo, body in (("installation-wizard", BINARY), ("window-manager", b"wm")):
            respx.get(f"{API}/{repo}/releases").mock(
                return_value=httpx.Response(200, json=[{"tag_name": "v1.2.0"}])
            )
            respx.get(_asset_url(repo, "v1.2.0", "SHA256SUMS")).mock(
                return_value=httpx.Response(404)
            )
            respx.get(_asset_url(repo, "v1.2.0", repo)).mock(
                return_value=httpx.Response(200, content=body)
            )

        with httpx.Client() as client:
            fetched = ComponentFetcher(client, settings, components_dir).fetch_all(
                [WIZARD, WM], "1.2.0"
            )

        assert list(fetched) == ["installation-wizard"]
