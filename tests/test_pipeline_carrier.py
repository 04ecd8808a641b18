"""Tests for the carrier stage."""

import stat
from pathlib import Path

import pytest

from limeos_imagegen.cache import CacheStore, compute_cache_key
from limeos_imagegen.cache import packages as packages_module
from limeos_imagegen.errors import StageError
from limeos_imagegen.fsops import FilesystemError
from limeos_imagegen.pipeline.carrier import (
    BUNDLE_PACKAGES,
    INSTALLER_SERVICE_NAME,
    bundle_packages,
    install_components,
    render_installer_service,
    run_carrier_stage,
)
from limeos_imagegen.types import BootMode, ComponentSpec

WIZARD = ComponentSpec("installation-wizard", "limeos-installation-wizard", required=True)
WM = ComponentSpec("window-manager", "limeos-window-manager", required=False)


def _copy_tree(argv, root):
    dest = Path(argv[-1])
    boot = dest / "boot"
    boot.mkdir(parents=True)
    (boot / "vmlinuz-6.1.0-18-amd64").write_bytes(b"kernel")
    (boot / "initrd.img-6.1.0-18-amd64").write_bytes(b"initrd")


def _download_debs(argv, root):
    """Simulate ``apt-get download`` writing packages into the bundle directory."""
    if argv[1] != "download":
        return
    mode = "efi" if "grub-efi-amd64" in argv else "bios"
    bundle_dir = root / "usr/share/limeos/packages" / mode
    for package in argv[2:]:
        (bundle_dir / f"{package}_amd64.deb").write_bytes(b"deb")


def _stage_inputs(context):
    layout = context.layout
    layout.build_dir.mkdir(parents=True, exist_ok=True)
    layout.payload_tarball.write_bytes(b"payload")
    layout.components_dir.mkdir(parents=True)
    (layout.components_dir / WIZARD.repo_name).write_bytes(b"wizard")
    layout.base_rootfs.mkdir()


class TestInstallerService:
    """Tests for the installer systemd unit."""

    def test_unit_runs_on_tty1(self):
        unit = render_installer_service()
        assert f"ExecStart=/usr/local/bin/{INSTALLER_SERVICE_NAME}\n" in unit
        assert "TTYPath=/dev/tty1\n" in unit
        assert "WantedBy=multi-user.target\n" in unit


class TestInstallComponents:
    """Tests for install_components."""

    def test_installs_present_components(self, context, tmp_path):
        context.component_specs = (WIZARD, WM)
        components_dir = context.layout.components_dir
        components_dir.mkdir(parents=True)
        (components_dir / WIZARD.repo_name).write_bytes(b"wizard")
        root = tmp_path / "carrier"

        installed = install_components(context, root)

        assert installed == ["limeos-installation-wizard"]
        binary = root / "usr/local/bin/limeos-installation-wizard"
        assert binary.read_bytes() == b"wizard"
        assert stat.S_IMODE(binary.stat().st_mode) == 0o755

    def test_missing_required_component(self, context, tmp_path):
        context.component_specs = (WIZARD,)

        with pytest.raises(StageError) as exc_info:
            install_components(context, tmp_path / "carrier")

        assert exc_info.value.code == "missing_component"
        assert exc_info.value.stage == "carrier"


class TestBundlePackages:
    """Tests for bundle_packages."""

    def test_downloads_each_mode(self, context, tmp_path, make_executor):
        executor = make_executor(side_effects={"apt-get": _download_debs})
        context.executor = executor
        root = tmp_path / "carrier"

        bundle_packages(context, root)

        argvs = [call.argv for call in executor.calls]
        assert argvs[0] == ["apt-get", "update"]
        assert argvs[1:] == [
            ["apt-get", "download", *BUNDLE_PACKAGES[BootMode.BIOS]],
            ["apt-get", "download", *BUNDLE_PACKAGES[BootMode.EFI]],
        ]
        assert [call.workdir for call in executor.calls[1:]] == [
            "/usr/share/limeos/packages/bios",
            "/usr/share/limeos/packages/efi",
        ]

    def test_uses_and_refreshes_cache(self, context, settings, tmp_path, make_executor):
        """Cached bundles should be restored; missing ones downloaded and saved."""
        executor = make_executor(side_effects={"apt-get": _download_debs})
        context.executor = executor
        context.cache = CacheStore.create(
            settings.cache_dir, compute_cache_key("bookworm", 1), executor
        )
        bios_cache = context.cache.bundle(BootMode.BIOS).path
        bios_cache.mkdir(parents=True)
        (bios_cache / "grub-pc_cached.deb").write_bytes(b"deb")
        root = tmp_path / "carrier"

        bundle_packages(context, root)

        assert (root / "usr/share/limeos/packages/bios/grub-pc_cached.deb").is_file()
        assert [call.argv[:2] for call in executor.calls] == [
            ["apt-get", "update"],
            ["apt-get", "download"],
        ]
        efi_cached = sorted(p.name for p in context.cache.bundle(BootMode.EFI).files())
        assert efi_cached == ["grub-efi-amd64-bin_amd64.deb", "grub-efi-amd64_amd64.deb"]

    def test_restore_failure_downloads_and_resaves(
        self, context, settings, tmp_path, make_executor, monkeypatch
    ):
        """A cached bundle that cannot be restored should be downloaded again."""
        executor = make_executor(side_effects={"apt-get": _download_debs})
        context.executor = executor
        context.cache = CacheStore.create(
            settings.cache_dir, compute_cache_key("bookworm", 1), executor
        )
        bios = context.cache.bundle(BootMode.BIOS)
        efi = context.cache.bundle(BootMode.EFI)
        for bundle, name in ((bios, "grub-pc_cached.deb"), (efi, "grub-efi_cached.deb")):
            bundle.path.mkdir(parents=True)
            (bundle.path / name).write_bytes(b"deb")

        copy_matching = packages_module.copy_matching

        def unreadable_bios_cache(source_dir, pattern, dest_dir):
            if source_dir == bios.path:
                raise FilesystemError(f"Failed to copy {source_dir}", code="copy_error")
            return copy_matching(source_dir, pattern, dest_dir)

        monkeypatch.setattr(packages_module, "copy_matching", unreadable_bios_cache)
        root = tmp_path / "carrier"

        bundle_packages(context, root)

        (download,) = executor.find("apt-get")[1:]
        assert download.argv == ["apt-get", "download", *BUNDLE_PACKAGES[BootMode.BIOS]]
        assert download.workdir == "/usr/share/limeos/packages/bios"
        assert sorted(p.name for p in bios.files()) == [
            "grub-pc-bin_amd64.deb", "grub-pc_amd64.deb"
        ]
        assert (root / "usr/share/limeos/packages/efi/grub-efi_cached.deb").is_file()


class TestRunCarrierStage:
    """Tests for run_carrier_stage."""

    def test_builds_carrier(self, context, make_executor):
        executor = make_executor(side_effects={"cp": _copy_tree, "apt-get": _download_debs})
        context.executor = executor
        context.component_specs = (WIZARD, WM)
        _stage_inputs(context)
        layout = context.layout
        root = layout.carrier_rootfs

        run_carrier_stage(context)

        assert executor.programs == ["cp", "apt-get", "apt-get", "apt-get", "apt-get"]
        assert executor.calls[1].argv[:3] == ["apt-get", "install", "-y"]
        assert (root / "boot/vmlinuz").is_file()
        assert (root / "usr/share/limeos/rootfs.tar.gz").read_bytes() == b"payload"
        assert (root / "usr/local/bin/limeos-installation-wizard").is_file()
        assert "LimeOS 1.2.0" in (root / "etc/os-release").read_text()

        systemd_dir = root / "etc/systemd/system"
        unit = f"{INSTALLER_SERVICE_NAME}.service"
        assert (systemd_dir / unit).read_text() == render_installer_service()
        assert (systemd_dir / "multi-user.target.wants" / unit).is_symlink()
        assert str((systemd_dir / "default.target").readlink()) == (
            "/lib/systemd/system/multi-user.target"
        )

        assert not layout.base_rootfs.exists()
        assert not layout.payload_tarball.exists()
