"""Tests for the assembly stage."""

import pytest

from limeos_imagegen.errors import StageError
from limeos_imagegen.pipeline.assembly import (
    GRUB_MENU_ENTRY,
    SYSLINUX_MODULES,
    build_efi_image,
    remove_live_boot_files,
    render_grub_cfg,
    render_isolinux_cfg,
    render_plymouth_theme,
    run_assembly_stage,
    setup_grub,
    setup_isolinux,
    setup_splash,
)


def _carrier_root(context, kernel_factory):
    root = context.layout.carrier_rootfs
    kernel_factory(root)
    (root / "boot/vmlinuz").write_bytes(b"kernel")
    (root / "boot/initrd.img").write_bytes(b"initrd")
    return root


class TestRenderers:
    """Tests for boot loader configuration text."""

    def test_grub_cfg(self):
        cfg = render_grub_cfg()
        assert f'menuentry "{GRUB_MENU_ENTRY}" {{' in cfg
        assert "linux /boot/vmlinuz boot=live quiet splash loglevel=0\n" in cfg
        assert "initrd /boot/initrd.img\n" in cfg
        assert "set timeout=0\n" in cfg

    def test_isolinux_cfg(self):
        cfg = render_isolinux_cfg()
        assert cfg.startswith("UI vesamenu.c32\n")
        assert "MENU BACKGROUND black.png\n" in cfg
        assert "  APPEND boot=live quiet splash loglevel=0\n" in cfg

    def test_plymouth_theme(self):
        theme = render_plymouth_theme()
        assert "ModuleName=script\n" in theme
        assert "ScriptFile=/usr/share/plymouth/themes/limeos/limeos.script\n" in theme


class TestBootConfig:
    """Tests for setup_grub and setup_isolinux."""

    def test_setup_grub(self, tmp_path):
        setup_grub(tmp_path)
        assert (tmp_path / "boot/grub/grub.cfg").read_text() == render_grub_cfg()

    def test_setup_isolinux_copies_host_files(self, context, host_files, tmp_path):
        setup_isolinux(context, tmp_path)

        isolinux = tmp_path / "isolinux"
        expected = {"isolinux.bin", "black.png", "isolinux.cfg", *SYSLINUX_MODULES}
        assert {p.name for p in isolinux.iterdir()} == expected
        assert (isolinux / "black.png").read_bytes() == b"black.png"

    def test_setup_isolinux_missing_host_file(self, context, tmp_path):
        with pytest.raises(StageError) as exc_info:
            setup_isolinux(context, tmp_path)
        assert exc_info.value.stage == "assembly"


class TestSetupSplash:
    """Tests for setup_splash."""

    def test_missing_logo_is_skipped(self, context, executor, tmp_path):
        assert setup_splash(context, tmp_path) is False
        assert executor.calls == []

    def test_applies_theme(self, context, host_files, executor, tmp_path, kernel_factory):
        kernel_factory(tmp_path)

        assert setup_splash(context, tmp_path) is True

        theme_dir = tmp_path / "usr/share/plymouth/themes/limeos"
        assert (theme_dir / "splash.png").is_file()
        assert (theme_dir / "limeos.plymouth").is_file()
        assert (theme_dir / "limeos.script").is_file()
        assert [call.argv for call in executor.calls] == [
            ["plymouth-set-default-theme", "limeos"],
            ["update-initramfs", "-u"],
        ]
        assert (tmp_path / "boot/initrd.img").read_bytes() == b"initrd"

    def test_command_failure_is_only_a_warning(
        self, context, host_files, tmp_path, make_executor
    ):
        executor = make_executor(failures={"update-initramfs": 1})
        context.executor = executor

        assert setup_splash(context, tmp_path) is False
        assert executor.programs == ["plymouth-set-default-theme", "update-initramfs"]


class TestBuildEfiImage:
    """Tests for build_efi_image."""

    def test_copies_grub_binary(self, context, host_files, executor, tmp_path):
        staging = tmp_path / "staging"

        build_efi_image(context, staging)

        assert executor.programs == ["dd", "mkfs.fat", "mount", "umount"]
        assert executor.calls[1].argv == [
            "mkfs.fat", "-F", "12", str(staging / "boot/grub/efiboot.img")
        ]

    def test_falls_back_to_grub_mkimage(self, context, executor, tmp_path):
        build_efi_image(context, tmp_path / "staging")

        assert executor.programs == ["dd", "mkfs.fat", "mount", "grub-mkimage", "umount"]
        mkimage = executor.find("grub-mkimage")[0].argv
        assert mkimage[mkimage.index("-O") + 1] == "x86_64-efi"

    def test_unmounts_on_failure(self, context, tmp_path, make_executor):
        """The loop mount should be released even when no loader can be placed."""
        executor = make_executor(failures={"grub-mkimage": 1})
        context.executor = executor

        with pytest.raises(StageError):
            build_efi_image(context, tmp_path / "staging")

        assert executor.programs[-2:] == ["grub-mkimage", "umount"]


class TestRemoveLiveBootFiles:
    """Tests for remove_live_boot_files."""

    def test_removes_kernels_and_isolinux(self, tmp_path, kernel_factory):
        kernel_factory(tmp_path)
        (tmp_path / "boot/vmlinuz").write_bytes(b"k")
        (tmp_path / "boot/grub").mkdir()
        (tmp_path / "isolinux").mkdir()

        remove_live_boot_files(tmp_path)

        assert [p.name for p in (tmp_path / "boot").iterdir()] == ["grub"]
        assert not (tmp_path / "isolinux").exists()


class TestRunAssemblyStage:
    """Tests for run_assembly_stage."""

    def test_produces_image(self, context, host_files, executor, kernel_factory, settings):
        root = _carrier_root(context, kernel_factory)

        run_assembly_stage(context)

        output = settings.output_dir / "limeos-1.2.0.iso"
        assert context.output_path == output
        assert executor.programs == [
            "plymouth-set-default-theme",
            "update-initramfs",
            "mksquashfs",
            "dd",
            "mkfs.fat",
            "mount",
            "umount",
            "xorriso",
        ]
        staging = context.layout.iso_staging
        squashfs = executor.find("mksquashfs")[0].argv
        assert squashfs[:3] == ["mksquashfs", str(root), str(staging / "live/filesystem.squashfs")]
        xorriso = executor.find("xorriso")[0].argv
        assert xorriso[xorriso.index("-o") + 1] == str(output)
        assert xorriso[xorriso.index("-isohybrid-mbr") + 1] == str(settings.isolinux_mbr_path)
        assert xorriso[-1] == str(staging)
        assert not staging.exists()
        assert not (root / "boot/vmlinuz").exists()

    def test_staging_removed_on_failure(self, context, host_files, kernel_factory, make_executor):
        executor = make_executor(failures={"xorriso": 32})
        context.executor = executor
        _carrier_root(context, kernel_factory)

        with pytest.raises(StageError) as exc_info:
            run_assembly_stage(context)

        assert exc_info.value.stage == "assembly"
        assert context.output_path is None
        assert not context.layout.iso_staging.exists()
