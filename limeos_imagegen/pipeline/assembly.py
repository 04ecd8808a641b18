"""Assembly stage: bootloader configuration and the hybrid BIOS/UEFI image.

This module handles:
- GRUB (UEFI) and isolinux (BIOS) configuration inside the carrier rootfs
- The Plymouth splash theme (best effort)
- Staging, squashfs compression, the EFI FAT image and the final xorriso run
"""

from __future__ import annotations

import logging
from pathlib import Path

from limeos_imagegen.executor import CommandExecutionError
from limeos_imagegen.fsops import (
    FilesystemError,
    copy_file,
    copy_matching,
    find_first,
    make_dirs,
    remove_tree,
    remove_tree_with_retries,
    write_file,
)
from limeos_imagegen.pipeline.context import BuildContext, stage_fs_error
from limeos_imagegen.pipeline.rootfs import INITRD_PATH, KERNEL_PATH, OS_NAME
from limeos_imagegen.pipeline.stages import ASSEMBLY

logger = logging.getLogger(__name__)

KERNEL_PARAMS = "boot=live quiet splash loglevel=0"
GRUB_MENU_ENTRY = f"{OS_NAME} Installer"

SYSLINUX_MODULES = ("ldlinux.c32", "vesamenu.c32", "libutil.c32", "libcom32.c32")

PLYMOUTH_THEME = "limeos"
PLYMOUTH_THEMES_DIR = "/usr/share/plymouth/themes"

EFI_IMAGE_SIZE_MB = 4
EFI_FAT_TYPE = 12
SQUASHFS_COMPRESSION = "xz"
BOOT_LOAD_SECTORS = 4

GRUB_EFI_MODULES = ("normal", "boot", "linux", "part_gpt", "part_msdos", "fat", "iso9660")


def render_grub_cfg() -> str:
    return (
        "set gfxmode=auto\n"
        "set gfxpayload=keep\n"
        "set default=0\n"
        "set timeout_style=hidden\n"
        "set timeout=0\n"
        "\n"
        f'menuentry "{GRUB_MENU_ENTRY}" {{\n'
        f"    linux {KERNEL_PATH} {KERNEL_PARAMS}\n"
        f"    initrd {INITRD_PATH}\n"
        "}\n"
    )


def render_isolinux_cfg() -> str:
    hidden_colors = "".join(
        f"MENU COLOR {element} 0 #00000000 #00000000 none\n"
        for element in (
            "screen",
            "border",
            "title",
            "unsel",
            "sel",
            "hotsel",
            "hotkey",
            "timeout_msg",
            "timeout",
        )
    )
    return (
        "UI vesamenu.c32\n"
        "DEFAULT limeos\n"
        "PROMPT 0\n"
        "TIMEOUT 1\n"
        "TOTALTIMEOUT 1\n"
        "MENU HIDDEN\n"
        "MENU BACKGROUND black.png\n"
        f"{hidden_colors}"
        "\n"
        "LABEL limeos\n"
        f"  KERNEL {KERNEL_PATH}\n"
        f"  INITRD {INITRD_PATH}\n"
        f"  APPEND {KERNEL_PARAMS}\n"
    )


def render_plymouth_theme() -> str:
    theme_dir = f"{PLYMOUTH_THEMES_DIR}/{PLYMOUTH_THEME}"
    return (
        "[Plymouth Theme]\n"
        f"Name={OS_NAME}\n"
        f"Description={OS_NAME} boot splash\n"
        "ModuleName=script\n"
        "\n"
        "[script]\n"
        f"ImageDir={theme_dir}\n"
        f"ScriptFile={theme_dir}/{PLYMOUTH_THEME}.script\n"
    )


def render_plymouth_script() -> str:
    return (
        "Window.SetBackgroundTopColor(0, 0, 0);\n"
        "Window.SetBackgroundBottomColor(0, 0, 0);\n"
        'splash_image = Image("splash.png");\n'
        "sprite = Sprite(splash_image);\n"
        "sprite.SetX(Window.GetWidth() / 2 - splash_image.GetWidth() / 2);\n"
        "sprite.SetY(Window.GetHeight() / 2 - splash_image.GetHeight() / 2);\n"
    )


def setup_grub(root: Path) -> None:
    try:
        write_file(root / "boot/grub/grub.cfg", render_grub_cfg())
    except FilesystemError as e:
        raise stage_fs_error(ASSEMBLY, e) from e


def setup_isolinux(ctx: BuildContext, root: Path) -> None:
    """Copy isolinux and its modules from the host and write the menu config."""
    settings = ctx.settings
    isolinux_dir = root / "isolinux"
    try:
        copy_file(settings.isolinux_bin_path, isolinux_dir / "isolinux.bin")
        for module in SYSLINUX_MODULES:
            copy_file(settings.syslinux_modules_dir / module, isolinux_dir / module)
        copy_file(settings.background_path, isolinux_dir / "black.png")
        write_file(isolinux_dir / "isolinux.cfg", render_isolinux_cfg())
    except FilesystemError as e:
        raise stage_fs_error(ASSEMBLY, e) from e


def setup_splash(ctx: BuildContext, root: Path) -> bool:
    """Install the Plymouth theme and regenerate the initrd.

    Every failure is logged as a warning; the image still boots without it.

    Returns:
        True if the theme was fully applied.
    """
    logo = ctx.settings.splash_logo_path
    if not logo.is_file():
        logger.warning("Splash logo not found: %s", logo)
        return False

    theme_dir = root / PLYMOUTH_THEMES_DIR.lstrip("/") / PLYMOUTH_THEME
    try:
        copy_file(logo, theme_dir / "splash.png")
        write_file(theme_dir / f"{PLYMOUTH_THEME}.plymouth", render_plymouth_theme())
        write_file(theme_dir / f"{PLYMOUTH_THEME}.script", render_plymouth_script())
    except FilesystemError as e:
        logger.warning("Failed to write splash theme: %s", e)
        return False

    applied = True
    for argv, failure in (
        (["plymouth-set-default-theme", PLYMOUTH_THEME], "Failed to set Plymouth theme"),
        (["update-initramfs", "-u"], "Failed to regenerate initramfs"),
    ):
        try:
            result = ctx.executor.run_in_root(root, argv)
        except CommandExecutionError as e:
            logger.warning("%s: %s", failure, e)
            applied = False
            continue
        if not result.success:
            logger.warning("%s (exit code %d)", failure, result.exit_code)
            applied = False

    initrd = find_first(root / "boot", "initrd.img-*")
    if initrd is not None:
        try:
            copy_file(initrd, root / INITRD_PATH.lstrip("/"))
        except FilesystemError as e:
            logger.warning("Failed to refresh initrd: %s", e)
            applied = False
    return applied


def copy_boot_files(root: Path, staging: Path) -> None:
    try:
        copy_file(root / KERNEL_PATH.lstrip("/"), staging / KERNEL_PATH.lstrip("/"))
        copy_file(root / INITRD_PATH.lstrip("/"), staging / INITRD_PATH.lstrip("/"))
        copy_file(root / "boot/grub/grub.cfg", staging / "boot/grub/grub.cfg")
        copy_matching(root / "isolinux", "*", staging / "isolinux")
    except FilesystemError as e:
        raise stage_fs_error(ASSEMBLY, e) from e


def remove_live_boot_files(root: Path) -> None:
    """Drop boot files from the rootfs; they live outside the squashfs."""
    boot = root / "boot"
    stale: list[Path] = [root / "isolinux"]
    if boot.is_dir():
        for pattern in ("vmlinuz-*", "initrd.img-*", "vmlinuz", "initrd.img"):
            stale.extend(sorted(boot.glob(pattern)))

    for path in stale:
        try:
            remove_tree(path)
        except FilesystemError as e:
            logger.warning("%s", e)


def create_squashfs(ctx: BuildContext, root: Path, staging: Path) -> None:
    logger.info("Creating squashfs filesystem...")
    ctx.run(
        ASSEMBLY,
        [
            "mksquashfs",
            str(root),
            str(staging / "live" / "filesystem.squashfs"),
            "-comp",
            SQUASHFS_COMPRESSION,
            "-noappend",
        ],
    )


def build_efi_image(ctx: BuildContext, staging: Path) -> None:
    """Create the FAT image holding the UEFI boot loader.

    The GRUB EFI binary is copied from the host; ``grub-mkimage`` builds one
    when the copy fails. The loop mount is always released.
    """
    efi_image = staging / "boot/grub/efiboot.img"
    mount_dir = staging / "efi_mount"

    ctx.run(
        ASSEMBLY,
        ["dd", "if=/dev/zero", f"of={efi_image}", "bs=1M", f"count={EFI_IMAGE_SIZE_MB}"],
    )
    ctx.run(ASSEMBLY, ["mkfs.fat", "-F", str(EFI_FAT_TYPE), str(efi_image)])

    try:
        make_dirs(mount_dir)
    except FilesystemError as e:
        raise stage_fs_error(ASSEMBLY, e) from e
    ctx.run(ASSEMBLY, ["mount", "-o", "loop", str(efi_image), str(mount_dir)])

    try:
        boot_binary = mount_dir / "EFI/BOOT/BOOTX64.EFI"
        try:
            copy_file(ctx.settings.grub_efi_path, boot_binary)
        except FilesystemError as e:
            logger.warning("Failed to copy GRUB EFI binary (%s), trying grub-mkimage", e)
            ctx.run(
                ASSEMBLY,
                [
                    "grub-mkimage",
                    "-o",
                    str(boot_binary),
                    "-p",
                    "/boot/grub",
                    "-O",
                    "x86_64-efi",
                    *GRUB_EFI_MODULES,
                ],
            )
    finally:
        try:
            result = ctx.executor.run(["umount", str(mount_dir)])
            if not result.success:
                logger.warning("Failed to unmount EFI image: %s", mount_dir)
        except CommandExecutionError as e:
            logger.warning("Failed to unmount EFI image: %s", e)

    try:
        mount_dir.rmdir()
    except OSError as e:
        logger.warning("Failed to remove EFI mount directory: %s", e)


def run_xorriso(ctx: BuildContext, staging: Path, output: Path) -> None:
    logger.info("Running xorriso to create hybrid ISO...")
    ctx.run(
        ASSEMBLY,
        [
            "xorriso",
            "-as",
            "mkisofs",
            "-o",
            str(output),
            "-isohybrid-mbr",
            str(ctx.settings.isolinux_mbr_path),
            "-c",
            "isolinux/boot.cat",
            "-b",
            "isolinux/isolinux.bin",
            "-no-emul-boot",
            "-boot-load-size",
            str(BOOT_LOAD_SECTORS),
            "-boot-info-table",
            "-eltorito-alt-boot",
            "-e",
            "boot/grub/efiboot.img",
            "-no-emul-boot",
            "-isohybrid-gpt-basdat",
            str(staging),
        ],
    )


def create_iso(ctx: BuildContext, root: Path, output: Path) -> Path:
    """Assemble the bootable image from the carrier rootfs.

    The staging directory is removed afterwards whether or not assembly
    succeeded.
    """
    staging = ctx.layout.iso_staging
    try:
        remove_tree(staging)
        make_dirs(staging / "live")
        make_dirs(output.parent)
    except FilesystemError as e:
        raise stage_fs_error(ASSEMBLY, e) from e

    try:
        copy_boot_files(root, staging)
        remove_live_boot_files(root)
        create_squashfs(ctx, root, staging)
        build_efi_image(ctx, staging)
        run_xorriso(ctx, staging, output)
    finally:
        remove_tree_with_retries(staging)

    logger.info("ISO created successfully: %s", output)
    return output


def run_assembly_stage(ctx: BuildContext) -> None:
    """Configure boot loaders and write ``<output_dir>/<prefix>-<version>.iso``."""
    root = ctx.layout.carrier_rootfs
    setup_grub(root)
    setup_isolinux(ctx, root)
    setup_splash(ctx, root)
    ctx.output_path = create_iso(ctx, root, ctx.image_path)


__all__ = [
    "GRUB_MENU_ENTRY",
    "KERNEL_PARAMS",
    "SYSLINUX_MODULES",
    "build_efi_image",
    "copy_boot_files",
    "create_iso",
    "create_squashfs",
    "remove_live_boot_files",
    "render_grub_cfg",
    "render_isolinux_cfg",
    "render_plymouth_script",
    "render_plymouth_theme",
    "run_assembly_stage",
    "run_xorriso",
    "setup_grub",
    "setup_isolinux",
    "setup_splash",
]
