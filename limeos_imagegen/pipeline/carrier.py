"""Carrier stage: the live rootfs that boots from the image and runs the installer.

This module handles:
- Deriving the carrier rootfs from the base rootfs
- Embedding the packed target rootfs and the component binaries
- Configuring the installer systemd service
- Bundling bootloader packages per boot mode for offline installs
"""

from __future__ import annotations

import logging
from pathlib import Path

from limeos_imagegen.cache import package_cache_mount
from limeos_imagegen.errors import StageError
from limeos_imagegen.fsops import (
    FilesystemError,
    copy_file,
    make_dirs,
    make_symlink,
    remove_tree,
    write_file,
)
from limeos_imagegen.pipeline.context import BuildContext, stage_fs_error
from limeos_imagegen.pipeline.rootfs import (
    brand_identity,
    clean_apt_directories,
    copy_rootfs,
    expose_kernel_and_initrd,
    install_packages,
    remove_excluded_firmware,
)
from limeos_imagegen.pipeline.stages import CARRIER
from limeos_imagegen.types import BootMode

logger = logging.getLogger(__name__)

CARRIER_PACKAGES: tuple[str, ...] = (
    "linux-image-amd64",
    "systemd-sysv",
    "live-boot",
    "plymouth",
    "plymouth-themes",
    "libncurses6",
    "parted",
    "dosfstools",
    "e2fsprogs",
)

BUNDLE_PACKAGES: dict[BootMode, tuple[str, ...]] = {
    BootMode.BIOS: ("grub-pc", "grub-pc-bin"),
    BootMode.EFI: ("grub-efi-amd64", "grub-efi-amd64-bin"),
}

INSTALL_BIN_DIR = "/usr/local/bin"
PAYLOAD_ROOTFS_PATH = "/usr/share/limeos/rootfs.tar.gz"
BUNDLED_PACKAGES_DIR = "/usr/share/limeos/packages"
INSTALLER_SERVICE_NAME = "limeos-installation-wizard"

_SYSTEMD_DIR = "etc/systemd/system"


def _in_root(root: Path, path: str) -> Path:
    return root / path.lstrip("/")


def render_installer_service() -> str:
    return (
        "[Unit]\n"
        "Description=LimeOS Installation Wizard\n"
        "After=systemd-user-sessions.service\n"
        "After=plymouth-quit-wait.service\n"
        "\n"
        "[Service]\n"
        "Type=simple\n"
        "Environment=PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin\n"
        f"ExecStart={INSTALL_BIN_DIR}/{INSTALLER_SERVICE_NAME}\n"
        "StandardInput=tty\n"
        "StandardOutput=tty\n"
        "TTYPath=/dev/tty1\n"
        "TTYReset=yes\n"
        "TTYVHangup=yes\n"
        "Restart=on-failure\n"
        "RestartSec=1\n"
        "\n"
        "[Install]\n"
        "WantedBy=multi-user.target\n"
    )


def configure_installer_service(root: Path) -> None:
    """Start the installer on tty1 instead of a login prompt.

    Raises:
        StageError: If the unit cannot be written or enabled.
    """
    systemd_dir = root / _SYSTEMD_DIR
    unit = f"{INSTALLER_SERVICE_NAME}.service"
    try:
        write_file(systemd_dir / unit, render_installer_service())
        make_symlink(f"../{unit}", systemd_dir / "multi-user.target.wants" / unit)
        make_symlink("/lib/systemd/system/multi-user.target", systemd_dir / "default.target")
        remove_tree(systemd_dir / "getty.target.wants" / "getty@tty1.service")
    except FilesystemError as e:
        raise stage_fs_error(CARRIER, e) from e
    logger.info("Configured %s service", INSTALLER_SERVICE_NAME)


def embed_payload(ctx: BuildContext, root: Path) -> None:
    """Copy the packed target rootfs into the carrier."""
    try:
        copy_file(ctx.layout.payload_tarball, _in_root(root, PAYLOAD_ROOTFS_PATH))
    except FilesystemError as e:
        raise stage_fs_error(CARRIER, e) from e
    logger.info("Embedded payload rootfs at %s", PAYLOAD_ROOTFS_PATH)


def install_components(ctx: BuildContext, root: Path) -> list[str]:
    """Install fetched component binaries into the carrier.

    Returns:
        Binary names that were installed.

    Raises:
        StageError: If a required component is missing or cannot be installed.
    """
    bin_dir = _in_root(root, INSTALL_BIN_DIR)
    installed: list[str] = []

    for spec in ctx.component_specs:
        source = ctx.layout.components_dir / spec.repo_name
        if not source.is_file():
            if spec.required:
                raise StageError(
                    CARRIER,
                    f"Required component not found: {spec.repo_name}",
                    code="missing_component",
                )
            logger.info("Skipping optional component: %s", spec.repo_name)
            continue

        try:
            copy_file(source, bin_dir / spec.binary_name, mode=0o755)
        except FilesystemError as e:
            if spec.required:
                raise stage_fs_error(CARRIER, e) from e
            logger.warning("Failed to install optional component %s: %s", spec.repo_name, e)
            continue

        logger.info("Installed %s", spec.binary_name)
        installed.append(spec.binary_name)
    return installed


def bundle_packages(ctx: BuildContext, root: Path) -> None:
    """Place bootloader packages for every boot mode inside the carrier.

    Cached bundles are used when available; otherwise packages are
    downloaded inside the carrier and the cache is refreshed.
    """
    lists_updated = False

    for mode, packages in BUNDLE_PACKAGES.items():
        image_dir = f"{BUNDLED_PACKAGES_DIR}/{mode.value}"
        dest = _in_root(root, image_dir)
        try:
            remove_tree(dest)
            make_dirs(dest)
        except FilesystemError as e:
            raise stage_fs_error(CARRIER, e) from e

        bundle = ctx.cache.bundle(mode) if ctx.cache is not None else None
        if bundle is not None and bundle.exists():
            restored = bundle.restore(dest)
            if restored.success:
                continue
            logger.warning("%s, downloading...", restored.message)

        if not lists_updated:
            ctx.run_in_root(CARRIER, root, ["apt-get", "update"])
            lists_updated = True

        logger.info("Downloading %s bootloader packages...", mode.value)
        ctx.run_in_root(CARRIER, root, ["apt-get", "download", *packages], workdir=image_dir)

        if bundle is not None:
            saved = bundle.save(dest)
            if not saved.success:
                logger.warning("%s", saved.message)


def run_carrier_stage(ctx: BuildContext) -> None:
    """Build the carrier rootfs, then drop the base rootfs."""
    layout = ctx.layout
    root = layout.carrier_rootfs

    copy_rootfs(ctx, CARRIER, layout.base_rootfs, root)

    cache_root = ctx.cache.root if ctx.cache is not None else None
    with package_cache_mount(ctx.executor, cache_root, root):
        install_packages(ctx, CARRIER, root, CARRIER_PACKAGES)

    expose_kernel_and_initrd(CARRIER, root)
    brand_identity(CARRIER, root, ctx.config.version)
    remove_excluded_firmware(root)
    embed_payload(ctx, root)
    install_components(ctx, root)
    configure_installer_service(root)
    bundle_packages(ctx, root)
    clean_apt_directories(CARRIER, root)

    try:
        remove_tree(layout.base_rootfs)
        remove_tree(layout.payload_tarball)
    except FilesystemError as e:
        raise stage_fs_error(CARRIER, e) from e
    logger.info("Carrier rootfs ready at %s", root)


__all__ = [
    "BUNDLE_PACKAGES",
    "CARRIER_PACKAGES",
    "INSTALLER_SERVICE_NAME",
    "bundle_packages",
    "configure_installer_service",
    "embed_payload",
    "install_components",
    "render_installer_service",
    "run_carrier_stage",
]
