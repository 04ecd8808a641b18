"""Target stage: the payload rootfs installed onto the user's disk.

The finished rootfs is packed into ``build/rootfs.tar.gz`` and the
directory removed; only the tarball moves on to the carrier stage.
"""

from __future__ import annotations

import logging

from limeos_imagegen.cache import package_cache_mount
from limeos_imagegen.fsops import FilesystemError, remove_tree
from limeos_imagegen.pipeline.context import BuildContext, stage_fs_error
from limeos_imagegen.pipeline.rootfs import (
    brand_grub_defaults,
    brand_identity,
    clean_apt_directories,
    copy_rootfs,
    install_packages,
    remove_excluded_firmware,
)
from limeos_imagegen.pipeline.stages import TARGET

logger = logging.getLogger(__name__)

PAYLOAD_PACKAGES: tuple[str, ...] = (
    "linux-image-amd64",
    "systemd-sysv",
    "dbus",
    "libpam-systemd",
    "policykit-1",
    "locales",
    "console-setup",
    "keyboard-configuration",
    "sudo",
    "network-manager",
    "grub2-common",
    "grub-common",
    "ucf",
    "sensible-utils",
    "libefiboot1",
    "libefivar1",
    "libfuse3-3",
    "os-prober",
)

DEFAULT_USER = "user"
DEFAULT_PASSWORD = "password"


def create_default_user(ctx: BuildContext) -> None:
    """Create the default login user with sudo rights."""
    root = ctx.layout.target_rootfs
    ctx.run_in_root(TARGET, root, ["useradd", "-m", "-s", "/bin/bash", DEFAULT_USER])
    ctx.run_in_root(
        TARGET, root, ["chpasswd"], input_text=f"{DEFAULT_USER}:{DEFAULT_PASSWORD}\n"
    )
    ctx.run_in_root(TARGET, root, ["usermod", "-aG", "sudo", DEFAULT_USER])


def pack_target_rootfs(ctx: BuildContext) -> None:
    layout = ctx.layout
    logger.info("Packing target rootfs into %s...", layout.payload_tarball.name)
    ctx.run(
        TARGET,
        [
            "tar",
            "--numeric-owner",
            "-czf",
            str(layout.payload_tarball),
            "-C",
            str(layout.target_rootfs),
            ".",
        ],
    )


def run_target_stage(ctx: BuildContext) -> None:
    """Build and pack the target rootfs."""
    layout = ctx.layout
    root = layout.target_rootfs

    copy_rootfs(ctx, TARGET, layout.base_rootfs, root)

    cache_root = ctx.cache.root if ctx.cache is not None else None
    with package_cache_mount(ctx.executor, cache_root, root):
        install_packages(ctx, TARGET, root, PAYLOAD_PACKAGES)

    brand_identity(TARGET, root, ctx.config.version)
    brand_grub_defaults(TARGET, root)
    create_default_user(ctx)
    remove_excluded_firmware(root)
    clean_apt_directories(TARGET, root)
    pack_target_rootfs(ctx)

    try:
        remove_tree(root)
    except FilesystemError as e:
        raise stage_fs_error(TARGET, e) from e
    logger.info("Target rootfs packed: %s", layout.payload_tarball)


__all__ = [
    "PAYLOAD_PACKAGES",
    "create_default_user",
    "pack_target_rootfs",
    "run_target_stage",
]
