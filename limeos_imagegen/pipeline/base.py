"""Base stage: the minimal Debian rootfs shared by both derived images."""

from __future__ import annotations

import logging

from limeos_imagegen.fsops import FilesystemError, make_dirs, remove_tree
from limeos_imagegen.pipeline.context import BuildContext, stage_fs_error
from limeos_imagegen.pipeline.rootfs import (
    clear_motd,
    exclude_firmware,
    mask_rfkill,
    strip_documentation,
)
from limeos_imagegen.pipeline.stages import BASE

logger = logging.getLogger(__name__)


def restore_base_rootfs(ctx: BuildContext) -> bool:
    """Try to restore the base rootfs from cache.

    Returns:
        True if the rootfs was restored; False on a miss or failed restore.
    """
    if ctx.cache is None:
        return False

    artifact = ctx.cache.rootfs.exists()
    if artifact is None:
        return False

    result = ctx.cache.rootfs.restore(artifact, ctx.layout.base_rootfs)
    if not result.success:
        logger.warning("%s; rebuilding base rootfs", result.message)
        return False
    return True


def create_base_rootfs(ctx: BuildContext) -> None:
    """Bootstrap, update and strip a fresh base rootfs."""
    root = ctx.layout.base_rootfs
    logger.info("Creating base rootfs at %s", root)

    try:
        make_dirs(root.parent)
    except FilesystemError as e:
        raise stage_fs_error(BASE, e) from e

    ctx.run(BASE, ["debootstrap", "--variant=minbase", ctx.config.distribution, str(root)])
    ctx.run_in_root(BASE, root, ["apt-get", "update"])

    logger.info("Stripping base rootfs...")
    strip_documentation(BASE, root)
    exclude_firmware(root)
    mask_rfkill(root)
    clear_motd(BASE, root)


def save_base_rootfs(ctx: BuildContext) -> None:
    if ctx.cache is None:
        return
    result = ctx.cache.rootfs.save(ctx.layout.base_rootfs)
    if not result.success:
        logger.warning("%s", result.message)
        return
    ctx.cache.rootfs.prune()


def run_base_stage(ctx: BuildContext) -> None:
    """Produce ``build/base-rootfs`` from cache or from scratch."""
    try:
        remove_tree(ctx.layout.base_rootfs)
    except FilesystemError as e:
        raise stage_fs_error(BASE, e) from e

    if restore_base_rootfs(ctx):
        logger.info("Base rootfs restored from cache")
        return

    create_base_rootfs(ctx)
    save_base_rootfs(ctx)


__all__ = [
    "create_base_rootfs",
    "restore_base_rootfs",
    "run_base_stage",
    "save_base_rootfs",
]
