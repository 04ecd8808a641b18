"""Root filesystem helpers shared by the base, target and carrier stages.

This module handles:
- Copying a rootfs and installing packages inside it
- OS identity branding (os-release, issue files, GRUB defaults)
- Stripping documentation, locales and noncritical firmware
- Cleaning apt state and exposing the kernel and initrd
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from limeos_imagegen.errors import StageError
from limeos_imagegen.fsops import (
    FilesystemError,
    copy_file,
    find_first,
    list_dir,
    make_symlink,
    remove_tree,
    write_file,
)
from limeos_imagegen.pipeline.context import BuildContext, stage_fs_error
from limeos_imagegen.versions import strip_version_prefix

logger = logging.getLogger(__name__)

OS_NAME = "LimeOS"
OS_ID = "limeos"
OS_BASE_ID = "debian"
OS_HOME_URL = "https://limeos.org"

KERNEL_PATH = "/boot/vmlinuz"
INITRD_PATH = "/boot/initrd.img"

APT_ENVIRONMENT = {"DEBIAN_FRONTEND": "noninteractive"}

# Firmware directories excluded from installation, with the modules that need them
FIRMWARE_MODULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("iwlwifi", ("iwlwifi", "iwlmvm", "iwldvm")),
    ("ath9k_htc", ("ath9k", "ath9k_htc")),
    ("ath10k", ("ath10k_pci", "ath10k_core")),
    ("ath11k", ("ath11k", "ath11k_pci")),
    ("ath12k", ("ath12k",)),
    (
        "rtlwifi",
        ("rtlwifi", "rtl8192ce", "rtl8192cu", "rtl8192de", "rtl8192se", "rtl8723ae", "rtl8723be"),
    ),
    ("rtw88", ("rtw88_pci", "rtw88_core")),
    ("rtw89", ("rtw89_pci", "rtw89_core")),
    ("mediatek", ("mt7601u", "mt7921e", "mt7921s")),
    ("mrvl", ("mwifiex", "mwifiex_pcie", "mwifiex_sdio")),
    ("qca", ("btqca",)),
    ("rtl_nic", ("r8169",)),
    ("cxgb4", ("cxgb4",)),
    ("liquidio", ("liquidio",)),
    ("mellanox", ("mlx4_core", "mlx5_core")),
    ("netronome", ("nfp",)),
    ("dpaa2", ("fsl_dpaa2_eth",)),
    ("bnx2", ("bnx2",)),
    ("bnx2x", ("bnx2x",)),
    ("cirrus", ("snd_hda_codec_cirrus",)),
)
BLUETOOTH_MODULES = ("btusb", "btrtl", "btbcm", "btintel", "bluetooth")
INTEL_SOF_MODULES = ("snd_sof", "snd_sof_pci", "snd_sof_intel_hda_common")

_FIRMWARE_ROOTS = ("/usr/lib/firmware", "/lib/firmware")
_EXTRA_FIRMWARE_PATTERNS = (
    ("Intel Bluetooth firmware", "intel/*bt*"),
    ("Intel Sound Open Firmware", "intel/sof/*"),
    ("Intel Sound Open Firmware topologies", "intel/sof-tplg/*"),
    ("Broadcom Bluetooth firmware", "brcm/*.hcd"),
    ("Broadcom WiFi firmware", "brcm/*-pcie.*"),
    ("Broadcom WiFi firmware", "brcm/*-sdio.*"),
)


def copy_rootfs(ctx: BuildContext, stage: str, source: Path, dest: Path) -> None:
    """Copy a rootfs with ``cp -a``, replacing any stale destination."""
    logger.info("Copying %s to %s...", source.name, dest.name)
    try:
        remove_tree(dest)
    except FilesystemError as e:
        raise stage_fs_error(stage, e) from e
    ctx.run(stage, ["cp", "-a", str(source), str(dest)])


def install_packages(
    ctx: BuildContext, stage: str, root: Path, packages: Sequence[str]
) -> None:
    """Install packages inside ``root`` without recommends."""
    logger.info("Installing %d package(s) into %s...", len(packages), root.name)
    ctx.run_in_root(
        stage,
        root,
        ["apt-get", "install", "-y", "--no-install-recommends", *packages],
        env=APT_ENVIRONMENT,
    )


def render_os_release(version: str) -> str:
    clean = strip_version_prefix(version)
    return (
        f'PRETTY_NAME="{OS_NAME} {clean}"\n'
        f'NAME="{OS_NAME}"\n'
        f'VERSION_ID="{clean}"\n'
        f'VERSION="{clean}"\n'
        f"ID={OS_ID}\n"
        f"ID_LIKE={OS_BASE_ID}\n"
        f'HOME_URL="{OS_HOME_URL}"\n'
    )


def render_issue(version: str) -> str:
    return f"{OS_NAME} {strip_version_prefix(version)} \\n \\l\n\n"


def render_issue_net(version: str) -> str:
    return f"{OS_NAME} {strip_version_prefix(version)}\n"


def render_grub_defaults() -> str:
    """GRUB defaults for a silent boot of the installed system."""
    return (
        f'GRUB_DISTRIBUTOR="{OS_NAME}"\n'
        "GRUB_TIMEOUT=0\n"
        "GRUB_TIMEOUT_STYLE=hidden\n"
        "GRUB_RECORDFAIL_TIMEOUT=0\n"
        "GRUB_GFXMODE=auto\n"
        "GRUB_GFXPAYLOAD_LINUX=keep\n"
        'GRUB_CMDLINE_LINUX_DEFAULT="quiet splash loglevel=0 vt.global_cursor_default=0"\n'
    )


def brand_identity(stage: str, root: Path, version: str) -> None:
    """Write os-release and issue files carrying the LimeOS identity."""
    try:
        write_file(root / "etc/os-release", render_os_release(version))
        write_file(root / "etc/issue", render_issue(version))
        write_file(root / "etc/issue.net", render_issue_net(version))
    except FilesystemError as e:
        raise stage_fs_error(stage, e) from e
    logger.info("Branded %s as %s %s", root.name, OS_NAME, strip_version_prefix(version))


def brand_grub_defaults(stage: str, root: Path) -> None:
    try:
        write_file(root / "etc/default/grub.d/distributor.cfg", render_grub_defaults())
    except FilesystemError as e:
        raise stage_fs_error(stage, e) from e


def strip_documentation(stage: str, root: Path) -> None:
    """Remove documentation and every locale not starting with 'en'."""
    try:
        for rel in ("usr/share/doc", "usr/share/man", "usr/share/info"):
            remove_tree(root / rel)

        for entry in list_dir(root / "usr/share/locale"):
            if not entry.name.startswith("en"):
                remove_tree(entry)
    except FilesystemError as e:
        raise stage_fs_error(stage, e) from e


def render_firmware_exclusions() -> str:
    """dpkg configuration preventing noncritical firmware from being installed."""
    lines = ["# Exclude noncritical firmware from package installation.", ""]
    for firmware_dir, _ in FIRMWARE_MODULES:
        for base in _FIRMWARE_ROOTS:
            lines.append(f"path-exclude={base}/{firmware_dir}/*")

    last_label = None
    for label, pattern in _EXTRA_FIRMWARE_PATTERNS:
        if label != last_label:
            lines.extend(["", f"# {label}."])
            last_label = label
        for base in _FIRMWARE_ROOTS:
            lines.append(f"path-exclude={base}/{pattern}")
    return "\n".join(lines) + "\n"


def render_module_blacklist() -> str:
    """modprobe blacklist for modules whose firmware is excluded."""
    lines = ["# Modules blacklisted because their firmware is excluded.", ""]
    for _, modules in FIRMWARE_MODULES:
        lines.extend(f"blacklist {module}" for module in modules)
    lines.extend(["", "# Bluetooth modules."])
    lines.extend(f"blacklist {module}" for module in BLUETOOTH_MODULES)
    lines.extend(["", "# Intel Sound Open Firmware modules."])
    lines.extend(f"blacklist {module}" for module in INTEL_SOF_MODULES)
    return "\n".join(lines) + "\n"


def exclude_firmware(root: Path) -> None:
    """Write firmware exclusions and the matching module blacklist.

    Failures only log a warning.
    """
    try:
        write_file(root / "etc/dpkg/dpkg.cfg.d/exclude-firmware", render_firmware_exclusions())
        write_file(
            root / "etc/modprobe.d/blacklist-excluded-firmware.conf",
            render_module_blacklist(),
        )
    except FilesystemError as e:
        logger.warning("Failed to configure firmware exclusions (continuing anyway): %s", e)


def remove_excluded_firmware(root: Path) -> None:
    """Delete firmware directories that slipped in before exclusions applied."""
    for firmware_dir, _ in FIRMWARE_MODULES:
        for base in _FIRMWARE_ROOTS:
            try:
                remove_tree(root / base.lstrip("/") / firmware_dir)
            except FilesystemError as e:
                logger.warning("%s", e)


def mask_rfkill(root: Path) -> None:
    for unit in ("systemd-rfkill.service", "systemd-rfkill.socket"):
        try:
            make_symlink("/dev/null", root / "etc/systemd/system" / unit)
        except FilesystemError as e:
            logger.warning("Failed to mask %s: %s", unit, e)


def clear_motd(stage: str, root: Path) -> None:
    try:
        write_file(root / "etc/motd", "")
        remove_tree(root / "etc/update-motd.d")
    except FilesystemError as e:
        raise stage_fs_error(stage, e) from e


def clean_apt_directories(stage: str, root: Path) -> None:
    """Remove package lists, downloaded archives and apt binary caches."""
    try:
        for entry in list_dir(root / "var/lib/apt/lists"):
            remove_tree(entry)

        apt_cache = root / "var/cache/apt"
        if apt_cache.is_dir():
            for entry in apt_cache.glob("*.bin"):
                remove_tree(entry)
            for entry in apt_cache.glob("archives/*.deb"):
                remove_tree(entry)
    except FilesystemError as e:
        raise stage_fs_error(stage, e) from e


def expose_kernel_and_initrd(stage: str, root: Path) -> None:
    """Copy the versioned kernel and initrd to their fixed boot paths.

    Raises:
        StageError: If the kernel or initrd is missing.
    """
    boot = root / "boot"
    kernel = find_first(boot, "vmlinuz-*")
    initrd = find_first(boot, "initrd.img-*")
    if kernel is None or initrd is None:
        raise StageError(stage, f"Kernel or initrd not found in {boot}", code="missing_kernel")

    try:
        copy_file(kernel, root / KERNEL_PATH.lstrip("/"))
        copy_file(initrd, root / INITRD_PATH.lstrip("/"))
    except FilesystemError as e:
        raise stage_fs_error(stage, e) from e


__all__ = [
    "INITRD_PATH",
    "KERNEL_PATH",
    "OS_NAME",
    "brand_grub_defaults",
    "brand_identity",
    "clean_apt_directories",
    "clear_motd",
    "copy_rootfs",
    "exclude_firmware",
    "expose_kernel_and_initrd",
    "install_packages",
    "mask_rfkill",
    "remove_excluded_firmware",
    "render_firmware_exclusions",
    "render_grub_defaults",
    "render_issue",
    "render_issue_net",
    "render_module_blacklist",
    "render_os_release",
    "strip_documentation",
]
