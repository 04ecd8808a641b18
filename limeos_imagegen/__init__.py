"""LimeOS Image Generator - build pipeline for the LimeOS installer ISO.

This package stages a base Debian root filesystem, derives the installable
target system and the live carrier system from it, and assembles a hybrid
BIOS/UEFI boot image, reusing cached artifacts where possible.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
