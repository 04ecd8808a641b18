"""Cache root resolution."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from limeos_imagegen.config import Settings
from limeos_imagegen.errors import CacheDirectoryError

logger = logging.getLogger(__name__)

CACHE_SUBDIR = "limeos"


def resolve_cache_dir(
    settings: Settings | None = None,
    env: Mapping[str, str] | None = None,
) -> Path:
    """Determine the cache root directory.

    Precedence: ``settings.cache_dir``, then ``$XDG_CACHE_HOME/limeos``,
    then ``$HOME/.cache/limeos``. Empty variables count as unset.

    Args:
        settings: Optional settings carrying an explicit override.
        env: Environment mapping; defaults to os.environ.

    Returns:
        Cache root path (not created).

    Raises:
        CacheDirectoryError: If none of the sources yields a directory.
    """
    if settings is not None and settings.cache_dir is not None:
        return settings.cache_dir

    if env is None:
        env = os.environ

    xdg_cache = env.get("XDG_CACHE_HOME")
    if xdg_cache:
        return Path(xdg_cache) / CACHE_SUBDIR

    home = env.get("HOME")
    if home:
        return Path(home) / ".cache" / CACHE_SUBDIR

    raise CacheDirectoryError()


__all__ = ["CACHE_SUBDIR", "resolve_cache_dir"]
