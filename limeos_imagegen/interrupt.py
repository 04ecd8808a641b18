"""Cooperative cancellation for build runs.

This module handles:
- A cancellation token polled by the pipeline between stages
- One-shot cleanup of the registered build directory on interrupt
- SIGINT/SIGTERM registration that only flips the token's flag
"""

from __future__ import annotations

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType
from typing import Any

from limeos_imagegen.fsops import FilesystemError, remove_tree

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """Interrupt state for a single build run.

    The signal handler only calls trigger(); cleanup happens in the main flow
    the first time is_interrupted() observes the flag.
    """

    def __init__(self) -> None:
        self._interrupted = False
        self._handled = False
        self._cleanup_dir: Path | None = None

    @property
    def cleanup_dir(self) -> Path | None:
        return self._cleanup_dir

    def register(self, cleanup_dir: Path) -> None:
        """Register the directory to remove when an interrupt is observed."""
        self._cleanup_dir = cleanup_dir

    def trigger(self, signum: int | None = None, frame: FrameType | None = None) -> None:
        """Mark the run as interrupted. Safe to call from a signal handler."""
        self._interrupted = True

    def is_interrupted(self) -> bool:
        """Check for an interrupt, cleaning up once on first observation."""
        if not self._interrupted:
            return False

        if not self._handled:
            self._handled = True
            logger.warning("Build interrupted, cleaning up...")
            if self._cleanup_dir is not None:
                try:
                    remove_tree(self._cleanup_dir)
                except FilesystemError as e:
                    logger.warning("%s", e)
        return True

    def clear(self) -> None:
        """Reset all interrupt state, including the registered directory."""
        self._interrupted = False
        self._handled = False
        self._cleanup_dir = None


def install_signal_handlers(token: CancellationToken) -> dict[int, Any]:
    """Route SIGINT and SIGTERM to ``token.trigger``.

    Returns:
        Mapping of signal number to the previously installed handler.
    """
    previous: dict[int, Any] = {}
    for signum in HANDLED_SIGNALS:
        previous[signum] = signal.signal(signum, token.trigger)
    return previous


def restore_signal_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


@contextmanager
def signal_guard(token: CancellationToken) -> Iterator[CancellationToken]:
    """Install the token's signal handlers for the duration of the block."""
    previous = install_signal_handlers(token)
    try:
        yield token
    finally:
        restore_signal_handlers(previous)


__all__ = [
    "HANDLED_SIGNALS",
    "CancellationToken",
    "install_signal_handlers",
    "restore_signal_handlers",
    "signal_guard",
]
