"""Shared type definitions for limeos_imagegen.

This module contains dataclasses, enums, and type aliases shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class BuildStatus(str, Enum):
    """Final status of a build run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Outcome(str, Enum):
    """Outcome of an operation that owns a degraded-mode fallback."""

    SUCCESS = "success"
    FALLBACK = "fallback"


class BootMode(str, Enum):
    """Boot mode category for bundled bootloader packages."""

    BIOS = "bios"
    EFI = "efi"


# Process exit codes surfaced by the CLI
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


@dataclass(frozen=True)
class ComponentSpec:
    """A LimeOS component published as a GitHub release binary.

    Attributes:
        repo_name: Repository name under the GitHub organization; also the
            release asset name.
        binary_name: Name the binary is installed under in the image.
        required: Whether a fetch/install failure aborts the build.
    """

    repo_name: str
    binary_name: str
    required: bool = True


DEFAULT_COMPONENTS: tuple[ComponentSpec, ...] = (
    ComponentSpec("installation-wizard", "limeos-installation-wizard", required=True),
    ComponentSpec("window-manager", "limeos-window-manager", required=False),
    ComponentSpec("display-manager", "limeos-display-manager", required=False),
)


@dataclass
class OperationResult:
    """Result of a best-effort operation (cache restore/save, mounts, etc.)."""

    outcome: Outcome
    message: str
    code: str | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Whether the operation fully succeeded."""
        return self.outcome is Outcome.SUCCESS

    @classmethod
    def ok(cls, message: str, **details: object) -> "OperationResult":
        return cls(Outcome.SUCCESS, message, details=dict(details))

    @classmethod
    def fallback(
        cls, message: str, code: str | None = None, **details: object
    ) -> "OperationResult":
        return cls(Outcome.FALLBACK, message, code=code, details=dict(details))


__all__ = [
    "DEFAULT_COMPONENTS",
    "EXIT_CANCELLED",
    "EXIT_FAILURE",
    "EXIT_SUCCESS",
    "BootMode",
    "BuildStatus",
    "ComponentSpec",
    "OperationResult",
    "Outcome",
]
