"""Stage definitions for the build pipeline.

Each stage declares the artifacts it consumes and the one it produces. The
declared order is checked once so a stage never runs before its inputs
exist.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from limeos_imagegen.errors import PipelineDefinitionError

# Input name for everything provided by the host rather than a stage
HOST_INPUT = "host"

PREPARATION = "preparation"
BASE = "base"
TARGET = "target"
CARRIER = "carrier"
ASSEMBLY = "assembly"


@dataclass(frozen=True)
class PipelineStage:
    """A single pipeline stage.

    Attributes:
        name: Stage name used in logs and reports.
        inputs: Artifacts consumed by the stage.
        output: Artifact produced by the stage.
        cache_applicable: Whether the stage consults the cache.
    """

    name: str
    inputs: tuple[str, ...]
    output: str
    cache_applicable: bool = False


BUILD_STAGES: tuple[PipelineStage, ...] = (
    PipelineStage(PREPARATION, (HOST_INPUT,), "components"),
    PipelineStage(BASE, (HOST_INPUT,), "base_rootfs", cache_applicable=True),
    PipelineStage(TARGET, ("base_rootfs",), "payload_tarball", cache_applicable=True),
    PipelineStage(
        CARRIER,
        ("base_rootfs", "payload_tarball", "components"),
        "carrier_rootfs",
        cache_applicable=True,
    ),
    PipelineStage(ASSEMBLY, ("carrier_rootfs",), "iso_image"),
)


def validate_stage_order(stages: Sequence[PipelineStage]) -> None:
    """Check that every stage input is produced by an earlier stage.

    Raises:
        PipelineDefinitionError: On a forward or missing dependency, or a
            duplicate stage name.
    """
    available = {HOST_INPUT}
    seen: set[str] = set()

    for stage in stages:
        if stage.name in seen:
            raise PipelineDefinitionError(f"Duplicate stage name: {stage.name}")
        seen.add(stage.name)

        missing = [name for name in stage.inputs if name not in available]
        if missing:
            raise PipelineDefinitionError(
                f"Stage {stage.name!r} consumes {', '.join(missing)} "
                "which no earlier stage produces"
            )
        available.add(stage.output)


__all__ = [
    "ASSEMBLY",
    "BASE",
    "BUILD_STAGES",
    "CARRIER",
    "HOST_INPUT",
    "PREPARATION",
    "TARGET",
    "PipelineStage",
    "validate_stage_order",
]
