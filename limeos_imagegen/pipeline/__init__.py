"""Build pipeline module.

This module handles:
- Stage definitions and order validation
- Stage implementations (preparation, base, target, carrier, assembly)
- The runner that sequences stages and reports the outcome
"""

from limeos_imagegen.pipeline.context import BuildContext, BuildLayout
from limeos_imagegen.pipeline.runner import (
    BuildReport,
    PhaseRunner,
    check_host_dependencies,
)
from limeos_imagegen.pipeline.stages import BUILD_STAGES, PipelineStage, validate_stage_order

__all__ = [
    "BUILD_STAGES",
    "BuildContext",
    "BuildLayout",
    "BuildReport",
    "PhaseRunner",
    "PipelineStage",
    "check_host_dependencies",
    "validate_stage_order",
]
