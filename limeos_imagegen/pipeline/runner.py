"""Build pipeline runner.

This module handles:
- Host dependency preflight before any stage runs
- Sequencing stages strictly in order with cancellation polls between them
- Cleaning up the build directory on failure or cancellation
- Producing a BuildReport with the process exit code
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from limeos_imagegen.cache import open_cache_store
from limeos_imagegen.config import BuildConfig, Settings
from limeos_imagegen.errors import FILESYSTEM_ERROR, DependencyError, ImagegenError
from limeos_imagegen.executor import CommandExecutor
from limeos_imagegen.fsops import FilesystemError, make_dirs, remove_tree_with_retries
from limeos_imagegen.interrupt import CancellationToken
from limeos_imagegen.pipeline.assembly import SYSLINUX_MODULES, run_assembly_stage
from limeos_imagegen.pipeline.base import run_base_stage
from limeos_imagegen.pipeline.carrier import run_carrier_stage
from limeos_imagegen.pipeline.context import BuildContext, BuildLayout
from limeos_imagegen.pipeline.preparation import run_preparation_stage
from limeos_imagegen.pipeline.stages import (
    ASSEMBLY,
    BASE,
    BUILD_STAGES,
    CARRIER,
    PREPARATION,
    TARGET,
    PipelineStage,
    validate_stage_order,
)
from limeos_imagegen.pipeline.target import run_target_stage
from limeos_imagegen.types import (
    EXIT_CANCELLED,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    BuildStatus,
)
from limeos_imagegen.versions import validate_version

logger = logging.getLogger(__name__)

StageHandler = Callable[[BuildContext], None]

REQUIRED_COMMANDS = (
    "debootstrap",
    "mksquashfs",
    "xorriso",
    "mkfs.fat",
    "dd",
    "cp",
    "tar",
    "chroot",
    "mount",
    "umount",
)

STAGE_HANDLERS: dict[str, StageHandler] = {
    PREPARATION: run_preparation_stage,
    BASE: run_base_stage,
    TARGET: run_target_stage,
    CARRIER: run_carrier_stage,
    ASSEMBLY: run_assembly_stage,
}

_EXIT_CODES = {
    BuildStatus.SUCCEEDED: EXIT_SUCCESS,
    BuildStatus.FAILED: EXIT_FAILURE,
    BuildStatus.CANCELLED: EXIT_CANCELLED,
}


def default_stages() -> list[tuple[PipelineStage, StageHandler]]:
    return [(stage, STAGE_HANDLERS[stage.name]) for stage in BUILD_STAGES]


def required_host_files(settings: Settings) -> list[Path]:
    """Host files the assembly stage copies into the image."""
    return [
        settings.isolinux_bin_path,
        settings.isolinux_mbr_path,
        settings.background_path,
        *(settings.syslinux_modules_dir / module for module in SYSLINUX_MODULES),
    ]


def find_missing_dependencies(
    settings: Settings,
    which: Callable[[str], str | None] = shutil.which,
) -> list[str]:
    """List host commands and files that are not available."""
    missing = [cmd for cmd in REQUIRED_COMMANDS if which(cmd) is None]
    missing.extend(str(path) for path in required_host_files(settings) if not path.is_file())
    return missing


def check_host_dependencies(
    settings: Settings,
    which: Callable[[str], str | None] = shutil.which,
) -> None:
    """Verify host tools and files.

    Raises:
        DependencyError: If anything is missing.
    """
    missing = find_missing_dependencies(settings, which)
    for item in missing:
        logger.error("Missing required dependency: %s", item)
    if missing:
        raise DependencyError(missing)


@dataclass
class BuildReport:
    """Outcome of a build run.

    Attributes:
        status: Final status.
        version: Requested version.
        stages_completed: Names of stages that finished.
        failed_stage: Stage that failed, if any.
        error_code: Error code of the failure.
        error_message: Human-readable failure message.
        output_path: Path of the produced image on success.
        started_at: Run start time.
        finished_at: Run finish time.
    """

    status: BuildStatus
    version: str
    stages_completed: list[str] = field(default_factory=list)
    failed_stage: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    output_path: Path | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES.get(self.status, EXIT_FAILURE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "stages_completed": list(self.stages_completed),
            "failed_stage": self.failed_stage,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "output_path": str(self.output_path) if self.output_path else None,
            "exit_code": self.exit_code,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class PhaseRunner:
    """Runs the build stages for one version.

    Args:
        settings: Application settings.
        config: Per-run build configuration.
        executor: Command executor; built from settings if omitted.
        token: Cancellation token polled between stages.
        stages: Ordered (stage, handler) pairs; the full pipeline if omitted.
        client: Optional HTTP client for the preparation stage.
        check_dependencies: Whether to run the host preflight.
        env: Environment used to resolve the cache root.
    """

    def __init__(
        self,
        settings: Settings,
        config: BuildConfig,
        executor: CommandExecutor | None = None,
        token: CancellationToken | None = None,
        stages: Sequence[tuple[PipelineStage, StageHandler]] | None = None,
        client: httpx.Client | None = None,
        check_dependencies: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self.config = config
        if executor is None:
            log_path = settings.log_dir / "build.log" if settings.log_dir else None
            executor = CommandExecutor(log_path=log_path)
        self.executor = executor
        self.token = token or CancellationToken()
        self.stages = list(stages) if stages is not None else default_stages()
        self.client = client
        self.check_dependencies = check_dependencies
        self.env = env

    def run(self) -> BuildReport:
        """Run every stage in order.

        Returns:
            BuildReport; never raises for stage failures.
        """
        report = BuildReport(
            status=BuildStatus.RUNNING,
            version=self.config.version,
            started_at=datetime.now(timezone.utc),
        )

        if not validate_version(self.config.version):
            return self._finish(
                report,
                BuildStatus.FAILED,
                code="invalid_version_format",
                message=f"Invalid version format: {self.config.version!r} (expected X.Y.Z or vX.Y.Z)",
            )

        try:
            validate_stage_order([stage for stage, _ in self.stages])
            if self.check_dependencies:
                check_host_dependencies(self.settings)
        except ImagegenError as e:
            return self._finish(report, BuildStatus.FAILED, code=e.code, message=str(e))

        build_dir = self.settings.build_dir
        try:
            make_dirs(build_dir)
        except FilesystemError as e:
            return self._finish(report, BuildStatus.FAILED, code=e.code, message=str(e))
        self.token.register(build_dir)

        ctx = BuildContext(
            config=self.config,
            settings=self.settings,
            layout=BuildLayout(build_dir),
            executor=self.executor,
            cache=open_cache_store(self.settings, self.config, self.executor, self.env),
            client=self.client,
        )

        logger.info("Building %s %s", self.settings.iso_prefix, self.config.version)
        total = len(self.stages)

        for index, (stage, handler) in enumerate(self.stages, start=1):
            if self.token.is_interrupted():
                return self._cancel(report)

            logger.info("Stage %d/%d: %s", index, total, stage.name)
            try:
                handler(ctx)
            except ImagegenError as e:
                return self._fail_stage(report, build_dir, stage.name, e, e.code)
            except OSError as e:
                return self._fail_stage(report, build_dir, stage.name, e, FILESYSTEM_ERROR)

            report.stages_completed.append(stage.name)

        # A signal after the last stage keeps the finished image
        report.output_path = ctx.output_path
        self._cleanup(build_dir)
        logger.info("Build complete: %s", ctx.output_path)
        return self._finish(report, BuildStatus.SUCCEEDED)

    def _fail_stage(
        self,
        report: BuildReport,
        build_dir: Path,
        stage_name: str,
        error: Exception,
        code: str,
    ) -> BuildReport:
        if self.token.is_interrupted():
            return self._cancel(report)
        report.failed_stage = stage_name
        logger.error("Stage %s failed: %s", stage_name, error)
        self._cleanup(build_dir)
        return self._finish(report, BuildStatus.FAILED, code=code, message=str(error))

    def _cleanup(self, build_dir: Path) -> None:
        remove_tree_with_retries(build_dir)
        self.token.clear()

    def _cancel(self, report: BuildReport) -> BuildReport:
        # The token already removed the registered build directory
        self.token.clear()
        return self._finish(
            report, BuildStatus.CANCELLED, code="cancelled", message="Build interrupted"
        )

    def _finish(
        self,
        report: BuildReport,
        status: BuildStatus,
        code: str | None = None,
        message: str | None = None,
    ) -> BuildReport:
        report.status = status
        report.error_code = code
        report.error_message = message
        report.finished_at = datetime.now(timezone.utc)
        return report


__all__ = [
    "REQUIRED_COMMANDS",
    "STAGE_HANDLERS",
    "BuildReport",
    "PhaseRunner",
    "StageHandler",
    "check_host_dependencies",
    "default_stages",
    "find_missing_dependencies",
    "required_host_files",
]
