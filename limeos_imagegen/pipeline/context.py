"""Shared state handed to every pipeline stage."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from limeos_imagegen.cache import CacheStore
from limeos_imagegen.config import BuildConfig, Settings
from limeos_imagegen.errors import COMMAND_ERROR, StageError
from limeos_imagegen.executor import CommandExecutionError, CommandExecutor, CommandResult
from limeos_imagegen.fsops import FilesystemError
from limeos_imagegen.types import DEFAULT_COMPONENTS, ComponentSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildLayout:
    """Paths of the intermediate artifacts under the build directory."""

    build_dir: Path

    @property
    def components_dir(self) -> Path:
        return self.build_dir / "components"

    @property
    def base_rootfs(self) -> Path:
        return self.build_dir / "base-rootfs"

    @property
    def target_rootfs(self) -> Path:
        return self.build_dir / "target-rootfs"

    @property
    def carrier_rootfs(self) -> Path:
        return self.build_dir / "carrier-rootfs"

    @property
    def payload_tarball(self) -> Path:
        return self.build_dir / "rootfs.tar.gz"

    @property
    def iso_staging(self) -> Path:
        return self.build_dir / "staging-iso"

    @property
    def bundle_workdir(self) -> Path:
        return self.build_dir / "bundles"


@dataclass
class BuildContext:
    """Run-wide state for one build.

    Attributes:
        config: Immutable per-run configuration.
        settings: Application settings.
        layout: Build directory layout.
        executor: External command executor.
        cache: Cache store, or None for an uncached run.
        client: HTTP client for release lookups and downloads.
        component_specs: Components to fetch and install.
        components: Binaries fetched during preparation, keyed by repo name.
        output_path: Final image path, set by the assembly stage.
    """

    config: BuildConfig
    settings: Settings
    layout: BuildLayout
    executor: CommandExecutor
    cache: CacheStore | None = None
    client: httpx.Client | None = None
    component_specs: tuple[ComponentSpec, ...] = DEFAULT_COMPONENTS
    components: dict[str, Path] = field(default_factory=dict)
    output_path: Path | None = None

    @property
    def image_path(self) -> Path:
        name = f"{self.settings.iso_prefix}-{self.config.version}.iso"
        return self.settings.output_dir / name

    def run(
        self,
        stage: str,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a host command that must succeed.

        Raises:
            StageError: If the command fails or cannot be started.
        """
        try:
            result = self.executor.run(argv, cwd=cwd, env=env)
        except CommandExecutionError as e:
            raise StageError(stage, str(e), code=e.code) from e
        _check(stage, result)
        return result

    def run_in_root(
        self,
        stage: str,
        root: Path,
        argv: Sequence[str],
        *,
        workdir: str = "/",
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
    ) -> CommandResult:
        """Run a command inside ``root`` that must succeed.

        Raises:
            StageError: If the command fails or cannot be started.
        """
        try:
            result = self.executor.run_in_root(
                root, argv, workdir=workdir, env=env, input_text=input_text
            )
        except CommandExecutionError as e:
            raise StageError(stage, str(e), code=e.code) from e
        _check(stage, result)
        return result


def _check(stage: str, result: CommandResult) -> None:
    if not result.success:
        raise StageError(
            stage,
            f"Command failed with exit code {result.exit_code}: {result.command}",
            code=COMMAND_ERROR,
        )


def stage_fs_error(stage: str, error: FilesystemError) -> StageError:
    """Wrap a filesystem failure as a stage failure."""
    return StageError(stage, str(error), code=error.code)


__all__ = ["BuildContext", "BuildLayout", "stage_fs_error"]
