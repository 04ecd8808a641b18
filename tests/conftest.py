"""Shared fixtures for limeos_imagegen tests."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import pytest

from limeos_imagegen.config import BuildConfig, Settings
from limeos_imagegen.executor import CommandExecutor, CommandResult
from limeos_imagegen.pipeline.assembly import SYSLINUX_MODULES
from limeos_imagegen.pipeline.context import BuildContext, BuildLayout


@dataclass
class RecordedCall:
    """A command captured by RecordingExecutor."""

    argv: list[str]
    root: Path | None = None
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    input_text: str | None = None
    workdir: str = "/"


SideEffect = Callable[[list[str], Path | None], None]


class RecordingExecutor(CommandExecutor):
    """Executor that records commands instead of running them.

    Args:
        failures: Exit code to return per program name.
        side_effects: Callable run per program name, to simulate output files.
    """

    def __init__(
        self,
        failures: dict[str, int] | None = None,
        side_effects: dict[str, SideEffect] | None = None,
    ) -> None:
        super().__init__()
        self.calls: list[RecordedCall] = []
        self.failures = dict(failures or {})
        self.side_effects = dict(side_effects or {})

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
    ) -> CommandResult:
        call = RecordedCall(list(argv), cwd=cwd, env=env, input_text=input_text)
        return self._record(call)

    def run_in_root(
        self,
        root: Path,
        argv: Sequence[str],
        *,
        workdir: str = "/",
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
    ) -> CommandResult:
        call = RecordedCall(
            list(argv), root=root, env=env, input_text=input_text, workdir=workdir
        )
        return self._record(call)

    def _record(self, call: RecordedCall) -> CommandResult:
        self.calls.append(call)
        program = call.argv[0]
        effect = self.side_effects.get(program)
        if effect is not None:
            effect(call.argv, call.root)
        now = datetime.now(timezone.utc)
        return CommandResult(
            argv=call.argv,
            exit_code=self.failures.get(program, 0),
            started_at=now,
            finished_at=now,
            root=call.root,
        )

    @property
    def programs(self) -> list[str]:
        return [call.argv[0] for call in self.calls]

    def find(self, program: str) -> list[RecordedCall]:
        return [call for call in self.calls if call.argv[0] == program]


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with every path inside tmp_path."""
    return Settings(
        build_dir=tmp_path / "build",
        output_dir=tmp_path / "out",
        cache_dir=tmp_path / "cache",
        local_bin_dir=tmp_path / "bin",
        splash_logo_path=tmp_path / "assets" / "splash.png",
        background_path=tmp_path / "assets" / "black.png",
        isolinux_bin_path=tmp_path / "host" / "isolinux.bin",
        isolinux_mbr_path=tmp_path / "host" / "isohdpfx.bin",
        syslinux_modules_dir=tmp_path / "host" / "modules",
        grub_efi_path=tmp_path / "host" / "grubx64.efi",
    )


@pytest.fixture
def build_config() -> BuildConfig:
    return BuildConfig(version="1.2.0")


@pytest.fixture
def context(
    settings: Settings, build_config: BuildConfig, executor: RecordingExecutor
) -> BuildContext:
    """Uncached build context backed by the recording executor."""
    return BuildContext(
        config=build_config,
        settings=settings,
        layout=BuildLayout(settings.build_dir),
        executor=executor,
    )


@pytest.fixture
def make_executor() -> type[RecordingExecutor]:
    """RecordingExecutor class, for tests that need failures or side effects."""
    return RecordingExecutor


@pytest.fixture
def host_files(settings: Settings) -> Settings:
    """Create the host boot files and image assets the assembly stage copies."""
    for path in (
        settings.isolinux_bin_path,
        settings.isolinux_mbr_path,
        settings.background_path,
        settings.splash_logo_path,
        settings.grub_efi_path,
        *(settings.syslinux_modules_dir / module for module in SYSLINUX_MODULES),
    ):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(path.name.encode())
    return settings


def make_kernel(root: Path, release: str = "6.1.0-18-amd64") -> None:
    """Place a versioned kernel and initrd under ``root/boot``."""
    boot = root / "boot"
    boot.mkdir(parents=True, exist_ok=True)
    (boot / f"vmlinuz-{release}").write_bytes(b"kernel")
    (boot / f"initrd.img-{release}").write_bytes(b"initrd")


@pytest.fixture
def kernel_factory() -> Callable[..., None]:
    return make_kernel
