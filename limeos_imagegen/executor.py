"""External command executor.

This module handles:
- Running argv lists synchronously with subprocess (never through a shell)
- Running argv lists inside a root filesystem (chroot + chdir in the child)
- Streaming output to the console or appending it to a build log file
- Enforcing optional command timeouts

Commands are composed by callers as lists of strings; no quoting layer exists.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from limeos_imagegen.errors import COMMAND_ERROR, ImagegenError

logger = logging.getLogger(__name__)

# Environment used for commands executed inside a root filesystem
ROOT_ENVIRONMENT = {
    "PATH": "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin",
    "HOME": "/root",
    "LC_ALL": "C",
}


class CommandExecutionError(ImagegenError):
    """Raised when a command cannot be started or times out."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = COMMAND_ERROR,
    ) -> None:
        super().__init__(message, code)
        self.exit_code = exit_code


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        argv: The argument vector that was executed.
        exit_code: Process exit code.
        started_at: Start time.
        finished_at: Finish time.
        root: Root filesystem the command ran in, if any.
    """

    argv: list[str]
    exit_code: int
    started_at: datetime
    finished_at: datetime
    root: Path | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def command(self) -> str:
        return shlex.join(self.argv)


def _enter_root(root: Path, workdir: str) -> Callable[[], None]:
    """Build a preexec hook that confines the child process to ``root``."""

    def _preexec() -> None:
        os.chroot(root)
        os.chdir(workdir)

    return _preexec


class CommandExecutor:
    """Runs external commands one at a time.

    Args:
        log_path: Optional log file; command output is appended to it instead
            of being streamed to the console.
        timeout: Optional per-command timeout in seconds.
    """

    def __init__(self, log_path: Path | None = None, timeout: int | None = None) -> None:
        self.log_path = log_path
        self.timeout = timeout

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
    ) -> CommandResult:
        """Run a command on the host.

        Args:
            argv: Command and arguments.
            cwd: Optional working directory.
            env: Optional environment overrides merged over os.environ.
            input_text: Optional text fed to the command's stdin.

        Returns:
            CommandResult with the exit status.

        Raises:
            CommandExecutionError: If the command cannot start or times out.
        """
        full_env: dict[str, str] | None = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)
        return self._execute(
            list(argv), cwd=cwd, env=full_env, input_text=input_text
        )

    def run_in_root(
        self,
        root: Path,
        argv: Sequence[str],
        *,
        workdir: str = "/",
        env: Mapping[str, str] | None = None,
        input_text: str | None = None,
    ) -> CommandResult:
        """Run a command with its root directory set to ``root``.

        Args:
            root: Root filesystem directory.
            argv: Command and arguments, resolved inside the root.
            workdir: Working directory inside the root.
            env: Environment overrides merged over ROOT_ENVIRONMENT.
            input_text: Optional text fed to the command's stdin.

        Returns:
            CommandResult with the exit status.

        Raises:
            CommandExecutionError: If the command cannot start or times out.
        """
        full_env = dict(ROOT_ENVIRONMENT)
        if env:
            full_env.update(env)
        return self._execute(
            list(argv),
            env=full_env,
            input_text=input_text,
            root=root,
            preexec_fn=_enter_root(root, workdir),
        )

    def _execute(
        self,
        argv: list[str],
        *,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        input_text: str | None = None,
        root: Path | None = None,
        preexec_fn: Callable[[], None] | None = None,
    ) -> CommandResult:
        cmd_str = shlex.join(argv)
        if root is not None:
            logger.info("Executing in %s: %s", root, cmd_str)
        else:
            logger.info("Executing: %s", cmd_str)

        started_at = datetime.now(timezone.utc)

        try:
            if self.log_path is not None:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with self.log_path.open("a") as log_file:
                    log_file.write(f"# Command: {cmd_str}\n")
                    if root is not None:
                        log_file.write(f"# Root: {root}\n")
                    log_file.write(f"# Started: {started_at.isoformat()}\n")
                    log_file.flush()

                    result = subprocess.run(
                        argv,
                        cwd=cwd,
                        env=env,
                        input=input_text,
                        text=input_text is not None,
                        stdout=log_file,
                        stderr=subprocess.STDOUT,
                        timeout=self.timeout,
                        preexec_fn=preexec_fn,
                        check=False,
                    )
            else:
                result = subprocess.run(
                    argv,
                    cwd=cwd,
                    env=env,
                    input=input_text,
                    text=input_text is not None,
                    timeout=self.timeout,
                    preexec_fn=preexec_fn,
                    check=False,
                )

        except subprocess.TimeoutExpired as e:
            message = f"Command timed out after {self.timeout} seconds: {cmd_str}"
            logger.error(message)
            raise CommandExecutionError(
                message, exit_code=-1, code="command_timeout"
            ) from e

        except (OSError, subprocess.SubprocessError) as e:
            message = f"Failed to execute {argv[0]}: {e}"
            logger.error(message)
            raise CommandExecutionError(message, code="execution_error") from e

        finished_at = datetime.now(timezone.utc)
        exit_code = result.returncode

        if self.log_path is not None:
            with self.log_path.open("a") as log_file:
                duration = (finished_at - started_at).total_seconds()
                log_file.write(f"# Exit code: {exit_code} ({duration:.1f}s)\n\n")

        if exit_code != 0:
            logger.debug("Command exited with %d: %s", exit_code, cmd_str)

        return CommandResult(
            argv=argv,
            exit_code=exit_code,
            started_at=started_at,
            finished_at=finished_at,
            root=root,
        )


__all__ = [
    "ROOT_ENVIRONMENT",
    "CommandExecutionError",
    "CommandExecutor",
    "CommandResult",
]
