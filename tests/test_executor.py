"""Tests for the external command executor."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from limeos_imagegen.executor import (
    ROOT_ENVIRONMENT,
    CommandExecutionError,
    CommandExecutor,
)


def _completed(returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode)


class TestRun:
    """Tests for CommandExecutor.run."""

    @patch("limeos_imagegen.executor.subprocess.run")
    def test_passes_argv_without_shell(self, mock_run):
        mock_run.return_value = _completed()

        result = CommandExecutor().run(["mksquashfs", "a b", "out"], cwd=Path("/tmp"))

        assert result.success
        assert result.command == "mksquashfs 'a b' out"
        args, kwargs = mock_run.call_args
        assert args[0] == ["mksquashfs", "a b", "out"]
        assert kwargs["cwd"] == Path("/tmp")
        assert kwargs["env"] is None
        assert kwargs["preexec_fn"] is None
        assert "shell" not in kwargs

    @patch("limeos_imagegen.executor.subprocess.run")
    def test_env_overrides_merge(self, mock_run):
        mock_run.return_value = _completed()

        CommandExecutor().run(["true"], env={"DEBIAN_FRONTEND": "noninteractive"})

        env = mock_run.call_args.kwargs["env"]
        assert env["DEBIAN_FRONTEND"] == "noninteractive"
        assert "PATH" in env

    @patch("limeos_imagegen.executor.subprocess.run")
    def test_nonzero_exit_is_returned(self, mock_run):
        """A failing command should be reported, not raised."""
        mock_run.return_value = _completed(returncode=3)

        result = CommandExecutor().run(["false"])

        assert not result.success
        assert result.exit_code == 3

    @patch("limeos_imagegen.executor.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="sleep", timeout=5)

        with pytest.raises(CommandExecutionError) as exc_info:
            CommandExecutor(timeout=5).run(["sleep", "60"])

        assert exc_info.value.code == "command_timeout"
        assert exc_info.value.exit_code == -1

    @patch("limeos_imagegen.executor.subprocess.run")
    def test_missing_program(self, mock_run):
        mock_run.side_effect = FileNotFoundError("no such file")

        with pytest.raises(CommandExecutionError) as exc_info:
            CommandExecutor().run(["debootstrap"])

        assert exc_info.value.code == "execution_error"

    @patch("limeos_imagegen.executor.subprocess.run")
    def test_input_text(self, mock_run):
        mock_run.return_value = _completed()

        CommandExecutor().run(["chpasswd"], input_text="user:user\n")

        kwargs = mock_run.call_args.kwargs
        assert kwargs["input"] == "user:user\n"
        assert kwargs["text"] is True


class TestRunInRoot:
    """Tests for CommandExecutor.run_in_root."""

    @patch("limeos_imagegen.executor.subprocess.run")
    def test_confines_child_to_root(self, mock_run, tmp_path):
        mock_run.return_value = _completed()

        result = CommandExecutor().run_in_root(
            tmp_path, ["apt-get", "download", "grub-pc"], workdir="/var/tmp",
            env={"DEBIAN_FRONTEND": "noninteractive"},
        )

        assert result.root == tmp_path
        kwargs = mock_run.call_args.kwargs
        assert callable(kwargs["preexec_fn"])
        assert kwargs["env"]["PATH"] == ROOT_ENVIRONMENT["PATH"]
        assert kwargs["env"]["DEBIAN_FRONTEND"] == "noninteractive"

    @patch("limeos_imagegen.executor.os.chdir")
    @patch("limeos_imagegen.executor.os.chroot")
    @patch("limeos_imagegen.executor.subprocess.run")
    def test_preexec_enters_root(self, mock_run, mock_chroot, mock_chdir, tmp_path):
        mock_run.return_value = _completed()

        CommandExecutor().run_in_root(tmp_path, ["true"], workdir="/usr/share")
        mock_run.call_args.kwargs["preexec_fn"]()

        mock_chroot.assert_called_once_with(tmp_path)
        mock_chdir.assert_called_once_with("/usr/share")


class TestLogFile:
    """Tests for command output logging."""

    @patch("limeos_imagegen.executor.subprocess.run")
    def test_appends_headers(self, mock_run, tmp_path):
        mock_run.return_value = _completed(returncode=1)
        log_path = tmp_path / "logs" / "build.log"
        executor = CommandExecutor(log_path=log_path)

        executor.run_in_root(tmp_path, ["apt-get", "update"])
        executor.run(["xorriso", "-version"])

        text = log_path.read_text()
        assert "# Command: apt-get update" in text
        assert f"# Root: {tmp_path}" in text
        assert "# Command: xorriso -version" in text
        assert text.count("# Exit code: 1") == 2
        assert mock_run.call_args.kwargs["stderr"] == subprocess.STDOUT
