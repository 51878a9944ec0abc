"""Tests for shell utilities.

Tests cover:
- find_suitable_shell: Shell detection and the KESTREL_SHELL override
- build_shell_command: Command argument building
- SubprocessShell: command execution and failure reporting
"""

import os

import pytest

from kestrel.utils.shell_utils import (
    ShellExecError,
    SubprocessShell,
    _dedupe_preserve_order,
    _is_executable,
    build_shell_command,
    find_suitable_shell,
)

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX shell required")


class TestHelpers:
    """Tests for small helper functions."""

    def test_executable_file(self, tmp_path):
        script = tmp_path / "run.sh"
        script.write_text("#!/bin/sh\necho hi")
        script.chmod(0o755)
        assert _is_executable(str(script)) is True

    def test_missing_file_is_not_executable(self):
        assert _is_executable("/nonexistent/path/to/file") is False

    def test_dedupe_preserves_first_occurrence(self):
        assert _dedupe_preserve_order(["z", "a", "z", "", "a", "c"]) == ["z", "a", "c"]


class TestBuildShellCommand:
    """Tests for build_shell_command."""

    def test_posix_shell_uses_dash_c(self):
        assert build_shell_command("/bin/bash", "echo hi") == ["/bin/bash", "-c", "echo hi"]

    def test_cmd_exe_uses_slash_c(self):
        argv = build_shell_command("C:\\Windows\\System32\\cmd.exe", "echo hi")
        assert argv[-2:] == ["/c", "echo hi"]


class TestFindSuitableShell:
    """Tests for find_suitable_shell."""

    @posix_only
    def test_override_wins_when_executable(self, tmp_path, monkeypatch):
        shell = tmp_path / "myshell"
        shell.write_text("#!/bin/sh\n")
        shell.chmod(0o755)
        monkeypatch.setenv("KESTREL_SHELL", str(shell))
        assert find_suitable_shell() == str(shell)

    @posix_only
    def test_invalid_override_is_ignored(self, monkeypatch):
        monkeypatch.setenv("KESTREL_SHELL", "/nonexistent/shell")
        assert find_suitable_shell() != "/nonexistent/shell"


@posix_only
class TestSubprocessShell:
    """Tests for SubprocessShell.exec."""

    def test_returns_stdout_and_stderr(self):
        stdout, stderr = SubprocessShell().exec("echo out; echo err 1>&2")
        assert stdout == "out\n"
        assert stderr == "err\n"

    def test_uses_given_environment(self):
        env = {"PATH": os.environ.get("PATH", ""), "GREETING": "hello"}
        stdout, _ = SubprocessShell(env=env).exec('printf "%s" "$GREETING"')
        assert stdout == "hello"

    def test_environment_is_read_at_exec_time(self):
        env = {"PATH": os.environ.get("PATH", "")}
        shell = SubprocessShell(env=env)
        env["LATE"] = "yes"
        stdout, _ = shell.exec('printf "%s" "$LATE"')
        assert stdout == "yes"

    def test_non_zero_exit_raises(self):
        with pytest.raises(ShellExecError) as excinfo:
            SubprocessShell().exec("echo partial; exit 3")
        assert "3" in str(excinfo.value)
        assert excinfo.value.stdout == "partial\n"

    def test_timeout_raises(self):
        with pytest.raises(ShellExecError, match="timed out"):
            SubprocessShell().exec("sleep 5", timeout=0.2)
