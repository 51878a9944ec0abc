"""Shell detection and command execution helpers.

Selects a suitable shell for command substitution, preferring bash/zsh over
the system's /bin/sh default. On Windows, prefers Git Bash and falls back to
cmd.exe if no bash is available.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from typing import Iterable, List, Mapping, Optional, Tuple

from kestrel.utils.log import get_logger

logger = get_logger()

# Common locations to probe if shutil.which misses an otherwise standard path.
_COMMON_BIN_DIRS: tuple[str, ...] = ("/bin", "/usr/bin", "/usr/local/bin", "/opt/homebrew/bin")
_IS_WINDOWS = os.name == "nt"


class ShellExecError(RuntimeError):
    """Raised when a shell command fails, times out, or cannot be started."""

    def __init__(self, message: str, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


def _is_executable(path: str) -> bool:
    return bool(path) and os.path.isfile(path) and os.access(path, os.X_OK)


def _dedupe_preserve_order(items: Iterable[str]) -> list[str]:
    seen = set()
    ordered: list[str] = []
    for item in items:
        if item and item not in seen:
            ordered.append(item)
            seen.add(item)
    return ordered


def _find_git_bash_windows() -> Optional[str]:
    env_path = os.environ.get("GIT_BASH_PATH") or os.environ.get("GITBASH")
    if env_path and _is_executable(env_path):
        return env_path

    bash_in_path = shutil.which("bash")
    if bash_in_path and "git" in bash_in_path.lower():
        return bash_in_path

    common = [
        r"C:\Program Files\Git\bin\bash.exe",
        r"C:\Program Files\Git\usr\bin\bash.exe",
        r"C:\Program Files (x86)\Git\bin\bash.exe",
    ]
    for path in common:
        if _is_executable(path):
            return path
    return None


def find_suitable_shell() -> str:
    """Return a best-effort shell path, preferring bash/zsh (Git Bash on Windows).

    Raises:
        RuntimeError: if no suitable shell is found.
    """
    env_override = os.environ.get("KESTREL_SHELL")
    if env_override and _is_executable(env_override):
        logger.debug("Using shell from KESTREL_SHELL: %s", env_override)
        return env_override

    if _IS_WINDOWS:
        git_bash = _find_git_bash_windows()
        if git_bash:
            return git_bash
        cmd_path = os.environ.get("ComSpec") or shutil.which("cmd.exe")
        if cmd_path and _is_executable(cmd_path):
            logger.warning("Falling back to cmd.exe; bash not found. Using: %s", cmd_path)
            return cmd_path
        raise RuntimeError(
            "No suitable shell found on Windows. Install Git for Windows to provide bash."
        )

    current_shell = os.environ.get("SHELL", "")
    if ("bash" in current_shell or "zsh" in current_shell) and _is_executable(current_shell):
        return current_shell

    candidates: list[str] = [shutil.which("bash") or "", shutil.which("zsh") or ""]
    for bin_dir in _COMMON_BIN_DIRS:
        candidates.append(os.path.join(bin_dir, "bash"))
        candidates.append(os.path.join(bin_dir, "zsh"))
    candidates.append("/bin/sh")

    for candidate in _dedupe_preserve_order(candidates):
        if _is_executable(candidate):
            return candidate

    error_message = "No suitable shell found. Please install bash or zsh and ensure $SHELL is set."
    logger.error(error_message)
    raise RuntimeError(error_message)


def build_shell_command(shell_path: str, command: str) -> List[str]:
    """Build argv for running a command with the selected shell."""
    lower = shell_path.lower()
    if lower.endswith("cmd.exe") or lower.endswith("\\cmd"):
        return [shell_path, "/d", "/s", "/c", command]
    return [shell_path, "-c", command]


class SubprocessShell:
    """Runs commands in a fresh shell process.

    ``env`` is read at execution time, so later changes to the mapping are
    visible to the child. None inherits the process environment.
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None, cwd: Optional[str] = None) -> None:
        self._env = env
        self._cwd = cwd
        self._shell_path: Optional[str] = None

    def exec(self, command: str, timeout: Optional[float] = None) -> Tuple[str, str]:
        """Run ``command`` and return ``(stdout, stderr)``.

        Raises:
            ShellExecError: on a non-zero exit status, a timeout, or a spawn failure.
        """
        if self._shell_path is None:
            self._shell_path = find_suitable_shell()
        argv = build_shell_command(self._shell_path, command)
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                env=dict(self._env) if self._env is not None else None,
                cwd=self._cwd,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ShellExecError(f"command timed out after {timeout}s") from exc
        except OSError as exc:
            raise ShellExecError(f"failed to start shell: {exc}") from exc

        if completed.returncode != 0:
            raise ShellExecError(
                f"exit status {completed.returncode}",
                stdout=completed.stdout,
                stderr=completed.stderr,
            )
        return completed.stdout, completed.stderr


__all__ = ["ShellExecError", "SubprocessShell", "build_shell_command", "find_suitable_shell"]
