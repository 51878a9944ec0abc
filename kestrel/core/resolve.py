"""Variable resolution for configuration values.

Provider settings may reference secrets instead of embedding them, e.g.
``"api_key": "$OPENAI_API_KEY"`` or ``"Authorization": "Bearer $(pass show api)"``.
Resolved values are only ever held in memory; the config files keep the
original templates.
"""

from __future__ import annotations

from typing import Optional, Protocol, Tuple

from kestrel.utils.env import Env
from kestrel.utils.log import get_logger
from kestrel.utils.shell_utils import ShellExecError, SubprocessShell

logger = get_logger()

COMMAND_TIMEOUT_SECONDS = 5 * 60


class VariableResolutionError(ValueError):
    """Base class for values that cannot be resolved."""


class InvalidValueFormatError(VariableResolutionError):
    pass


class UnmatchedCommandSubstitutionError(VariableResolutionError):
    pass


class UnmatchedBraceError(VariableResolutionError):
    pass


class IncompleteVariableError(VariableResolutionError):
    pass


class InvalidVariableNameError(VariableResolutionError):
    pass


class UnsetVariableError(VariableResolutionError):
    pass


class CommandExecutionError(VariableResolutionError):
    pass


class Shell(Protocol):
    """Command execution capability used for ``$(...)`` substitution."""

    def exec(self, command: str, timeout: Optional[float] = None) -> Tuple[str, str]:
        ...


class VariableResolver(Protocol):
    def resolve_value(self, value: str) -> str:
        ...


def _is_name_start(char: str) -> bool:
    return char == "_" or ("a" <= char <= "z") or ("A" <= char <= "Z")


def _is_name_char(char: str) -> bool:
    return _is_name_start(char) or ("0" <= char <= "9")


class ShellVariableResolver:
    """Resolves ``$(command)``, ``$VAR`` and ``${VAR}`` anywhere in a string.

    Command substitutions run first, left to right, each in its own shell
    process with a five minute timeout. Variable references are resolved in
    a second pass. Neither pass re-scans text it has just substituted.
    """

    def __init__(
        self,
        env: Env,
        shell: Optional[Shell] = None,
        command_timeout: float = COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self.env = env
        self.shell: Shell = shell if shell is not None else SubprocessShell(env=env)
        self.command_timeout = command_timeout

    def resolve_value(self, value: str) -> str:
        # A lone "$" has always been rejected.
        if value == "$":
            raise InvalidValueFormatError(f"invalid value format: {value}")

        if "$" not in value:
            return value

        result = self._substitute_commands(value)
        return self._substitute_variables(result, value)

    def _substitute_commands(self, value: str) -> str:
        result = value
        search_from = 0
        while True:
            start = result.find("$(", search_from)
            if start == -1:
                return result

            depth = 0
            end = -1
            for index in range(start + 2, len(result)):
                char = result[index]
                if char == "(":
                    depth += 1
                elif char == ")":
                    if depth == 0:
                        end = index
                        break
                    depth -= 1

            if end == -1:
                raise UnmatchedCommandSubstitutionError(f"unmatched $( in value: {value}")

            command = result[start + 2 : end]
            try:
                stdout, _ = self.shell.exec(command, timeout=self.command_timeout)
            except Exception as exc:
                message = f"command execution failed for '{command}': {exc}"
                if isinstance(exc, ShellExecError) and exc.stderr.strip():
                    message = f"{message}: {exc.stderr.strip()}"
                raise CommandExecutionError(message) from exc

            replacement = stdout.strip()
            result = result[:start] + replacement + result[end + 1 :]
            search_from = start + len(replacement)

    def _substitute_variables(self, result: str, original: str) -> str:
        search_from = 0
        while True:
            start = result.find("$", search_from)
            if start == -1:
                return result

            # Text produced by a command substitution may itself contain "$(".
            if start + 1 < len(result) and result[start + 1] == "(":
                search_from = start + 1
                continue

            if start + 1 < len(result) and result[start + 1] == "{":
                close = result.find("}", start + 2)
                if close == -1:
                    raise UnmatchedBraceError(f"unmatched ${{ in value: {original}")
                name = result[start + 2 : close]
                end = close + 1
            else:
                if start + 1 >= len(result):
                    raise IncompleteVariableError(
                        f"incomplete variable reference at end of string: {original}"
                    )
                if not _is_name_start(result[start + 1]):
                    raise InvalidVariableNameError(
                        f"invalid variable name starting with '{result[start + 1]}': {original}"
                    )
                end = start + 1
                while end < len(result) and _is_name_char(result[end]):
                    end += 1
                name = result[start + 1 : end]

            env_value = self.env.get(name)
            if env_value == "":
                raise UnsetVariableError(f"environment variable {name!r} not set")

            result = result[:start] + env_value + result[end:]
            search_from = start + len(env_value)


class EnvironmentVariableResolver:
    """Resolves values that are exactly one ``$NAME`` reference.

    Used where spawning subprocesses must be avoided. Any other shape is
    returned unchanged.
    """

    def __init__(self, env: Env) -> None:
        self.env = env

    def resolve_value(self, value: str) -> str:
        if not value.startswith("$"):
            return value
        name = value[1:]
        if not name or not _is_name_start(name[0]) or not all(_is_name_char(c) for c in name):
            return value
        resolved = self.env.get(name)
        if resolved == "":
            raise UnsetVariableError(f"environment variable {name!r} not set")
        return resolved


def new_shell_variable_resolver(env: Env) -> ShellVariableResolver:
    return ShellVariableResolver(env)


def new_environment_variable_resolver(env: Env) -> EnvironmentVariableResolver:
    return EnvironmentVariableResolver(env)
