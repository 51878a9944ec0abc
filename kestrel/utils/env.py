"""Read-only environment snapshots.

Components that consult environment variables take an ``Env`` rather than
reading ``os.environ`` directly so tests can pass a fixed mapping.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Dict, Iterator, Mapping, MutableMapping, Optional


_TRUE_VALUES = {"1", "t", "true", "y", "yes", "on"}
_FALSE_VALUES = {"0", "f", "false", "n", "no", "off"}

APP_ENV_PREFIX = "KESTREL_"


class Env(Mapping[str, str]):
    """Environment lookup that treats missing variables as empty strings."""

    def __init__(self, values: Optional[Mapping[str, str]] = None) -> None:
        self._values: Optional[Dict[str, str]] = dict(values) if values is not None else None

    @classmethod
    def from_os(cls) -> "Env":
        """Live view of the process environment."""
        return cls()

    @classmethod
    def from_map(cls, values: Mapping[str, str]) -> "Env":
        """Fixed snapshot, independent of ``os.environ``."""
        return cls(values)

    @property
    def _source(self) -> Mapping[str, str]:
        return os.environ if self._values is None else self._values

    def get(self, key: str, default: str = "") -> str:  # type: ignore[override]
        return self._source.get(key, default)

    def lookup(self, key: str) -> tuple[str, bool]:
        """Return the value and whether the variable is set at all."""
        if key in self._source:
            return self._source[key], True
        return "", False

    def environ(self) -> list[str]:
        """``KEY=value`` pairs suitable for a subprocess environment listing."""
        return [f"{key}={value}" for key, value in self._source.items()]

    def __getitem__(self, key: str) -> str:
        return self._source[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._source)

    def __len__(self) -> int:
        return len(self._source)


def parse_bool(value: str) -> Optional[bool]:
    """Parse a boolean the way environment switches are written; None if invalid."""
    normalized = (value or "").strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return None


@contextmanager
def push_pop_app_env(env: Optional[Env] = None, prefix: str = APP_ENV_PREFIX) -> Iterator[None]:
    """Let ``KESTREL_<NAME>`` shadow ``<NAME>`` for the duration of the block.

    Applies to the process environment, or to ``env``'s fixed mapping when
    one was given. Previous values are restored (or removed) on exit.
    """
    target: MutableMapping[str, str]
    if env is None or env._values is None:
        target = os.environ
    else:
        target = env._values

    shadowed = [key[len(prefix):] for key in list(target) if key.startswith(prefix) and len(key) > len(prefix)]
    backups = {name: target.get(name) for name in shadowed}
    for name in shadowed:
        target[name] = target[prefix + name]
    try:
        yield
    finally:
        for name, previous in backups.items():
            if previous is None:
                target.pop(name, None)
            else:
                target[name] = previous
