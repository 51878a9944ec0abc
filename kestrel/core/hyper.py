"""Switches for the Hyper provider, Kestrel's hosted model gateway."""

from __future__ import annotations

from typing import Optional

from kestrel.core.catalog import ProviderDescriptor
from kestrel.data.embedded import hyper_embedded
from kestrel.utils.env import Env, parse_bool

HYPER_NAME = "hyper"
DEFAULT_HYPER_URL = "https://hyper.kestrel.dev"


def enabled(env: Optional[Env] = None) -> bool:
    """Hyper is opt-in via ``KESTREL_HYPER``."""
    env = env or Env.from_os()
    return parse_bool(env.get("KESTREL_HYPER")) is True


def base_url(env: Optional[Env] = None) -> str:
    env = env or Env.from_os()
    return env.get("KESTREL_HYPER_URL") or DEFAULT_HYPER_URL


def embedded() -> ProviderDescriptor:
    return hyper_embedded()
