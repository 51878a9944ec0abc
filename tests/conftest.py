"""Pytest configuration and fixtures for all tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from kestrel.core.catalog import ModelDescriptor, ProviderDescriptor, ProviderType
from kestrel.utils.env import Env


class FakeShell:
    """Shell stand-in that answers from a fixed command table."""

    def __init__(self, outputs: Optional[Dict[str, str]] = None, error: Optional[Exception] = None):
        self.outputs = outputs or {}
        self.error = error
        self.commands: List[str] = []

    def exec(self, command: str, timeout: Optional[float] = None) -> Tuple[str, str]:
        self.commands.append(command)
        if self.error is not None:
            raise self.error
        if command not in self.outputs:
            raise RuntimeError(f"unexpected command: {command}")
        return self.outputs[command], ""


class FakeCatalogClient:
    """Catalog client returning a canned payload or raising a canned error."""

    def __init__(self, result: Any = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: List[Tuple[str, Optional[float]]] = []

    def get(self, etag: str, deadline: Optional[float] = None) -> Any:
        self.calls.append((etag, deadline))
        if self.error is not None:
            raise self.error
        return self.result


class FakeCatalogService:
    """Provider catalog service with a fixed known-provider list."""

    def __init__(self, providers: List[ProviderDescriptor], error: Optional[Exception] = None):
        self.providers = providers
        self.error = error

    def known_providers(self) -> Tuple[List[ProviderDescriptor], Optional[Exception]]:
        return list(self.providers), self.error


@pytest.fixture
def fake_shell():
    return FakeShell


@pytest.fixture
def fake_catalog_client():
    return FakeCatalogClient


@pytest.fixture
def fake_catalog_service():
    return FakeCatalogService


@pytest.fixture
def make_provider():
    """Factory for provider descriptors with sensible test defaults."""

    def _make(
        provider_id: str,
        provider_type: ProviderType = ProviderType.OPENAI,
        models: Optional[List[str]] = None,
        api_key: str = "",
        api_endpoint: str = "",
        default_large: Optional[str] = None,
        default_small: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ) -> ProviderDescriptor:
        model_ids = models if models is not None else [f"{provider_id}-large", f"{provider_id}-small"]
        return ProviderDescriptor(
            id=provider_id,
            name=provider_id.title(),
            api_key=api_key or f"${provider_id.upper().replace('-', '_')}_API_KEY",
            api_endpoint=api_endpoint or f"https://api.{provider_id}.example/v1",
            type=provider_type,
            default_large_model_id=default_large if default_large is not None else model_ids[0],
            default_small_model_id=default_small if default_small is not None else model_ids[-1],
            models=[
                ModelDescriptor(id=model_id, name=model_id.title(), default_max_tokens=4096)
                for model_id in model_ids
            ],
            default_headers=default_headers or {},
        )

    return _make


@pytest.fixture
def isolated_home(tmp_path, monkeypatch) -> Path:
    """Point the home directory at a temporary location."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr("pathlib.Path.home", lambda: home)
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def config_dirs(tmp_path) -> Dict[str, Path]:
    dirs = {
        "global": tmp_path / "global",
        "data": tmp_path / "data",
        "project": tmp_path / "project",
    }
    for path in dirs.values():
        path.mkdir(parents=True, exist_ok=True)
    return dirs


@pytest.fixture
def base_env(config_dirs) -> Dict[str, str]:
    """Environment variables isolating config discovery to temporary dirs."""
    return {
        "KESTREL_GLOBAL_CONFIG": str(config_dirs["global"]),
        "KESTREL_GLOBAL_DATA": str(config_dirs["data"]),
        "XDG_DATA_HOME": str(config_dirs["data"] / "xdg"),
    }


@pytest.fixture
def make_env(base_env):
    def _make(**values: str) -> Env:
        merged = dict(base_env)
        merged.update(values)
        return Env.from_map(merged)

    return _make
