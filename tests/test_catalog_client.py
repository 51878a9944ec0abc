"""Tests for the HTTP catalog clients and manual catalog refresh."""

from __future__ import annotations

import json
import time
from typing import List

import httpx
import pytest

from kestrel.core import catalog_client as catalog_client_module
from kestrel.core.cache import DiskCache
from kestrel.core.catalog import ProviderDescriptor, ProviderType
from kestrel.core.catalog_client import (
    CatalogClientError,
    CatalogDeadlineExceeded,
    HyperClient,
    NotModifiedError,
    ProviderCatalogClient,
    remaining_timeout,
)
from kestrel.core.providers import update_hyper, update_providers
from kestrel.data import embedded
from kestrel.utils.env import Env


@pytest.fixture
def http_handler(monkeypatch):
    """Route catalog client requests to a handler installed by the test."""
    real_client = httpx.Client
    state = {"handler": None, "requests": []}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        return state["handler"](request)

    def client_factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr(catalog_client_module.httpx, "Client", client_factory)
    return state


def _provider_payload(provider_id: str) -> dict:
    return {
        "id": provider_id,
        "name": provider_id.title(),
        "type": "openai",
        "api_endpoint": "https://api.example/v1",
        "default_large_model_id": "big",
        "default_small_model_id": "small",
        "models": [{"id": "big"}, {"id": "small"}],
    }


def test_provider_client_decodes_list(http_handler):
    http_handler["handler"] = lambda request: httpx.Response(200, json=[_provider_payload("openai")])

    providers = ProviderCatalogClient("https://catalog.test/").get("")

    assert [provider.id for provider in providers] == ["openai"]
    request = http_handler["requests"][0]
    assert str(request.url) == "https://catalog.test/v2/providers"
    assert "If-None-Match" not in request.headers
    assert request.headers["User-Agent"].startswith("kestrel/")


def test_validator_is_sent_as_if_none_match(http_handler):
    http_handler["handler"] = lambda request: httpx.Response(304)

    with pytest.raises(NotModifiedError):
        ProviderCatalogClient("https://catalog.test").get('"abc"')

    assert http_handler["requests"][0].headers["If-None-Match"] == '"abc"'


@pytest.mark.parametrize("status", [404, 500, 503])
def test_unexpected_status_is_client_error(http_handler, status):
    http_handler["handler"] = lambda request: httpx.Response(status)
    with pytest.raises(CatalogClientError, match=str(status)):
        ProviderCatalogClient("https://catalog.test").get("")


def test_timeout_maps_to_deadline_exceeded(http_handler):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    http_handler["handler"] = handler
    with pytest.raises(CatalogDeadlineExceeded):
        ProviderCatalogClient("https://catalog.test").get("")


def test_connection_error_is_client_error(http_handler):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    http_handler["handler"] = handler
    with pytest.raises(CatalogClientError):
        ProviderCatalogClient("https://catalog.test").get("")


def test_invalid_payload_is_client_error(http_handler):
    http_handler["handler"] = lambda request: httpx.Response(200, content=b"not json")
    with pytest.raises(CatalogClientError):
        ProviderCatalogClient("https://catalog.test").get("")

    http_handler["handler"] = lambda request: httpx.Response(200, json={"not": "a list"})
    with pytest.raises(CatalogClientError):
        ProviderCatalogClient("https://catalog.test").get("")


def test_unknown_provider_type_does_not_reject_catalog(http_handler):
    unknown = dict(_provider_payload("vercel"), type="vercel")
    http_handler["handler"] = lambda request: httpx.Response(200, json=[_provider_payload("openai"), unknown])

    providers = ProviderCatalogClient("https://catalog.test").get("")

    assert [provider.id for provider in providers] == ["openai", "vercel"]
    assert providers[0].provider_type is ProviderType.OPENAI
    assert providers[1].type == "vercel"
    assert providers[1].provider_type is None


def test_slow_body_is_bounded_by_deadline(http_handler):
    def trickle():
        yield b"["
        time.sleep(0.3)
        yield b"]"

    http_handler["handler"] = lambda request: httpx.Response(200, content=trickle())
    with pytest.raises(CatalogDeadlineExceeded):
        ProviderCatalogClient("https://catalog.test").get("", deadline=time.monotonic() + 0.1)


def test_expired_deadline_skips_request(http_handler):
    http_handler["handler"] = lambda request: httpx.Response(200, json=[])
    with pytest.raises(CatalogDeadlineExceeded):
        ProviderCatalogClient("https://catalog.test").get("", deadline=time.monotonic() - 1)
    assert http_handler["requests"] == []


def test_remaining_timeout_is_capped():
    assert remaining_timeout(None) == 30
    assert remaining_timeout(time.monotonic() + 1000) == 30
    assert remaining_timeout(time.monotonic() + 5) <= 5


def test_hyper_client_decodes_single_provider(http_handler):
    http_handler["handler"] = lambda request: httpx.Response(200, json=_provider_payload("hyper"))

    provider = HyperClient("https://hyper.test").get("")

    assert provider.id == "hyper"
    assert str(http_handler["requests"][0].url) == "https://hyper.test/api/v1/provider"


def test_update_providers_from_embedded(tmp_path):
    env = Env.from_map({"XDG_DATA_HOME": str(tmp_path)})

    providers = update_providers("embedded", env=env)

    cached, _ = DiskCache(tmp_path / "kestrel" / "providers.json", List[ProviderDescriptor]).get()
    assert [p.id for p in cached] == [p.id for p in embedded.get_all()]
    assert providers == cached


def test_update_providers_from_file(tmp_path):
    env = Env.from_map({"XDG_DATA_HOME": str(tmp_path / "data")})
    source = tmp_path / "custom.json"
    source.write_text(json.dumps([_provider_payload("custom")]))

    update_providers(str(source), env=env)

    cached, _ = DiskCache(tmp_path / "data" / "kestrel" / "providers.json", List[ProviderDescriptor]).get()
    assert [p.id for p in cached] == ["custom"]


def test_update_providers_rejects_empty_file(tmp_path):
    env = Env.from_map({"XDG_DATA_HOME": str(tmp_path / "data")})
    source = tmp_path / "empty.json"
    source.write_text("[]")

    with pytest.raises(CatalogClientError, match="no providers"):
        update_providers(str(source), env=env)


def test_update_providers_from_url(tmp_path, http_handler):
    http_handler["handler"] = lambda request: httpx.Response(200, json=[_provider_payload("remote")])
    env = Env.from_map({"XDG_DATA_HOME": str(tmp_path)})

    providers = update_providers("https://mirror.test", env=env)

    assert [p.id for p in providers] == ["remote"]
    assert str(http_handler["requests"][0].url) == "https://mirror.test/v2/providers"


def test_update_hyper_requires_hyper_enabled(tmp_path):
    with pytest.raises(CatalogClientError, match="not enabled"):
        update_hyper("embedded", env=Env.from_map({"XDG_DATA_HOME": str(tmp_path)}))


def test_update_hyper_from_embedded(tmp_path):
    env = Env.from_map({"XDG_DATA_HOME": str(tmp_path), "KESTREL_HYPER": "1"})

    provider = update_hyper("embedded", env=env)

    cached, _ = DiskCache(tmp_path / "kestrel" / "hyper.json", ProviderDescriptor).get()
    assert cached == provider
