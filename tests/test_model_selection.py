"""Tests for default and overridden large/small model selection."""

from __future__ import annotations

import json

import pytest

from kestrel.core.catalog import ModelDescriptor
from kestrel.core.config import Config, ModelSelectionError, ProviderConfig, SelectedModel
from kestrel.core.load import configure_selected_models, default_model_selection


def _config_from(known, tmp_path=None, **providers):
    cfg = Config()
    for descriptor in known:
        cfg.providers[descriptor.id] = ProviderConfig(
            id=descriptor.id, name=descriptor.name, models=descriptor.models
        )
    cfg.providers.update(providers)
    if tmp_path is not None:
        cfg.data_config_path = tmp_path / "kestrel.json"
    return cfg


def test_first_enabled_known_provider_supplies_defaults(make_provider):
    known = [make_provider("anthropic"), make_provider("openai")]
    cfg = _config_from(known)
    cfg.providers["anthropic"].disable = True
    cfg.providers["openai"].models[0].default_reasoning_effort = "medium"

    large, small = default_model_selection(cfg, known)

    assert (large.provider, large.model) == ("openai", "openai-large")
    assert (small.provider, small.model) == ("openai", "openai-small")
    assert large.max_tokens == 4096
    assert large.reasoning_effort == "medium"


def test_catalog_order_decides_between_enabled_providers(make_provider):
    known = [make_provider("zeta"), make_provider("alpha")]
    large, _ = default_model_selection(_config_from(known), known)
    assert large.provider == "zeta"


def test_missing_declared_default_is_an_error(make_provider):
    known = [make_provider("openai", default_large="gone")]
    with pytest.raises(ModelSelectionError, match="gone"):
        default_model_selection(_config_from(known), known)


def test_falls_back_to_lowest_custom_provider_id(make_provider):
    custom = {
        "zed": ProviderConfig(id="zed", models=[ModelDescriptor(id="z1")]),
        "local": ProviderConfig(id="local", models=[ModelDescriptor(id="llama", default_max_tokens=512)]),
    }
    known = [make_provider("openai")]
    cfg = Config(providers=custom)

    large, small = default_model_selection(cfg, known)

    assert (large.provider, large.model) == ("local", "llama")
    assert (small.provider, small.model) == ("local", "llama")
    assert large.max_tokens == 512


def test_no_providers_is_an_error():
    with pytest.raises(ModelSelectionError):
        default_model_selection(Config(), [])


def test_only_disabled_providers_is_an_error():
    cfg = Config(providers={"x": ProviderConfig(id="x", disable=True, models=[ModelDescriptor(id="m")])})
    with pytest.raises(ModelSelectionError):
        default_model_selection(cfg, [])


def test_unset_slots_take_defaults(make_provider):
    known = [make_provider("openai")]
    cfg = _config_from(known)

    configure_selected_models(cfg, known)

    assert cfg.models["large"].model == "openai-large"
    assert cfg.models["small"].model == "openai-small"


def test_override_layers_user_values_over_model_defaults(make_provider):
    known = [make_provider("openai", models=["a", "b", "c"])]
    cfg = _config_from(known)
    cfg.providers["openai"].models[1].default_reasoning_effort = "high"
    cfg.models["large"] = SelectedModel(model="b", temperature=0.1, top_k=20, think=True)
    cfg.models["small"] = SelectedModel(provider="openai", model="c", max_tokens=99, reasoning_effort="low")

    configure_selected_models(cfg, known)

    large = cfg.models["large"]
    assert (large.provider, large.model) == ("openai", "b")
    assert large.max_tokens == 4096
    assert large.reasoning_effort == "high"
    assert large.temperature == 0.1
    assert large.top_k == 20
    assert large.top_p is None
    assert large.think is True

    small = cfg.models["small"]
    assert small.max_tokens == 99
    assert small.reasoning_effort == "low"
    assert small.think is False


def test_stale_override_is_replaced_and_persisted(tmp_path, make_provider):
    known = [make_provider("openai")]
    cfg = _config_from(known, tmp_path)
    cfg.models["large"] = SelectedModel(provider="gone", model="nope", temperature=0.5)

    configure_selected_models(cfg, known)

    assert (cfg.models["large"].provider, cfg.models["large"].model) == ("openai", "openai-large")
    assert cfg.models["large"].temperature is None
    stored = json.loads(cfg.data_config_path.read_text())
    assert stored["models"]["large"]["model"] == "openai-large"
    assert stored["recent_models"]["large"] == [{"model": "openai-large", "provider": "openai"}]
