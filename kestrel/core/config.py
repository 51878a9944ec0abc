"""Configuration model for Kestrel.

The merged configuration holds the resolved provider set, the selected
large/small models, and the recently used models per slot. Runtime
changes (captured API keys, OAuth tokens, model switches) are persisted
immediately, and only to the data config file, as sparse path edits.
"""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from kestrel.core.catalog import (
    PROVIDER_COPILOT,
    PROVIDER_KIMI_CODING,
    PROVIDER_MINIMAX,
    PROVIDER_OPENROUTER,
    PROVIDER_ZAI,
    ModelDescriptor,
    ProviderDescriptor,
    ProviderType,
)
from kestrel.core.oauth import OAuthToken, copilot_headers
from kestrel.core.resolve import VariableResolutionError, VariableResolver
from kestrel.utils.json_utils import delete_path, has_path, set_path
from kestrel.utils.log import get_logger
from kestrel.utils.user_agent import build_user_agent

logger = get_logger()

MAX_RECENT_MODELS_PER_TYPE = 5
CONNECTION_TEST_TIMEOUT = 5.0


class ConfigError(RuntimeError):
    """Configuration could not be loaded, validated, or persisted."""


class ProviderConfigurationError(ConfigError):
    """A provider is configured in a way that invalidates the whole pass."""


class NoProvidersConfiguredError(ConfigError):
    """No enabled provider survived configuration.

    ``config`` carries the partially loaded configuration so callers can
    still offer onboarding (for example capturing an API key).
    """

    def __init__(self, message: str, config: Optional["Config"] = None) -> None:
        super().__init__(message)
        self.config = config


class ModelSelectionError(ConfigError):
    """Default models could not be chosen from the configured providers."""


class SelectedModelType(str, Enum):
    LARGE = "large"
    SMALL = "small"

    def __str__(self) -> str:
        return self.value


class SelectedModel(BaseModel):
    """A model chosen for a slot plus per-slot sampling overrides."""

    model_config = ConfigDict(protected_namespaces=())

    # Model id as used by the provider API.
    model: str = ""
    # Key of the provider in the providers config.
    provider: str = ""
    # Only used by OpenAI models that accept it.
    reasoning_effort: str = ""
    # Anthropic reasoning models: whether the model should think.
    think: bool = False
    max_tokens: int = 0
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    provider_options: Optional[Dict[str, Any]] = None

    def same_identity(self, other: "SelectedModel") -> bool:
        return self.provider == other.provider and self.model == other.model


class ProviderConfig(BaseModel):
    """A locally usable provider: catalog defaults merged with user overrides."""

    id: str = ""
    name: str = ""
    base_url: str = ""
    # Empty means openai-compatible for custom providers.
    type: str = ""
    api_key: str = ""
    oauth: Optional[OAuthToken] = None
    disable: bool = False
    system_prompt_prefix: str = ""
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    extra_body: Dict[str, Any] = Field(default_factory=dict)
    provider_options: Dict[str, Any] = Field(default_factory=dict)
    models: List[ModelDescriptor] = Field(default_factory=list)

    # Raw API key template before resolution, kept for re-resolution after auth errors.
    api_key_template: str = Field(default="", exclude=True)
    # Provider-specific connection parameters (project, location, region, apiVersion).
    extra_params: Dict[str, str] = Field(default_factory=dict, exclude=True)

    @property
    def provider_type(self) -> Optional[ProviderType]:
        try:
            return ProviderType(self.type)
        except ValueError:
            return None

    def to_provider(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            id=self.id,
            name=self.name,
            models=[model.model_copy() for model in self.models],
        )

    def setup_github_copilot(self) -> None:
        self.extra_headers.update(copilot_headers())

    def test_connection(self, resolver: VariableResolver) -> None:
        """Probe the provider's model listing with the configured credentials.

        Raises:
            ConfigError: if the endpoint rejects the credentials or is unreachable.
        """
        api_key = _resolve_or_empty(resolver, self.api_key)

        if self.id == PROVIDER_MINIMAX:
            # MiniMax has no endpoint suitable for validating a key; check its shape only.
            if not api_key.startswith("sk-"):
                raise ConfigError(f"invalid API key format for provider {self.id}")
            return

        headers: Dict[str, str] = {"User-Agent": build_user_agent("probe")}
        params: Dict[str, str] = {}
        provider_type = self.provider_type
        base_url = _resolve_or_empty(resolver, self.base_url)
        if provider_type in (ProviderType.OPENAI, ProviderType.OPENAI_COMPAT, ProviderType.OPENROUTER):
            base_url = base_url or "https://api.openai.com/v1"
            if self.id == PROVIDER_OPENROUTER:
                test_url = f"{base_url}/credits"
            else:
                test_url = f"{base_url}/models"
            headers["Authorization"] = f"Bearer {api_key}"
        elif provider_type is ProviderType.ANTHROPIC:
            base_url = base_url or "https://api.anthropic.com/v1"
            if self.id == PROVIDER_KIMI_CODING:
                test_url = f"{base_url}/v1/models"
            else:
                test_url = f"{base_url}/models"
            headers["x-api-key"] = api_key
            headers["anthropic-version"] = "2023-06-01"
        elif provider_type is ProviderType.GOOGLE:
            base_url = base_url or "https://generativelanguage.googleapis.com"
            test_url = f"{base_url}/v1beta/models"
            params["key"] = api_key
        else:
            raise ConfigError(f"connection test is not supported for provider type {self.type!r}")

        headers.update(self.extra_headers)
        try:
            with httpx.Client(timeout=CONNECTION_TEST_TIMEOUT) as client:
                response = client.get(test_url, headers=headers, params=params)
        except httpx.HTTPError as exc:
            raise ConfigError(f"request to provider {self.id} failed: {exc}") from exc

        if self.id == PROVIDER_ZAI:
            if response.status_code == 401:
                raise ConfigError(f"failed to connect to provider {self.id}: {response.status_code}")
            return
        if response.status_code != 200:
            raise ConfigError(f"failed to connect to provider {self.id}: {response.status_code}")


def _resolve_or_empty(resolver: VariableResolver, value: str) -> str:
    try:
        return resolver.resolve_value(value)
    except VariableResolutionError:
        return ""


class Options(BaseModel):
    data_directory: str = ""
    debug: bool = False
    disable_provider_auto_update: bool = False
    disable_default_providers: bool = False
    context_paths: List[str] = Field(default_factory=list)


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_defaults=True)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, Enum):
        return value.value
    return value


class Config(BaseModel):
    """Merged Kestrel configuration."""

    model_config = ConfigDict(protected_namespaces=(), populate_by_name=True)

    schema_url: str = Field(default="", alias="$schema")
    # Only "large" and "small" are meaningful slots.
    models: Dict[str, SelectedModel] = Field(default_factory=dict)
    # Recently used models, stored in the data config.
    recent_models: Dict[str, List[SelectedModel]] = Field(default_factory=dict)
    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)
    options: Options = Field(default_factory=Options)

    _working_dir: str = PrivateAttr(default="")
    _data_config_path: Optional[Path] = PrivateAttr(default=None)
    _known_providers: List[ProviderDescriptor] = PrivateAttr(default_factory=list)
    _resolver: Optional[VariableResolver] = PrivateAttr(default=None)

    # Runtime wiring

    @property
    def working_dir(self) -> str:
        return self._working_dir

    @working_dir.setter
    def working_dir(self, path: str) -> None:
        self._working_dir = path

    @property
    def data_config_path(self) -> Optional[Path]:
        return self._data_config_path

    @data_config_path.setter
    def data_config_path(self, path: Union[str, Path, None]) -> None:
        self._data_config_path = Path(path) if path is not None else None

    @property
    def known_providers(self) -> List[ProviderDescriptor]:
        return self._known_providers

    @known_providers.setter
    def known_providers(self, providers: List[ProviderDescriptor]) -> None:
        self._known_providers = list(providers)

    @property
    def resolver(self) -> Optional[VariableResolver]:
        return self._resolver

    @resolver.setter
    def resolver(self, resolver: Optional[VariableResolver]) -> None:
        self._resolver = resolver

    def resolve(self, value: str) -> str:
        if self._resolver is None:
            raise ConfigError("no variable resolver configured")
        return self._resolver.resolve_value(value)

    # Lookups

    def enabled_providers(self) -> List[ProviderConfig]:
        return [provider for provider in self.providers.values() if not provider.disable]

    def is_configured(self) -> bool:
        """True when at least one provider is enabled."""
        return len(self.enabled_providers()) > 0

    def get_model(self, provider: str, model: str) -> Optional[ModelDescriptor]:
        provider_config = self.providers.get(provider)
        if provider_config is None:
            return None
        for candidate in provider_config.models:
            if candidate.id == model:
                return candidate
        return None

    def get_provider_for_model(self, model_type: SelectedModelType) -> Optional[ProviderConfig]:
        selected = self.models.get(model_type.value)
        if selected is None:
            return None
        return self.providers.get(selected.provider)

    def get_model_by_type(self, model_type: SelectedModelType) -> Optional[ModelDescriptor]:
        selected = self.models.get(model_type.value)
        if selected is None:
            return None
        return self.get_model(selected.provider, selected.model)

    def large_model(self) -> Optional[ModelDescriptor]:
        return self.get_model_by_type(SelectedModelType.LARGE)

    def small_model(self) -> Optional[ModelDescriptor]:
        return self.get_model_by_type(SelectedModelType.SMALL)

    # Data config persistence

    def _require_data_path(self) -> Path:
        if self._data_config_path is None:
            raise ConfigError("data config path is not set")
        return self._data_config_path

    def _read_data_document(self, missing_ok: bool) -> Dict[str, Any]:
        path = self._require_data_path()
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            if missing_ok:
                return {}
            raise ConfigError(f"failed to read config file: {path} does not exist")
        except OSError as exc:
            raise ConfigError(f"failed to read config file: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"failed to parse config file {path}: {exc}") from exc
        if not isinstance(document, dict):
            raise ConfigError(f"config file {path} must contain a JSON object")
        return document

    def _write_data_document(self, document: Dict[str, Any]) -> None:
        path = self._require_data_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigError(f"failed to create config directory {str(path.parent)!r}: {exc}") from exc
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.chmod(path, 0o600)
        except OSError as exc:
            raise ConfigError(f"failed to write config file: {exc}") from exc

    def has_config_field(self, key: str) -> bool:
        try:
            document = self._read_data_document(missing_ok=False)
        except ConfigError:
            return False
        return has_path(document, key)

    def set_config_field(self, key: str, value: Any) -> None:
        document = self._read_data_document(missing_ok=True)
        try:
            updated = set_path(document, key, _jsonable(value))
        except ValueError as exc:
            raise ConfigError(f"failed to set config field {key}: {exc}") from exc
        self._write_data_document(updated)
        logger.debug("[config] Updated data config field", extra={"key": key})

    def remove_config_field(self, key: str) -> None:
        document = self._read_data_document(missing_ok=False)
        try:
            updated = delete_path(document, key)
        except ValueError as exc:
            raise ConfigError(f"failed to delete config field {key}: {exc}") from exc
        self._write_data_document(updated)
        logger.debug("[config] Removed data config field", extra={"key": key})

    # Runtime mutations

    def update_preferred_model(self, model_type: SelectedModelType, model: SelectedModel) -> None:
        self.models[model_type.value] = model
        try:
            self.set_config_field(f"models.{model_type.value}", model)
        except ConfigError as exc:
            raise ConfigError(f"failed to update preferred model: {exc}") from exc
        self.record_recent_model(model_type, model)

    def record_recent_model(self, model_type: SelectedModelType, model: SelectedModel) -> None:
        """Move ``model`` to the front of the slot's history, keeping at most five entries.

        Nothing is written when the resulting history is unchanged.
        """
        if not model.provider or not model.model:
            return

        entry = SelectedModel(provider=model.provider, model=model.model)
        current = self.recent_models.get(model_type.value, [])
        without_current = [existing for existing in current if not existing.same_identity(entry)]
        updated = ([entry] + without_current)[:MAX_RECENT_MODELS_PER_TYPE]

        if len(current) == len(updated) and all(
            old.same_identity(new) for old, new in zip(current, updated)
        ):
            return

        self.recent_models[model_type.value] = updated
        try:
            self.set_config_field(f"recent_models.{model_type.value}", updated)
        except ConfigError as exc:
            raise ConfigError(f"failed to persist recent models: {exc}") from exc

    def set_provider_api_key(self, provider_id: str, api_key: Union[str, OAuthToken]) -> None:
        """Store a credential for ``provider_id`` in memory and in the data config."""
        if isinstance(api_key, OAuthToken):
            self.set_config_field(f"providers.{provider_id}.api_key", api_key.access_token)
            self.set_config_field(f"providers.{provider_id}.oauth", api_key)
        else:
            try:
                self.set_config_field(f"providers.{provider_id}.api_key", api_key)
            except ConfigError as exc:
                raise ConfigError(f"failed to save API key to config file: {exc}") from exc

        provider_config = self.providers.get(provider_id)
        if provider_config is None:
            known = next((p for p in self._known_providers if p.id == provider_id), None)
            if known is None:
                raise ConfigError(f"provider with ID {provider_id} not found in known providers")
            provider_config = ProviderConfig(
                id=provider_id,
                name=known.name,
                base_url=known.api_endpoint,
                type=known.type,
                models=[model.model_copy() for model in known.models],
            )

        if isinstance(api_key, OAuthToken):
            provider_config.api_key = api_key.access_token
            provider_config.oauth = api_key
            if provider_id == PROVIDER_COPILOT:
                provider_config.setup_github_copilot()
        else:
            provider_config.api_key = api_key

        self.providers[provider_id] = provider_config
