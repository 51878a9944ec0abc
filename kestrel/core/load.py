"""Layered configuration loading for Kestrel.

``load`` discovers and merges the config files, applies defaults, fetches
the known providers, merges them with the user's provider overrides, and
finally resolves the large/small model selection.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from kestrel.core.catalog import (
    PROVIDER_ANTHROPIC,
    PROVIDER_COPILOT,
    ModelDescriptor,
    ProviderDescriptor,
    ProviderType,
)
from kestrel.core.config import (
    Config,
    ConfigError,
    ModelSelectionError,
    NoProvidersConfiguredError,
    ProviderConfig,
    ProviderConfigurationError,
    SelectedModel,
    SelectedModelType,
)
from kestrel.core.providers import APP_NAME, ProviderCatalogService
from kestrel.core.resolve import VariableResolutionError, VariableResolver, new_shell_variable_resolver
from kestrel.utils.env import Env, parse_bool, push_pop_app_env
from kestrel.utils.json_utils import merge_documents
from kestrel.utils.log import get_logger, setup_logging

logger = get_logger()

DEFAULT_DATA_DIRECTORY = ".kestrel"
BEDROCK_MODEL_PREFIX = "anthropic."

DEFAULT_CONTEXT_PATHS = [
    ".github/copilot-instructions.md",
    ".cursorrules",
    ".cursor/rules/",
    "CLAUDE.md",
    "CLAUDE.local.md",
    "GEMINI.md",
    "gemini.md",
    "kestrel.md",
    "kestrel.local.md",
    "Kestrel.md",
    "Kestrel.local.md",
    "KESTREL.md",
    "KESTREL.local.md",
    "AGENTS.md",
    "agents.md",
    "Agents.md",
]


# ============================================================================
# Paths
# ============================================================================


def _config_file_name() -> str:
    return f"{APP_NAME}.json"


def _windows_local_app_data(env: Env) -> Path:
    return Path(env.get("LOCALAPPDATA") or Path(env.get("USERPROFILE")) / "AppData" / "Local")


def global_config_path(env: Optional[Env] = None) -> Path:
    """Path of the user-edited global config file."""
    env = env or Env.from_os()
    override = env.get("KESTREL_GLOBAL_CONFIG")
    if override:
        return Path(override) / _config_file_name()
    xdg_config_home = env.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home) / APP_NAME / _config_file_name()
    return Path.home() / ".config" / APP_NAME / _config_file_name()


def global_config_data_path(env: Optional[Env] = None) -> Path:
    """Path of the data config file, the only file runtime changes are written to."""
    env = env or Env.from_os()
    override = env.get("KESTREL_GLOBAL_DATA")
    if override:
        return Path(override) / _config_file_name()
    xdg_data_home = env.get("XDG_DATA_HOME")
    if xdg_data_home:
        return Path(xdg_data_home) / APP_NAME / _config_file_name()
    if os.name == "nt":
        return _windows_local_app_data(env) / APP_NAME / _config_file_name()
    return Path.home() / ".local" / "share" / APP_NAME / _config_file_name()


def _walk_up(start: Path):
    current = start.resolve()
    while True:
        yield current
        if current.parent == current:
            return
        current = current.parent


def _lookup_closest(start: Path, target: str) -> Optional[Path]:
    """Nearest ``target`` in ``start`` or its parents, not counting the home directory."""
    home = Path.home().resolve()
    for directory in _walk_up(start):
        candidate = directory / target
        if candidate.exists():
            if directory == home:
                return None
            return candidate
    return None


def lookup_configs(working_dir: str, env: Optional[Env] = None) -> List[Path]:
    """Config files in merge order: lowest priority first.

    Global config, then the data config, then project files found walking
    up from ``working_dir`` with the nearest one last.
    """
    env = env or Env.from_os()
    paths = [global_config_path(env), global_config_data_path(env)]

    names = [f"{APP_NAME}.json", f".{APP_NAME}.json"]
    found: List[Path] = []
    try:
        for directory in _walk_up(Path(working_dir)):
            for name in names:
                candidate = directory / name
                if candidate.is_file():
                    found.append(candidate)
    except OSError as exc:
        logger.warning(f"[config] Failed to look up project config files: {exc}")
        return paths

    found.reverse()
    return paths + found


def load_from_bytes(documents: Sequence[bytes]) -> Config:
    if not documents:
        return Config()
    try:
        merged = merge_documents(documents)
    except ValueError as exc:
        raise ConfigError(f"failed to merge config files: {exc}") from exc
    try:
        return Config.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc


def load_from_config_paths(paths: Sequence[Path]) -> Config:
    documents: List[bytes] = []
    for path in paths:
        try:
            data = Path(path).read_bytes()
        except FileNotFoundError:
            continue
        except OSError as exc:
            raise ConfigError(f"failed to open config file {path}: {exc}") from exc
        if not data.strip():
            continue
        documents.append(data)
    return load_from_bytes(documents)


# ============================================================================
# Defaults
# ============================================================================


def set_defaults(cfg: Config, working_dir: str, data_dir: str = "", env: Optional[Env] = None) -> None:
    env = env or Env.from_os()
    cfg.working_dir = working_dir

    if data_dir:
        cfg.options.data_directory = data_dir
    elif not cfg.options.data_directory:
        closest = _lookup_closest(Path(working_dir), DEFAULT_DATA_DIRECTORY)
        if closest is not None:
            cfg.options.data_directory = str(closest)
        else:
            cfg.options.data_directory = str(Path(working_dir) / DEFAULT_DATA_DIRECTORY)

    cfg.options.context_paths = sorted(set(DEFAULT_CONTEXT_PATHS + cfg.options.context_paths))

    value, present = env.lookup("KESTREL_DISABLE_PROVIDER_AUTO_UPDATE")
    if present:
        cfg.options.disable_provider_auto_update = parse_bool(value) is True
    value, present = env.lookup("KESTREL_DISABLE_DEFAULT_PROVIDERS")
    if present:
        cfg.options.disable_default_providers = parse_bool(value) is True


# ============================================================================
# Credential signals
# ============================================================================


def has_vertex_credentials(env: Env) -> bool:
    return bool(env.get("VERTEXAI_PROJECT")) and bool(env.get("VERTEXAI_LOCATION"))


def has_aws_credentials(env: Env) -> bool:
    if env.get("AWS_BEARER_TOKEN_BEDROCK"):
        return True
    if env.get("AWS_ACCESS_KEY_ID") and env.get("AWS_SECRET_ACCESS_KEY"):
        return True
    if env.get("AWS_PROFILE") or env.get("AWS_DEFAULT_PROFILE"):
        return True
    if env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION"):
        return True
    if env.get("AWS_CONTAINER_CREDENTIALS_RELATIVE_URI") or env.get(
        "AWS_CONTAINER_CREDENTIALS_FULL_URI"
    ):
        return True
    return False


# ============================================================================
# Provider merging
# ============================================================================

# A policy either fills in the provider-specific parameters and returns None,
# or returns the reason the provider cannot be used.
TypePolicy = Callable[[ProviderDescriptor, ProviderConfig, Env, VariableResolver], Optional[str]]


def _api_key_policy(
    descriptor: ProviderDescriptor, prepared: ProviderConfig, env: Env, resolver: VariableResolver
) -> Optional[str]:
    try:
        api_key = resolver.resolve_value(descriptor.api_key)
    except VariableResolutionError:
        api_key = ""
    if not api_key:
        return "missing API key"
    return None


def _vertex_policy(
    descriptor: ProviderDescriptor, prepared: ProviderConfig, env: Env, resolver: VariableResolver
) -> Optional[str]:
    if not has_vertex_credentials(env):
        return "missing Vertex AI credentials"
    prepared.extra_params["project"] = env.get("VERTEXAI_PROJECT")
    prepared.extra_params["location"] = env.get("VERTEXAI_LOCATION")
    return None


def _azure_policy(
    descriptor: ProviderDescriptor, prepared: ProviderConfig, env: Env, resolver: VariableResolver
) -> Optional[str]:
    try:
        endpoint = resolver.resolve_value(descriptor.api_endpoint)
    except VariableResolutionError as exc:
        return f"missing API endpoint ({exc})"
    if not endpoint:
        return "missing API endpoint"
    prepared.base_url = endpoint
    prepared.extra_params["apiVersion"] = env.get("AZURE_OPENAI_API_VERSION")
    return None


def _bedrock_policy(
    descriptor: ProviderDescriptor, prepared: ProviderConfig, env: Env, resolver: VariableResolver
) -> Optional[str]:
    if not has_aws_credentials(env):
        return "missing AWS credentials"
    prepared.extra_params["region"] = env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION")
    for model in descriptor.models:
        if not model.id.startswith(BEDROCK_MODEL_PREFIX):
            raise ProviderConfigurationError(
                f"bedrock provider only supports anthropic models for now, found: {model.id}"
            )
    return None


TYPE_POLICIES: Dict[ProviderType, TypePolicy] = {
    ProviderType.OPENAI: _api_key_policy,
    ProviderType.OPENAI_COMPAT: _api_key_policy,
    ProviderType.OPENROUTER: _api_key_policy,
    ProviderType.ANTHROPIC: _api_key_policy,
    ProviderType.GOOGLE: _api_key_policy,
    ProviderType.AZURE: _azure_policy,
    ProviderType.BEDROCK: _bedrock_policy,
    ProviderType.VERTEXAI: _vertex_policy,
    ProviderType.HYPER: _api_key_policy,
}


def _merge_models(
    user_models: List[ModelDescriptor], catalog_models: List[ModelDescriptor]
) -> List[ModelDescriptor]:
    """User models first, then catalog models not already listed, unique by id.

    Entries without an id are skipped.
    """
    merged: List[ModelDescriptor] = []
    seen = set()
    for model in list(user_models) + list(catalog_models):
        if not model.id or model.id in seen:
            continue
        seen.add(model.id)
        if not model.name:
            model = model.model_copy(update={"name": model.id})
        merged.append(model)
    return merged


def _resolve_headers(headers: Dict[str, str], resolver: VariableResolver, provider_id: str) -> Dict[str, str]:
    resolved: Dict[str, str] = {}
    for key, value in headers.items():
        try:
            resolved[key] = resolver.resolve_value(value)
        except VariableResolutionError as exc:
            logger.error(
                f"[config] Could not resolve provider header: {exc}",
                extra={"provider": provider_id, "header": key},
            )
    return resolved


def _drop_provider(cfg: Config, provider_id: str, reason: str, configured: bool) -> None:
    if configured:
        logger.warning(f"[config] Skipping provider {provider_id}: {reason}")
        cfg.providers.pop(provider_id, None)


def configure_providers(
    cfg: Config,
    env: Env,
    resolver: VariableResolver,
    known_providers: List[ProviderDescriptor],
) -> None:
    """Merge the known providers with the user's provider config in place.

    Raises:
        ProviderConfigurationError: a Bedrock provider lists a non-Anthropic model.
    """
    with push_pop_app_env(env):
        _configure_providers(cfg, env, resolver, known_providers)


def _configure_providers(
    cfg: Config,
    env: Env,
    resolver: VariableResolver,
    known_providers: List[ProviderDescriptor],
) -> None:
    if cfg.options.disable_default_providers:
        known_providers = []

    known_ids = set()
    for known in known_providers:
        descriptor = known.model_copy(deep=True)
        provider_id = descriptor.id
        known_ids.add(provider_id)

        user_config = cfg.providers.get(provider_id)
        configured = user_config is not None
        override = user_config or ProviderConfig()

        if configured:
            if override.base_url:
                descriptor.api_endpoint = override.base_url
            if override.api_key:
                descriptor.api_key = override.api_key
            if override.models:
                descriptor.models = _merge_models(override.models, descriptor.models)

        headers = dict(descriptor.default_headers)
        headers.update(override.extra_headers)

        prepared = ProviderConfig(
            id=provider_id,
            name=descriptor.name,
            base_url=descriptor.api_endpoint,
            type=descriptor.type,
            api_key=descriptor.api_key,
            api_key_template=descriptor.api_key,
            oauth=override.oauth,
            disable=override.disable,
            system_prompt_prefix=override.system_prompt_prefix,
            extra_headers=_resolve_headers(headers, resolver, provider_id),
            extra_body=dict(override.extra_body),
            provider_options=dict(override.provider_options),
            models=descriptor.models,
        )

        if provider_id == PROVIDER_ANTHROPIC and override.oauth is not None:
            # Subscription logins are no longer supported; drop them to force onboarding again.
            try:
                cfg.remove_config_field(f"providers.{PROVIDER_ANTHROPIC}")
            except ConfigError as exc:
                logger.warning(f"[config] Failed to remove legacy anthropic config: {exc}")
            cfg.providers.pop(provider_id, None)
            continue
        if provider_id == PROVIDER_COPILOT and override.oauth is not None:
            prepared.setup_github_copilot()

        provider_type = descriptor.provider_type
        if provider_type is None:
            logger.warning(
                f"[config] Skipping provider {provider_id}: unsupported provider type {descriptor.type!r}"
            )
            cfg.providers.pop(provider_id, None)
            continue

        policy = TYPE_POLICIES[provider_type]
        reason = policy(descriptor, prepared, env, resolver)
        if reason is not None:
            _drop_provider(cfg, provider_id, reason, configured)
            continue

        cfg.providers[provider_id] = prepared

    supported_types = {member.value for member in ProviderType}
    for provider_id, provider_config in list(cfg.providers.items()):
        if provider_id in known_ids:
            continue

        provider_config.id = provider_id
        if not provider_config.name:
            provider_config.name = provider_id
        if not provider_config.type:
            provider_config.type = ProviderType.OPENAI_COMPAT.value
        if provider_config.type not in supported_types:
            logger.warning(
                f"[config] Skipping custom provider {provider_id}: unsupported provider type "
                f"{provider_config.type!r}"
            )
            del cfg.providers[provider_id]
            continue

        if provider_config.disable:
            logger.debug(f"[config] Skipping custom provider {provider_id}: disabled")
            del cfg.providers[provider_id]
            continue
        if not provider_config.base_url:
            logger.warning(f"[config] Skipping custom provider {provider_id}: missing API endpoint")
            del cfg.providers[provider_id]
            continue
        provider_config.models = [model for model in provider_config.models if model.id]
        if not provider_config.models:
            logger.warning(f"[config] Skipping custom provider {provider_id}: no models configured")
            del cfg.providers[provider_id]
            continue

        provider_config.api_key_template = provider_config.api_key
        try:
            api_key = resolver.resolve_value(provider_config.api_key)
        except VariableResolutionError:
            api_key = ""
        if not api_key:
            logger.warning(
                f"[config] Provider {provider_id} has no API key; this may be fine for local providers"
            )

        try:
            base_url = resolver.resolve_value(provider_config.base_url)
        except VariableResolutionError as exc:
            logger.warning(f"[config] Skipping custom provider {provider_id}: unresolved API endpoint ({exc})")
            del cfg.providers[provider_id]
            continue
        if not base_url:
            logger.warning(f"[config] Skipping custom provider {provider_id}: missing API endpoint")
            del cfg.providers[provider_id]
            continue

        provider_config.extra_headers = _resolve_headers(provider_config.extra_headers, resolver, provider_id)
        cfg.providers[provider_id] = provider_config


# ============================================================================
# Model selection
# ============================================================================


def _selected_from(provider_id: str, model: ModelDescriptor, with_effort: bool = True) -> SelectedModel:
    return SelectedModel(
        provider=provider_id,
        model=model.id,
        max_tokens=model.default_max_tokens,
        reasoning_effort=model.default_reasoning_effort if with_effort else "",
    )


def default_model_selection(
    cfg: Config, known_providers: List[ProviderDescriptor]
) -> Tuple[SelectedModel, SelectedModel]:
    """Default large and small models for the current provider set.

    The first enabled known provider, in catalog order, supplies both from
    its declared defaults. Without one, the enabled provider with the lowest
    id supplies its first model for both slots.

    Raises:
        ModelSelectionError: nothing is configured, or the chosen known
            provider no longer lists its declared default model.
    """
    if not known_providers and not cfg.providers:
        raise ModelSelectionError("no providers configured, please configure at least one provider")

    for known in known_providers:
        provider_config = cfg.providers.get(known.id)
        if provider_config is None or provider_config.disable:
            continue
        large = cfg.get_model(known.id, known.default_large_model_id)
        if large is None:
            raise ModelSelectionError(
                f"default large model {known.default_large_model_id} not found for provider {known.id}"
            )
        small = cfg.get_model(known.id, known.default_small_model_id)
        if small is None:
            raise ModelSelectionError(
                f"default small model {known.default_small_model_id} not found for provider {known.id}"
            )
        return _selected_from(known.id, large), _selected_from(known.id, small)

    enabled = sorted(cfg.enabled_providers(), key=lambda provider: provider.id)
    if not enabled:
        raise ModelSelectionError("no providers configured, please configure at least one provider")

    first = enabled[0]
    if not first.models:
        raise ModelSelectionError(f"provider {first.id} has no models configured")
    model = first.models[0]
    return _selected_from(first.id, model, with_effort=False), _selected_from(first.id, model, with_effort=False)


def _layer_override(resolved: SelectedModel, override: SelectedModel, model: ModelDescriptor) -> SelectedModel:
    layered = resolved.model_copy()
    layered.max_tokens = override.max_tokens if override.max_tokens > 0 else model.default_max_tokens
    layered.reasoning_effort = override.reasoning_effort or model.default_reasoning_effort
    layered.think = override.think
    for knob in ("temperature", "top_p", "top_k", "frequency_penalty", "presence_penalty", "provider_options"):
        value = getattr(override, knob)
        if value is not None:
            setattr(layered, knob, value)
    return layered


def configure_selected_models(cfg: Config, known_providers: List[ProviderDescriptor]) -> None:
    """Resolve both model slots, persisting a default when an override is stale."""
    default_large, default_small = default_model_selection(cfg, known_providers)
    defaults = {SelectedModelType.LARGE: default_large, SelectedModelType.SMALL: default_small}

    for slot in (SelectedModelType.LARGE, SelectedModelType.SMALL):
        default = defaults[slot]
        override = cfg.models.get(slot.value)
        if override is None:
            cfg.models[slot.value] = default
            continue

        candidate = default.model_copy()
        if override.model:
            candidate.model = override.model
        if override.provider:
            candidate.provider = override.provider

        model = cfg.get_model(candidate.provider, candidate.model)
        if model is None:
            logger.warning(
                f"[config] Selected {slot.value} model is not available; using the default",
                extra={"provider": candidate.provider, "model": candidate.model},
            )
            try:
                cfg.update_preferred_model(slot, default)
            except ConfigError as exc:
                raise ConfigError(f"failed to update preferred {slot.value} model: {exc}") from exc
            cfg.models[slot.value] = default
            continue

        cfg.models[slot.value] = _layer_override(candidate, override, model)


# ============================================================================
# Entry point
# ============================================================================


def load(
    working_dir: str,
    data_dir: str = "",
    debug: bool = False,
    env: Optional[Env] = None,
    catalog_service: Optional[ProviderCatalogService] = None,
) -> Config:
    """Load and resolve the configuration for ``working_dir``.

    Raises:
        ConfigError: a config file is unreadable or invalid.
        ProviderConfigurationError: provider configuration is invalid as a whole.
        NoProvidersConfiguredError: no enabled provider is left; the partially
            loaded config is attached to the exception.
        ModelSelectionError: default models could not be determined.
    """
    env = env or Env.from_os()
    config_paths = lookup_configs(working_dir, env)
    try:
        cfg = load_from_config_paths(config_paths)
    except ConfigError as exc:
        raise ConfigError(
            f"failed to load config from paths {[str(path) for path in config_paths]}: {exc}"
        ) from exc

    cfg.data_config_path = global_config_data_path(env)
    set_defaults(cfg, working_dir, data_dir, env)
    if debug:
        cfg.options.debug = True

    setup_logging(Path(cfg.options.data_directory) / "logs" / f"{APP_NAME}.log", cfg.options.debug)

    service = catalog_service or ProviderCatalogService(
        autoupdate=not cfg.options.disable_provider_auto_update, env=env
    )
    known_providers, sync_error = service.known_providers()
    if sync_error is not None:
        logger.warning(f"[config] Provider catalog refresh reported errors: {sync_error}")
    cfg.known_providers = known_providers

    resolver = new_shell_variable_resolver(env)
    cfg.resolver = resolver
    configure_providers(cfg, env, resolver, cfg.known_providers)

    if not cfg.is_configured():
        logger.warning("[config] No providers configured")
        raise NoProvidersConfiguredError(
            "no providers configured, please configure at least one provider", config=cfg
        )

    configure_selected_models(cfg, cfg.known_providers)
    logger.debug(
        "[config] Configuration loaded",
        extra={"providers": len(cfg.providers), "working_dir": working_dir},
    )
    return cfg
