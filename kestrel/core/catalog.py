"""Provider catalog models shared by the synchronizers and config flows."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderType(str, Enum):
    """API family a provider speaks. Closed set; dispatch tables cover every member."""

    OPENAI = "openai"
    OPENAI_COMPAT = "openai-compat"
    OPENROUTER = "openrouter"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    AZURE = "azure"
    BEDROCK = "bedrock"
    VERTEXAI = "google-vertex"
    HYPER = "hyper"


# Provider ids that carry special handling during configuration.
PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_COPILOT = "copilot"
PROVIDER_OPENROUTER = "openrouter"
PROVIDER_MINIMAX = "minimax"
PROVIDER_ZAI = "zai"
PROVIDER_KIMI_CODING = "kimi-coding"


class ModelDescriptor(BaseModel):
    """A model as described by the provider catalog."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    name: str = ""
    cost_per_1m_in: float = 0.0
    cost_per_1m_out: float = 0.0
    cost_per_1m_in_cached: float = 0.0
    cost_per_1m_out_cached: float = 0.0
    context_window: int = 0
    default_max_tokens: int = 0
    can_reason: bool = False
    reasoning_levels: List[str] = Field(default_factory=list)
    default_reasoning_effort: str = ""
    supports_attachments: bool = False


class ProviderDescriptor(BaseModel):
    """Remote or embedded truth about a provider.

    ``api_key`` and ``api_endpoint`` are templates (``$OPENAI_API_KEY``) and
    are resolved only when the provider is configured. ``type`` is kept as
    the raw string so a catalog entry of an unknown type does not invalidate
    the rest of the catalog; configuration skips such entries.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    name: str = ""
    api_key: str = ""
    api_endpoint: str = ""
    type: str = ProviderType.OPENAI_COMPAT.value
    default_large_model_id: str = ""
    default_small_model_id: str = ""
    models: List[ModelDescriptor] = Field(default_factory=list)
    default_headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _type_value(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        return value

    @property
    def provider_type(self) -> Optional[ProviderType]:
        try:
            return ProviderType(self.type)
        except ValueError:
            return None
