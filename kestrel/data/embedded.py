"""Provider catalog snapshot bundled with this release.

Used when remote catalog updates are disabled, and as the last fallback
when neither the remote catalog nor the on-disk cache is usable.
"""

from __future__ import annotations

from typing import Any, Dict, List

from kestrel.core.catalog import ProviderDescriptor

EMBEDDED_PROVIDERS: List[Dict[str, Any]] = [
    {
        "id": "anthropic",
        "name": "Anthropic",
        "api_key": "$ANTHROPIC_API_KEY",
        "api_endpoint": "$ANTHROPIC_API_ENDPOINT",
        "type": "anthropic",
        "default_large_model_id": "claude-sonnet-4-5-20250929",
        "default_small_model_id": "claude-haiku-4-5-20251001",
        "models": [
            {
                "id": "claude-sonnet-4-5-20250929",
                "name": "Claude Sonnet 4.5",
                "cost_per_1m_in": 3.0,
                "cost_per_1m_out": 15.0,
                "cost_per_1m_in_cached": 3.75,
                "cost_per_1m_out_cached": 0.3,
                "context_window": 200000,
                "default_max_tokens": 50000,
                "can_reason": True,
                "supports_attachments": True,
            },
            {
                "id": "claude-opus-4-1-20250805",
                "name": "Claude Opus 4.1",
                "cost_per_1m_in": 15.0,
                "cost_per_1m_out": 75.0,
                "cost_per_1m_in_cached": 18.75,
                "cost_per_1m_out_cached": 1.5,
                "context_window": 200000,
                "default_max_tokens": 32000,
                "can_reason": True,
                "supports_attachments": True,
            },
            {
                "id": "claude-haiku-4-5-20251001",
                "name": "Claude Haiku 4.5",
                "cost_per_1m_in": 1.0,
                "cost_per_1m_out": 5.0,
                "cost_per_1m_in_cached": 1.25,
                "cost_per_1m_out_cached": 0.1,
                "context_window": 200000,
                "default_max_tokens": 32000,
                "can_reason": True,
                "supports_attachments": True,
            },
        ],
    },
    {
        "id": "openai",
        "name": "OpenAI",
        "api_key": "$OPENAI_API_KEY",
        "api_endpoint": "$OPENAI_API_ENDPOINT",
        "type": "openai",
        "default_large_model_id": "gpt-5",
        "default_small_model_id": "gpt-4o-mini",
        "models": [
            {
                "id": "gpt-5",
                "name": "GPT-5",
                "cost_per_1m_in": 1.25,
                "cost_per_1m_out": 10.0,
                "cost_per_1m_out_cached": 0.125,
                "context_window": 400000,
                "default_max_tokens": 128000,
                "can_reason": True,
                "reasoning_levels": ["minimal", "low", "medium", "high"],
                "default_reasoning_effort": "medium",
                "supports_attachments": True,
            },
            {
                "id": "gpt-4.1",
                "name": "GPT-4.1",
                "cost_per_1m_in": 2.0,
                "cost_per_1m_out": 8.0,
                "cost_per_1m_out_cached": 0.5,
                "context_window": 1047576,
                "default_max_tokens": 16384,
                "supports_attachments": True,
            },
            {
                "id": "gpt-4o-mini",
                "name": "GPT-4o-mini",
                "cost_per_1m_in": 0.15,
                "cost_per_1m_out": 0.6,
                "cost_per_1m_out_cached": 0.075,
                "context_window": 128000,
                "default_max_tokens": 8192,
                "supports_attachments": True,
            },
        ],
    },
    {
        "id": "gemini",
        "name": "Google Gemini",
        "api_key": "$GEMINI_API_KEY",
        "api_endpoint": "$GEMINI_API_ENDPOINT",
        "type": "google",
        "default_large_model_id": "gemini-2.5-pro",
        "default_small_model_id": "gemini-2.5-flash",
        "models": [
            {
                "id": "gemini-2.5-pro",
                "name": "Gemini 2.5 Pro",
                "cost_per_1m_in": 1.25,
                "cost_per_1m_out": 10.0,
                "cost_per_1m_out_cached": 0.31,
                "context_window": 1048576,
                "default_max_tokens": 50000,
                "can_reason": True,
                "supports_attachments": True,
            },
            {
                "id": "gemini-2.5-flash",
                "name": "Gemini 2.5 Flash",
                "cost_per_1m_in": 0.3,
                "cost_per_1m_out": 2.5,
                "cost_per_1m_out_cached": 0.075,
                "context_window": 1048576,
                "default_max_tokens": 50000,
                "can_reason": True,
                "supports_attachments": True,
            },
        ],
    },
    {
        "id": "azure",
        "name": "Azure OpenAI",
        "api_key": "$AZURE_OPENAI_API_KEY",
        "api_endpoint": "$AZURE_OPENAI_API_ENDPOINT",
        "type": "azure",
        "default_large_model_id": "gpt-5",
        "default_small_model_id": "gpt-4o-mini",
        "models": [
            {
                "id": "gpt-5",
                "name": "GPT-5",
                "cost_per_1m_in": 1.25,
                "cost_per_1m_out": 10.0,
                "context_window": 400000,
                "default_max_tokens": 128000,
                "can_reason": True,
                "reasoning_levels": ["minimal", "low", "medium", "high"],
                "default_reasoning_effort": "medium",
                "supports_attachments": True,
            },
            {
                "id": "gpt-4o-mini",
                "name": "GPT-4o-mini",
                "cost_per_1m_in": 0.15,
                "cost_per_1m_out": 0.6,
                "context_window": 128000,
                "default_max_tokens": 8192,
                "supports_attachments": True,
            },
        ],
    },
    {
        "id": "bedrock",
        "name": "AWS Bedrock",
        "api_key": "",
        "api_endpoint": "",
        "type": "bedrock",
        "default_large_model_id": "anthropic.claude-sonnet-4-5-20250929-v1:0",
        "default_small_model_id": "anthropic.claude-haiku-4-5-20251001-v1:0",
        "models": [
            {
                "id": "anthropic.claude-sonnet-4-5-20250929-v1:0",
                "name": "AWS Claude Sonnet 4.5",
                "cost_per_1m_in": 3.0,
                "cost_per_1m_out": 15.0,
                "context_window": 200000,
                "default_max_tokens": 50000,
                "can_reason": True,
                "supports_attachments": True,
            },
            {
                "id": "anthropic.claude-haiku-4-5-20251001-v1:0",
                "name": "AWS Claude Haiku 4.5",
                "cost_per_1m_in": 1.0,
                "cost_per_1m_out": 5.0,
                "context_window": 200000,
                "default_max_tokens": 32000,
                "can_reason": True,
                "supports_attachments": True,
            },
        ],
    },
    {
        "id": "vertexai",
        "name": "Google Vertex AI",
        "api_key": "",
        "api_endpoint": "",
        "type": "google-vertex",
        "default_large_model_id": "gemini-2.5-pro",
        "default_small_model_id": "gemini-2.5-flash",
        "models": [
            {
                "id": "gemini-2.5-pro",
                "name": "Gemini 2.5 Pro",
                "cost_per_1m_in": 1.25,
                "cost_per_1m_out": 10.0,
                "context_window": 1048576,
                "default_max_tokens": 50000,
                "can_reason": True,
                "supports_attachments": True,
            },
            {
                "id": "gemini-2.5-flash",
                "name": "Gemini 2.5 Flash",
                "cost_per_1m_in": 0.3,
                "cost_per_1m_out": 2.5,
                "context_window": 1048576,
                "default_max_tokens": 50000,
                "can_reason": True,
                "supports_attachments": True,
            },
        ],
    },
    {
        "id": "openrouter",
        "name": "OpenRouter",
        "api_key": "$OPENROUTER_API_KEY",
        "api_endpoint": "https://openrouter.ai/api/v1",
        "type": "openrouter",
        "default_large_model_id": "anthropic/claude-sonnet-4.5",
        "default_small_model_id": "openai/gpt-4o-mini",
        "default_headers": {
            "HTTP-Referer": "https://kestrel.dev",
            "X-Title": "Kestrel",
        },
        "models": [
            {
                "id": "anthropic/claude-sonnet-4.5",
                "name": "Anthropic: Claude Sonnet 4.5",
                "cost_per_1m_in": 3.0,
                "cost_per_1m_out": 15.0,
                "context_window": 1000000,
                "default_max_tokens": 32000,
                "can_reason": True,
                "supports_attachments": True,
            },
            {
                "id": "openai/gpt-4o-mini",
                "name": "OpenAI: GPT-4o-mini",
                "cost_per_1m_in": 0.15,
                "cost_per_1m_out": 0.6,
                "context_window": 128000,
                "default_max_tokens": 8192,
                "supports_attachments": True,
            },
        ],
    },
    {
        "id": "copilot",
        "name": "GitHub Copilot",
        "api_key": "",
        "api_endpoint": "https://api.githubcopilot.com",
        "type": "openai-compat",
        "default_large_model_id": "claude-sonnet-4.5",
        "default_small_model_id": "gpt-4o-mini",
        "models": [
            {
                "id": "claude-sonnet-4.5",
                "name": "Claude Sonnet 4.5",
                "context_window": 144000,
                "default_max_tokens": 16000,
                "supports_attachments": True,
            },
            {
                "id": "gpt-4o-mini",
                "name": "GPT-4o-mini",
                "context_window": 128000,
                "default_max_tokens": 4096,
            },
        ],
    },
]

EMBEDDED_HYPER_PROVIDER: Dict[str, Any] = {
    "id": "hyper",
    "name": "Hyper",
    "api_key": "$HYPER_API_KEY",
    "api_endpoint": "https://hyper.kestrel.dev/api/v1/openai",
    "type": "hyper",
    "default_large_model_id": "hyper-large",
    "default_small_model_id": "hyper-small",
    "models": [
        {
            "id": "hyper-large",
            "name": "Hyper Large",
            "context_window": 200000,
            "default_max_tokens": 32000,
            "can_reason": True,
            "supports_attachments": True,
        },
        {
            "id": "hyper-small",
            "name": "Hyper Small",
            "context_window": 128000,
            "default_max_tokens": 8192,
        },
    ],
}


def get_all() -> List[ProviderDescriptor]:
    """Return fresh descriptor objects for the bundled provider catalog."""
    return [ProviderDescriptor.model_validate(item) for item in EMBEDDED_PROVIDERS]


def hyper_embedded() -> ProviderDescriptor:
    """Return the bundled descriptor for the Hyper provider."""
    return ProviderDescriptor.model_validate(EMBEDDED_HYPER_PROVIDER)
