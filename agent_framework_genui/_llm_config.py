# Copyright (c) Microsoft. All rights reserved.

"""Provider and model configuration, and how request parameters are resolved from it."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypedDict

from ._logging import get_logger

logger = get_logger(__name__)

DEFAULT_PROVIDER = "openai"
DEFAULT_OPENAI_MODEL = "gpt-5.1-chat-latest"
CEREBRAS_BASE_URL = "https://api.cerebras.ai/v1"
GROQ_BASE_URL = "https://api.groq.com/openai/v1"
MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

CustomLlmParameters = Mapping[str, Mapping[str, Mapping[str, Any]]]
"""Custom parameters keyed by provider, then by model."""

# Parameters every provider understands. For openai-compatible providers any
# custom key outside this set is forwarded to the provider untouched.
COMMON_PARAMETER_KEYS = frozenset({
    "temperature",
    "maxOutputTokens",
    "topP",
    "topK",
    "presencePenalty",
    "frequencyPenalty",
    "seed",
    "stopSequences",
})

_REASONING_PARAMETERS = {
    "reasoningEffort": "Controls the effort of the model to reason, only if reasoningSummary is also set",
    "reasoningSummary": "Enables reasoning token output",
}


@dataclass(frozen=True)
class ModelConfig:
    api_name: str
    input_token_limit: int | None = None
    model_specific_params: Mapping[str, str] = field(default_factory=dict)
    common_parameters_defaults: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderConfig:
    api_name: str
    models: Mapping[str, ModelConfig] = field(default_factory=dict)
    provider_specific_params: Mapping[str, Any] = field(default_factory=dict)
    base_url: str | None = None
    requires_base_url: bool = False


def _models(*configs: ModelConfig) -> dict[str, ModelConfig]:
    return {config.api_name: config for config in configs}


LLM_PROVIDER_CONFIG: dict[str, ProviderConfig] = {
    "openai": ProviderConfig(
        api_name="openai",
        models=_models(
            ModelConfig("gpt-5.1", 400000, _REASONING_PARAMETERS),
            ModelConfig("gpt-5.1-chat-latest", 400000, _REASONING_PARAMETERS),
            ModelConfig("gpt-5-2025-08-07", 400000, _REASONING_PARAMETERS),
            ModelConfig("gpt-5-mini-2025-08-07", 400000, _REASONING_PARAMETERS),
            ModelConfig("gpt-5-nano-2025-08-07", 400000, _REASONING_PARAMETERS),
            ModelConfig("gpt-4.1-2025-04-14", 1047576),
            ModelConfig("gpt-4.1-mini-2025-04-14", 1047576),
            ModelConfig("gpt-4.1-nano-2025-04-14", 1047576),
            ModelConfig("o3-2025-04-16", 200000, _REASONING_PARAMETERS),
            ModelConfig("gpt-4o-2024-11-20", 128000),
            ModelConfig("gpt-4o-mini-2024-07-18", 128000),
        ),
        provider_specific_params={
            "parallelToolCalls": False,
            "reasoningSummary": "auto",
            "reasoningEffort": "minimal",
            "strictJsonSchema": True,
        },
    ),
    "anthropic": ProviderConfig(
        api_name="anthropic",
        models=_models(
            ModelConfig("claude-sonnet-4-5-20250929", 200000),
            ModelConfig("claude-opus-4-1-20250805", 200000),
            ModelConfig("claude-haiku-4-5-20251001", 200000),
        ),
        provider_specific_params={"disableParallelToolUse": True},
    ),
    "gemini": ProviderConfig(
        api_name="gemini",
        models=_models(
            ModelConfig("gemini-2.5-pro", 1048576),
            ModelConfig("gemini-2.5-flash", 1048576),
        ),
        base_url=GEMINI_BASE_URL,
    ),
    "mistral": ProviderConfig(
        api_name="mistral",
        models=_models(
            ModelConfig("mistral-large-latest", 128000),
            ModelConfig("mistral-medium-latest", 128000),
        ),
        provider_specific_params={"parallelToolCalls": False},
        base_url=MISTRAL_BASE_URL,
    ),
    "groq": ProviderConfig(
        api_name="groq",
        models=_models(
            ModelConfig("llama-3.3-70b-versatile", 131072),
            ModelConfig("llama-3.1-8b-instant", 131072),
        ),
        base_url=GROQ_BASE_URL,
    ),
    "cerebras": ProviderConfig(
        api_name="cerebras",
        models=_models(
            ModelConfig("llama3.1-8b", 128000),
            ModelConfig("llama-3.3-70b", 128000),
            ModelConfig("qwen-3-32b", 32768),
            ModelConfig("gpt-oss-120b", 8192),
        ),
        base_url=CEREBRAS_BASE_URL,
    ),
    "openai-compatible": ProviderConfig(api_name="openai-compatible", requires_base_url=True),
}

_PROVIDER_KEYS = {
    "gemini": "google",
    "groq": "openai-compatible",
    "cerebras": "openai-compatible",
    "openai-compatible": "openai-compatible",
}


def get_provider_key(provider: str) -> str:
    """Map a configured provider onto the key its request options are filed under."""
    return _PROVIDER_KEYS.get(provider, provider)


def get_model_config(provider: str, model: str) -> ModelConfig | None:
    provider_config = LLM_PROVIDER_CONFIG.get(provider)
    model_config = provider_config.models.get(model) if provider_config else None
    if model_config is None:
        logger.warning(f'Unknown model "{model}" for provider "{provider}"')
    return model_config


class ResolvedParameters(TypedDict):
    provider_key: str
    top_level: dict[str, Any]
    provider_options: dict[str, Any]


def resolve_request_parameters(
    provider: str,
    model: str,
    custom_llm_parameters: CustomLlmParameters | None = None,
) -> ResolvedParameters:
    """Resolve the request parameters for one model.

    Provider options start from the provider defaults, then model-specific
    custom keys, then (openai-compatible only) custom keys outside the common
    set. Top-level parameters start from the model defaults and custom keys
    override them, except the model-specific keys routed to provider options.
    """
    provider_key = get_provider_key(provider)
    provider_config = LLM_PROVIDER_CONFIG.get(provider)
    model_config = get_model_config(provider, model)

    custom_llm_parameters = custom_llm_parameters or {}
    all_custom_params = dict(
        custom_llm_parameters.get(provider_key, {}).get(model)
        or custom_llm_parameters.get(provider, {}).get(model)
        or {}
    )

    custom_params = all_custom_params
    provider_custom_params: dict[str, Any] = {}
    if provider_key == "openai-compatible" and all_custom_params:
        custom_params = {k: v for k, v in all_custom_params.items() if k in COMMON_PARAMETER_KEYS}
        provider_custom_params = {k: v for k, v in all_custom_params.items() if k not in COMMON_PARAMETER_KEYS}

    model_specific_keys = set(model_config.model_specific_params) if model_config else set()
    model_specific_custom = {k: v for k, v in custom_params.items() if k in model_specific_keys}
    filtered_custom = {k: v for k, v in custom_params.items() if k not in model_specific_keys}

    provider_options: dict[str, Any] = {
        **(provider_config.provider_specific_params if provider_config else {}),
        **model_specific_custom,
        **provider_custom_params,
    }
    top_level: dict[str, Any] = {
        **(model_config.common_parameters_defaults if model_config else {}),
        **filtered_custom,
    }
    return ResolvedParameters(provider_key=provider_key, top_level=top_level, provider_options=provider_options)
