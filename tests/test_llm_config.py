# Copyright (c) Microsoft. All rights reserved.

"""Tests for provider configuration and request parameter precedence (_llm_config.py)."""

import logging

from agent_framework_genui import LLM_PROVIDER_CONFIG, resolve_request_parameters
from agent_framework_genui._llm_config import ModelConfig, ProviderConfig, get_model_config, get_provider_key


def test_provider_keys():
    assert get_provider_key("openai") == "openai"
    assert get_provider_key("anthropic") == "anthropic"
    assert get_provider_key("gemini") == "google"
    assert get_provider_key("groq") == "openai-compatible"
    assert get_provider_key("cerebras") == "openai-compatible"
    assert get_provider_key("openai-compatible") == "openai-compatible"


def test_openai_defaults_without_custom_parameters():
    resolved = resolve_request_parameters("openai", "gpt-4.1-2025-04-14")

    assert resolved["provider_key"] == "openai"
    assert resolved["top_level"] == {}
    assert resolved["provider_options"] == {
        "parallelToolCalls": False,
        "reasoningSummary": "auto",
        "reasoningEffort": "minimal",
        "strictJsonSchema": True,
    }


def test_model_specific_custom_keys_go_to_provider_options():
    """Test custom keys the model declares as model-specific are routed away from the top level."""
    custom = {"openai": {"gpt-5.1": {"temperature": 0.2, "reasoningEffort": "high"}}}

    resolved = resolve_request_parameters("openai", "gpt-5.1", custom)

    assert resolved["top_level"] == {"temperature": 0.2}
    assert resolved["provider_options"]["reasoningEffort"] == "high"
    assert resolved["provider_options"]["parallelToolCalls"] is False


def test_same_key_stays_top_level_for_models_without_it():
    custom = {"openai": {"gpt-4.1-2025-04-14": {"reasoningEffort": "high"}}}

    resolved = resolve_request_parameters("openai", "gpt-4.1-2025-04-14", custom)

    assert resolved["top_level"] == {"reasoningEffort": "high"}
    assert resolved["provider_options"]["reasoningEffort"] == "minimal"


def test_custom_parameters_override_model_defaults(monkeypatch):
    monkeypatch.setitem(
        LLM_PROVIDER_CONFIG,
        "openai",
        ProviderConfig(
            api_name="openai",
            models={
                "tuned": ModelConfig(
                    "tuned", 1000, {"reasoningEffort": "effort"}, {"temperature": 1.0, "topP": 0.9}
                )
            },
            provider_specific_params={"parallelToolCalls": False},
        ),
    )
    custom = {"openai": {"tuned": {"temperature": 0.0, "reasoningEffort": "low"}}}

    resolved = resolve_request_parameters("openai", "tuned", custom)

    assert resolved["top_level"] == {"temperature": 0.0, "topP": 0.9}
    assert resolved["provider_options"] == {"parallelToolCalls": False, "reasoningEffort": "low"}


def test_openai_compatible_splits_common_and_provider_keys():
    """Test non-common custom keys for openai-compatible providers become provider options."""
    custom = {"openai-compatible": {"llama-3.3-70b-versatile": {"temperature": 0.5, "repetitionPenalty": 1.1}}}

    resolved = resolve_request_parameters("groq", "llama-3.3-70b-versatile", custom)

    assert resolved["provider_key"] == "openai-compatible"
    assert resolved["top_level"] == {"temperature": 0.5}
    assert resolved["provider_options"] == {"repetitionPenalty": 1.1}


def test_custom_lookup_falls_back_to_provider_name():
    custom = {"groq": {"llama-3.1-8b-instant": {"seed": 7}}}

    resolved = resolve_request_parameters("groq", "llama-3.1-8b-instant", custom)

    assert resolved["top_level"] == {"seed": 7}


def test_gemini_parameters_are_filed_under_google():
    custom = {"google": {"gemini-2.5-pro": {"topK": 40}}}

    resolved = resolve_request_parameters("gemini", "gemini-2.5-pro", custom)

    assert resolved["provider_key"] == "google"
    assert resolved["top_level"] == {"topK": 40}


def test_unknown_model_logs_warning_and_uses_custom_only(caplog):
    custom = {"anthropic": {"claude-next": {"temperature": 0.3}}}

    with caplog.at_level(logging.WARNING):
        resolved = resolve_request_parameters("anthropic", "claude-next", custom)

    assert 'Unknown model "claude-next"' in caplog.text
    assert resolved["top_level"] == {"temperature": 0.3}
    assert resolved["provider_options"] == {"disableParallelToolUse": True}
    assert get_model_config("anthropic", "claude-next") is None


def test_cerebras_targets_fixed_endpoint():
    assert LLM_PROVIDER_CONFIG["cerebras"].base_url == "https://api.cerebras.ai/v1"
    assert LLM_PROVIDER_CONFIG["openai-compatible"].requires_base_url
