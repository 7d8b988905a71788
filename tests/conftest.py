# Copyright (c) Microsoft. All rights reserved.

"""Shared test fixtures for the generative UI engine tests."""

from typing import Any

import pytest
from utils_test_genui import function_tool, make_message

from agent_framework_genui import MessageRole, ThreadMessage


@pytest.fixture
def user_messages() -> list[ThreadMessage]:
    return [make_message(MessageRole.USER, "What's the weather in NYC?", id="user_1")]


@pytest.fixture
def weather_card_tool() -> dict[str, Any]:
    return function_tool("show_component_WeatherCard", temperature={"type": "number"}, location={"type": "string"})


@pytest.fixture
def get_weather_tool() -> dict[str, Any]:
    return function_tool("get_weather", city={"type": "string"})


@pytest.fixture
def clean_genui_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Any) -> None:
    """Run without GENUI_* variables and outside any directory holding a .env file."""
    for name in (
        "MODEL",
        "PROVIDER",
        "BASE_URL",
        "API_KEY",
        "MAX_INPUT_TOKENS",
        "AI_PROVIDER_TYPE",
        "AGENT_PROVIDER_TYPE",
        "AGENT_URL",
        "AGENT_NAME",
    ):
        monkeypatch.delenv(f"GENUI_{name}", raising=False)
    monkeypatch.chdir(tmp_path)
