# Copyright (c) Microsoft. All rights reserved.

"""Tests for settings resolution (_settings.py)."""

from typing import TypedDict

import pytest

from agent_framework_genui import SecretString, ServiceInitializationError, load_settings


class SampleSettings(TypedDict, total=False):
    api_key: SecretString | None
    model: str | None
    max_input_tokens: int | None
    verbose: bool | None


@pytest.fixture
def no_sample_env(monkeypatch, tmp_path):
    for name in ("API_KEY", "MODEL", "MAX_INPUT_TOKENS", "VERBOSE"):
        # setenv then delenv so variables loaded from a .env file are removed on teardown
        monkeypatch.setenv(f"SAMPLE_{name}", "")
        monkeypatch.delenv(f"SAMPLE_{name}")
    monkeypatch.chdir(tmp_path)


def test_environment_variables_are_read_and_coerced(monkeypatch, no_sample_env):
    monkeypatch.setenv("SAMPLE_MODEL", "gpt-4.1")
    monkeypatch.setenv("SAMPLE_MAX_INPUT_TOKENS", "2048")
    monkeypatch.setenv("SAMPLE_VERBOSE", "true")
    monkeypatch.setenv("SAMPLE_API_KEY", "sk-test")

    settings = load_settings(SampleSettings, env_prefix="SAMPLE_")

    assert settings["model"] == "gpt-4.1"
    assert settings["max_input_tokens"] == 2048
    assert settings["verbose"] is True
    assert isinstance(settings["api_key"], SecretString)
    assert settings["api_key"].get_secret_value() == "sk-test"


def test_overrides_win_over_environment(monkeypatch, no_sample_env):
    monkeypatch.setenv("SAMPLE_MODEL", "from-env")

    settings = load_settings(SampleSettings, env_prefix="SAMPLE_", model="explicit", max_input_tokens=None)

    assert settings["model"] == "explicit"
    assert settings["max_input_tokens"] is None


def test_dotenv_file_is_loaded(tmp_path, no_sample_env):
    env_file = tmp_path / "custom.env"
    env_file.write_text("SAMPLE_MODEL=from-dotenv\nSAMPLE_MAX_INPUT_TOKENS=99\n", encoding="utf-8")

    settings = load_settings(SampleSettings, env_prefix="SAMPLE_", env_file_path=str(env_file))

    assert settings["model"] == "from-dotenv"
    assert settings["max_input_tokens"] == 99


def test_override_with_wrong_type_raises(no_sample_env):
    with pytest.raises(ServiceInitializationError):
        load_settings(SampleSettings, env_prefix="SAMPLE_", max_input_tokens=["not", "an", "int"])


def test_secret_string_repr_is_masked():
    secret = SecretString("sk-very-secret")
    assert "sk-very-secret" not in repr(secret)
    assert secret.get_secret_value() == "sk-very-secret"
