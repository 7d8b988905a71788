# Copyright (c) Microsoft. All rights reserved.

"""Tests for the direct-completion chat client (_chat_client.py)."""

import logging
from types import SimpleNamespace
from typing import Any

import pytest
from ag_ui.core import CustomEvent
from anthropic import AsyncAnthropic
from openai import OpenAIError
from openai.types.chat import ChatCompletionChunk
from utils_test_genui import async_iter, collect, make_message

from agent_framework_genui import (
    GenUIChatClient,
    MessageRole,
    ProviderStreamError,
    ServiceInitializationError,
    ToolCallRequest,
    ToolParameter,
    resolve_request_parameters,
)
from agent_framework_genui._chat_client import (
    anthropic_events_to_deltas,
    limit_tokens,
    openai_chunks_to_deltas,
    to_anthropic_messages,
    to_openai_messages,
)
from agent_framework_genui._component_streaming import COMPONENT_END_EVENT, COMPONENT_START_EVENT
from agent_framework_genui._provider_stream import (
    ReasoningDelta,
    ReasoningEnd,
    ReasoningStart,
    StreamFinish,
    StreamStart,
    TextDelta,
    TextEnd,
    TextStart,
    ToolCallCommit,
    ToolInputDelta,
    ToolInputEnd,
    ToolInputStart,
    normalize_stream,
)


def chunk(delta: dict[str, Any], finish_reason: str | None = None) -> ChatCompletionChunk:
    return ChatCompletionChunk.model_validate({
        "id": "chunk",
        "object": "chat.completion.chunk",
        "created": 0,
        "model": "gpt-4.1-2025-04-14",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    })


def tool_call_chunk(index: int, arguments: str, *, id: str | None = None, name: str | None = None):
    function: dict[str, Any] = {"arguments": arguments}
    if name:
        function["name"] = name
    return chunk({"tool_calls": [{"index": index, "id": id, "type": "function", "function": function}]})


class FakeOpenAIClient:
    """Stands in for AsyncOpenAI, recording the create() keyword arguments."""

    def __init__(self, chunks: list[ChatCompletionChunk]) -> None:
        self.chunks = chunks
        self.requests: list[dict[str, Any]] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs: Any):
        self.requests.append(kwargs)
        return async_iter(self.chunks)


TEXT_CHUNKS = [
    chunk({"role": "assistant", "content": "Hel"}),
    chunk({"content": "lo"}),
    chunk({}, finish_reason="stop"),
]


# region Delta adapters


async def test_openai_text_chunks_become_text_deltas():
    deltas = await collect(openai_chunks_to_deltas(async_iter(TEXT_CHUNKS)))

    assert [type(d) for d in deltas] == [StreamStart, TextStart, TextDelta, TextDelta, TextEnd, StreamFinish]
    assert "".join(d.text for d in deltas if isinstance(d, TextDelta)) == "Hello"
    assert deltas[-1].finish_reason == "stop"


async def test_openai_tool_call_chunks_are_tracked_by_index():
    chunks = [
        tool_call_chunk(0, "", id="call_1", name="get_weather"),
        tool_call_chunk(0, '{"city":'),
        tool_call_chunk(0, ' "NYC"}'),
        tool_call_chunk(1, "{}", id="call_2", name="get_time"),
        chunk({}, finish_reason="tool_calls"),
    ]

    deltas = await collect(openai_chunks_to_deltas(async_iter(chunks)))

    assert [type(d) for d in deltas] == [
        StreamStart,
        ToolInputStart,
        ToolInputDelta,
        ToolInputDelta,
        ToolInputEnd,
        ToolCallCommit,
        ToolInputStart,
        ToolInputDelta,
        ToolInputEnd,
        ToolCallCommit,
        StreamFinish,
    ]
    commits = [d for d in deltas if isinstance(d, ToolCallCommit)]
    assert commits[0] == ToolCallCommit(tool_call_id="call_1", tool_name="get_weather", input='{"city": "NYC"}')
    assert commits[1] == ToolCallCommit(tool_call_id="call_2", tool_name="get_time", input="{}")


async def test_openai_reasoning_content_is_surfaced_as_reasoning():
    chunks = [chunk({"reasoning_content": "Let me think"}), chunk({"content": "Answer"})]

    deltas = await collect(openai_chunks_to_deltas(async_iter(chunks)))

    assert [type(d) for d in deltas] == [
        StreamStart,
        ReasoningStart,
        ReasoningDelta,
        ReasoningEnd,
        TextStart,
        TextDelta,
        TextEnd,
        StreamFinish,
    ]
    assert deltas[2].text == "Let me think"


async def test_openai_stream_errors_are_wrapped():
    async def failing():
        yield chunk({"content": "partial"})
        raise OpenAIError("connection reset")

    with pytest.raises(ProviderStreamError) as exc_info:
        await collect(openai_chunks_to_deltas(failing()))
    assert isinstance(exc_info.value.inner_exception, OpenAIError)


async def test_anthropic_events_become_deltas():
    events = [
        SimpleNamespace(type="message_start"),
        SimpleNamespace(type="content_block_start", index=0, content_block=SimpleNamespace(type="text", text="")),
        SimpleNamespace(type="content_block_delta", index=0, delta=SimpleNamespace(type="text_delta", text="Hi")),
        SimpleNamespace(type="content_block_stop", index=0),
        SimpleNamespace(
            type="content_block_start",
            index=1,
            content_block=SimpleNamespace(type="tool_use", id="toolu_1", name="get_weather"),
        ),
        SimpleNamespace(
            type="content_block_delta",
            index=1,
            delta=SimpleNamespace(type="input_json_delta", partial_json='{"city": "NYC"}'),
        ),
        SimpleNamespace(type="content_block_stop", index=1),
        SimpleNamespace(type="message_delta", delta=SimpleNamespace(stop_reason="tool_use")),
        SimpleNamespace(type="message_stop"),
    ]

    deltas = await collect(anthropic_events_to_deltas(async_iter(events)))

    assert [type(d) for d in deltas] == [
        StreamStart,
        TextStart,
        TextDelta,
        TextEnd,
        ToolInputStart,
        ToolInputDelta,
        ToolInputEnd,
        ToolCallCommit,
        StreamFinish,
    ]
    assert deltas[7] == ToolCallCommit(tool_call_id="toolu_1", tool_name="get_weather", input='{"city": "NYC"}')
    assert deltas[-1].finish_reason == "tool_use"


def zero_argument_tool_deltas(source: str, tool_name: str):
    """A single tool call that streams no argument text."""
    if source == "anthropic":
        events = [
            SimpleNamespace(type="message_start"),
            SimpleNamespace(
                type="content_block_start",
                index=0,
                content_block=SimpleNamespace(type="tool_use", id="call_1", name=tool_name, input={}),
            ),
            SimpleNamespace(
                type="content_block_delta", index=0, delta=SimpleNamespace(type="input_json_delta", partial_json="")
            ),
            SimpleNamespace(type="content_block_stop", index=0),
            SimpleNamespace(type="message_delta", delta=SimpleNamespace(stop_reason="tool_use")),
            SimpleNamespace(type="message_stop"),
        ]
        return anthropic_events_to_deltas(async_iter(events))
    chunks = [tool_call_chunk(0, "", id="call_1", name=tool_name), chunk({}, finish_reason="tool_calls")]
    return openai_chunks_to_deltas(async_iter(chunks))


@pytest.mark.parametrize("source", ["anthropic", "openai"])
async def test_tool_call_without_arguments_commits_empty_object(source):
    deltas = await collect(zero_argument_tool_deltas(source, "refresh_data"))

    tool_deltas = [d for d in deltas if isinstance(d, (ToolInputStart, ToolInputDelta, ToolInputEnd, ToolCallCommit))]
    assert [type(d) for d in tool_deltas] == [ToolInputStart, ToolInputDelta, ToolInputEnd, ToolCallCommit]
    assert tool_deltas[1] == ToolInputDelta(delta="{}", id="call_1")
    assert tool_deltas[-1] == ToolCallCommit(tool_call_id="call_1", tool_name="refresh_data", input="{}")


@pytest.mark.parametrize("source", ["anthropic", "openai"])
async def test_action_tool_without_arguments_reaches_the_response(source):
    items = await collect(normalize_stream(zero_argument_tool_deltas(source, "refresh_data")))

    tool_call = items[-1].llm_response.tool_call
    assert tool_call is not None
    assert (tool_call.id, tool_call.name, tool_call.arguments) == ("call_1", "refresh_data", "{}")


@pytest.mark.parametrize("source", ["anthropic", "openai"])
async def test_component_tool_without_arguments_finalizes_with_empty_props(source):
    items = await collect(normalize_stream(zero_argument_tool_deltas(source, "show_component_Clock")))

    custom_events = [e for item in items for e in item.agui_events if isinstance(e, CustomEvent)]
    assert [e.name for e in custom_events] == [COMPONENT_START_EVENT, COMPONENT_END_EVENT]
    assert custom_events[0].value["name"] == "Clock"
    assert custom_events[-1].value["finalProps"] == {}
    assert items[-1].llm_response.tool_call.arguments == "{}"


# endregion

# region Message conversion


def test_limit_tokens_drops_oldest_non_system_messages():
    system = make_message(MessageRole.SYSTEM, "sys", id="system")
    users = [make_message(MessageRole.USER, "x" * 40, id=f"user_{i}") for i in range(3)]

    kept = limit_tokens([system, *users], 25)

    assert [m.id for m in kept] == ["system", "user_1", "user_2"]
    assert limit_tokens([system, *users], None) == [system, *users]


def test_limit_tokens_always_keeps_newest_message(caplog):
    messages = [make_message(MessageRole.USER, "x" * 40, id=f"user_{i}") for i in range(2)]

    with caplog.at_level(logging.WARNING):
        kept = limit_tokens(messages, 1)

    assert [m.id for m in kept] == ["user_1"]
    assert "still exceeds" in caplog.text


def _assistant_tool_call() -> Any:
    return make_message(
        MessageRole.ASSISTANT,
        "Checking",
        id="assistant_1",
        tool_call_id="call_1",
        tool_call_request=ToolCallRequest(
            tool_name="get_weather", parameters=[ToolParameter(parameter_name="city", parameter_value="NYC")]
        ),
    )


def test_to_openai_messages():
    messages = [
        make_message(MessageRole.SYSTEM, "Be brief"),
        make_message(MessageRole.USER, "Weather?"),
        _assistant_tool_call(),
        make_message(MessageRole.TOOL, "Sunny", tool_call_id="call_1"),
    ]

    converted = to_openai_messages(messages)

    assert converted[0] == {"role": "system", "content": "Be brief"}
    assert converted[1] == {"role": "user", "content": [{"type": "text", "text": "Weather?"}]}
    assert converted[2]["tool_calls"][0]["function"] == {"name": "get_weather", "arguments": '{"city": "NYC"}'}
    assert converted[3] == {"role": "tool", "tool_call_id": "call_1", "content": "Sunny"}


def test_to_anthropic_messages_splits_out_system_prompt():
    messages = [
        make_message(MessageRole.SYSTEM, "First"),
        make_message(MessageRole.SYSTEM, "Second"),
        _assistant_tool_call(),
        make_message(MessageRole.TOOL, "Sunny", tool_call_id="call_1"),
    ]

    system, converted = to_anthropic_messages(messages)

    assert system == "First\n\nSecond"
    assert converted[0]["content"][1] == {
        "type": "tool_use",
        "id": "call_1",
        "name": "get_weather",
        "input": {"city": "NYC"},
    }
    assert converted[1] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "call_1", "content": "Sunny"}],
    }


# endregion

# region Client


async def test_streaming_response_over_openai(clean_genui_env, user_messages):
    fake = FakeOpenAIClient(TEXT_CHUNKS)
    client = GenUIChatClient(model="gpt-4.1-2025-04-14", client=fake)

    items = await collect(client.get_streaming_response(user_messages))

    assert items[-1].llm_response.content == "Hello"
    [request] = fake.requests
    assert request["model"] == "gpt-4.1-2025-04-14"
    assert request["stream"] is True
    assert request["messages"] == [
        {"role": "user", "content": [{"type": "text", "text": "What's the weather in NYC?"}]}
    ]
    assert "parallel_tool_calls" not in request
    assert "reasoning_effort" not in request


async def test_get_response_returns_final_response(clean_genui_env, user_messages):
    client = GenUIChatClient(model="gpt-4.1-2025-04-14", client=FakeOpenAIClient(TEXT_CHUNKS))

    response = await client.get_response(user_messages)

    assert response.content == "Hello"
    assert response.tool_call is None


async def test_system_prompt_templates_are_formatted(clean_genui_env, user_messages):
    fake = FakeOpenAIClient(TEXT_CHUNKS)
    client = GenUIChatClient(model="gpt-4.1-2025-04-14", client=fake)
    messages = [
        make_message(MessageRole.SYSTEM, "You are {assistant_name}.", id="system_1"),
        make_message(MessageRole.SYSTEM, "Keep {missing} as is.", id="system_2"),
        *user_messages,
    ]

    await collect(client.get_streaming_response(messages, prompt_template_params={"assistant_name": "Tambo"}))

    sent = fake.requests[0]["messages"]
    assert sent[0] == {"role": "system", "content": "You are Tambo."}
    assert sent[1] == {"role": "system", "content": "Keep {missing} as is."}


async def test_tools_and_provider_options_are_forwarded(clean_genui_env, user_messages, get_weather_tool):
    fake = FakeOpenAIClient(TEXT_CHUNKS)
    client = GenUIChatClient(model="gpt-5.1", client=fake)

    await collect(client.get_streaming_response(user_messages, tools=[get_weather_tool], tool_choice="auto"))

    [request] = fake.requests
    assert request["tools"] == [get_weather_tool]
    assert request["tool_choice"] == "auto"
    assert request["parallel_tool_calls"] is False
    assert request["reasoning_effort"] == "minimal"
    assert "extra_body" not in request


def test_openai_options_map_custom_parameters(clean_genui_env):
    client = GenUIChatClient(model="gpt-4.1-2025-04-14", client=FakeOpenAIClient([]))
    parameters = resolve_request_parameters(
        "openai", "gpt-4.1-2025-04-14", {"openai": {"gpt-4.1-2025-04-14": {"maxOutputTokens": 100, "topK": 40}}}
    )

    options = client._prepare_openai_options(None, None, parameters)

    assert options == {"max_completion_tokens": 100, "extra_body": {"topK": 40}}


def test_openai_compatible_options(clean_genui_env):
    client = GenUIChatClient(provider="groq", model="llama-3.3-70b-versatile", client=FakeOpenAIClient([]))
    parameters = resolve_request_parameters(
        "groq",
        "llama-3.3-70b-versatile",
        {"openai-compatible": {"llama-3.3-70b-versatile": {"maxOutputTokens": 50, "reasoningEffort": "low"}}},
    )

    options = client._prepare_openai_options(None, None, parameters)

    assert options == {"max_tokens": 50, "reasoning_effort": "low"}
    assert client.base_url == "https://api.groq.com/openai/v1"


def test_anthropic_options(clean_genui_env, get_weather_tool):
    client = GenUIChatClient(
        provider="anthropic", model="claude-sonnet-4-5-20250929", client=AsyncAnthropic(api_key="test-key")
    )
    parameters = resolve_request_parameters("anthropic", "claude-sonnet-4-5-20250929")

    forced = client._prepare_anthropic_options(
        [get_weather_tool], {"type": "function", "function": {"name": "get_weather"}}, parameters
    )
    disabled = client._prepare_anthropic_options([get_weather_tool], "none", parameters)

    assert forced["max_tokens"] == 4096
    assert forced["tools"] == [
        {
            "name": "get_weather",
            "description": "The get_weather tool",
            "input_schema": get_weather_tool["function"]["parameters"],
        }
    ]
    assert forced["tool_choice"] == {"type": "tool", "name": "get_weather", "disable_parallel_tool_use": True}
    assert disabled["tool_choice"] == {"type": "none"}


async def test_streaming_response_over_anthropic(clean_genui_env, monkeypatch):
    anthropic_client = AsyncAnthropic(api_key="test-key")
    requests: list[dict[str, Any]] = []
    events = [
        SimpleNamespace(type="message_start"),
        SimpleNamespace(type="content_block_start", index=0, content_block=SimpleNamespace(type="text", text="Hi")),
        SimpleNamespace(type="content_block_stop", index=0),
        SimpleNamespace(type="message_stop"),
    ]

    async def create(**kwargs: Any):
        requests.append(kwargs)
        return async_iter(events)

    monkeypatch.setattr(anthropic_client.messages, "create", create)
    client = GenUIChatClient(provider="anthropic", model="claude-sonnet-4-5-20250929", client=anthropic_client)
    messages = [make_message(MessageRole.SYSTEM, "Be kind"), make_message(MessageRole.USER, "Hello")]

    response = await client.get_response(messages)

    assert response.content == "Hi"
    assert requests[0]["system"] == "Be kind"
    assert requests[0]["messages"] == [{"role": "user", "content": [{"type": "text", "text": "Hello"}]}]


def test_openai_compatible_requires_base_url(clean_genui_env):
    with pytest.raises(ServiceInitializationError, match="requires a base URL"):
        GenUIChatClient(provider="openai-compatible", model="local-model", api_key="key")


def test_unsupported_provider_raises(clean_genui_env):
    with pytest.raises(ServiceInitializationError, match="Unsupported provider"):
        GenUIChatClient(provider="not-a-provider", client=FakeOpenAIClient([]))


def test_cerebras_ignores_base_url_override(clean_genui_env):
    client = GenUIChatClient(provider="cerebras", base_url="https://elsewhere.example", client=FakeOpenAIClient([]))

    assert client.base_url == "https://api.cerebras.ai/v1"


def test_settings_come_from_environment(clean_genui_env, monkeypatch):
    monkeypatch.setenv("GENUI_PROVIDER", "mistral")
    monkeypatch.setenv("GENUI_MODEL", "mistral-large-latest")
    monkeypatch.setenv("GENUI_MAX_INPUT_TOKENS", "1000")

    client = GenUIChatClient(client=FakeOpenAIClient([]))

    assert client.provider == "mistral"
    assert client.model == "mistral-large-latest"
    assert client.max_input_tokens == 1000
    assert client.base_url == "https://api.mistral.ai/v1"


# endregion
