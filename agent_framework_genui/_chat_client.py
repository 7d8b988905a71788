# Copyright (c) Microsoft. All rights reserved.

"""Direct-completion chat client over the OpenAI and Anthropic SDKs."""

import json
from collections.abc import AsyncIterable, AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypedDict

from anthropic import AnthropicError, AsyncAnthropic
from anthropic.types import RawMessageStreamEvent
from openai import AsyncOpenAI, OpenAIError
from openai.types.chat import ChatCompletionChunk

from ._llm_config import (
    DEFAULT_OPENAI_MODEL,
    DEFAULT_PROVIDER,
    LLM_PROVIDER_CONFIG,
    CustomLlmParameters,
    ResolvedParameters,
    get_model_config,
    resolve_request_parameters,
)
from ._logging import get_logger
from ._provider_stream import (
    ProviderDelta,
    RawChunk,
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
from ._settings import SecretString, load_settings
from ._template import TemplateParameters, format_template
from ._types import (
    ImageUrlContentPart,
    LLMResponse,
    LLMStreamItem,
    MessageRole,
    ResourceContentPart,
    TextContentPart,
    ThreadMessage,
)
from ._utils import generate_event_id
from .exceptions import ProviderStreamError, ServiceInitializationError, TemplateFormatError

logger = get_logger(__name__)

ANTHROPIC_DEFAULT_MAX_TOKENS = 4096
CHARS_PER_TOKEN = 4

ToolChoice = str | Mapping[str, Any]


class ChatClientSettings(TypedDict, total=False):
    """Direct-completion settings, resolved from ``GENUI_*`` environment variables."""

    api_key: SecretString | None
    model: str | None
    provider: str | None
    base_url: str | None
    max_input_tokens: int | None


# region Messages


def _resource_text(part: ResourceContentPart) -> str:
    if part.resource.text is not None:
        return part.resource.text
    return f"[resource: {part.resource.uri}]"


def _message_text(message: ThreadMessage) -> str:
    texts: list[str] = []
    for part in message.content:
        if isinstance(part, TextContentPart):
            texts.append(part.text)
        elif isinstance(part, ResourceContentPart):
            texts.append(_resource_text(part))
    return "\n".join(texts)


def estimate_tokens(message: ThreadMessage) -> int:
    size = len(_message_text(message))
    if message.tool_call_request:
        size += len(json.dumps(message.tool_call_request.to_arguments()))
    return size // CHARS_PER_TOKEN + 1


def limit_tokens(messages: Sequence[ThreadMessage], token_limit: int | None) -> list[ThreadMessage]:
    """Drop the oldest non-system messages until the history fits the token budget.

    System messages and the newest message are always kept.
    """
    kept = list(messages)
    if not token_limit or not kept:
        return kept
    total = sum(estimate_tokens(m) for m in kept)
    index = 0
    while total > token_limit and index < len(kept) - 1:
        if kept[index].role == MessageRole.SYSTEM:
            index += 1
            continue
        total -= estimate_tokens(kept.pop(index))
    if total > token_limit:
        logger.warning(f"Message history still exceeds the input token limit of {token_limit} after trimming")
    return kept


def try_format_template(messages: Sequence[ThreadMessage], parameters: TemplateParameters) -> list[ThreadMessage]:
    """Format ``{var}`` templates in system prompts.

    A system message referencing a missing variable is kept unformatted.
    """
    formatted: list[ThreadMessage] = []
    for message in messages:
        if message.role != MessageRole.SYSTEM:
            formatted.append(message)
            continue
        try:
            content = [
                part.model_copy(update={"text": format_template(part.text, parameters)})
                if isinstance(part, TextContentPart)
                else part
                for part in message.content
            ]
        except TemplateFormatError:
            formatted.append(message)
            continue
        formatted.append(message.model_copy(update={"content": content}))
    return formatted


def _tool_call_arguments(message: ThreadMessage) -> str:
    return json.dumps(message.tool_call_request.to_arguments()) if message.tool_call_request else "{}"


def to_openai_messages(messages: Sequence[ThreadMessage]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for message in messages:
        match message.role:
            case MessageRole.SYSTEM:
                converted.append({"role": "system", "content": _message_text(message)})
            case MessageRole.USER:
                parts: list[dict[str, Any]] = []
                for part in message.content:
                    if isinstance(part, ImageUrlContentPart):
                        parts.append({"type": "image_url", "image_url": part.image_url.model_dump(exclude_none=True)})
                    elif isinstance(part, ResourceContentPart):
                        parts.append({"type": "text", "text": _resource_text(part)})
                    else:
                        parts.append({"type": "text", "text": part.text})
                converted.append({"role": "user", "content": parts})
            case MessageRole.ASSISTANT:
                assistant: dict[str, Any] = {"role": "assistant", "content": _message_text(message) or None}
                if message.tool_call_request and message.tool_call_id:
                    assistant["tool_calls"] = [
                        {
                            "id": message.tool_call_id,
                            "type": "function",
                            "function": {
                                "name": message.tool_call_request.tool_name,
                                "arguments": _tool_call_arguments(message),
                            },
                        }
                    ]
                converted.append(assistant)
            case MessageRole.TOOL:
                converted.append({
                    "role": "tool",
                    "tool_call_id": message.tool_call_id or "",
                    "content": _message_text(message),
                })
    return converted


def to_anthropic_messages(messages: Sequence[ThreadMessage]) -> tuple[str | None, list[dict[str, Any]]]:
    """Split out the system prompt and convert the rest into Anthropic content blocks."""
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []
    for message in messages:
        match message.role:
            case MessageRole.SYSTEM:
                system_parts.append(_message_text(message))
            case MessageRole.USER:
                blocks: list[dict[str, Any]] = []
                for part in message.content:
                    if isinstance(part, ImageUrlContentPart):
                        blocks.append({"type": "image", "source": {"type": "url", "url": part.image_url.url}})
                    elif isinstance(part, ResourceContentPart):
                        blocks.append({"type": "text", "text": _resource_text(part)})
                    else:
                        blocks.append({"type": "text", "text": part.text})
                converted.append({"role": "user", "content": blocks})
            case MessageRole.ASSISTANT:
                blocks = []
                if text := _message_text(message):
                    blocks.append({"type": "text", "text": text})
                if message.tool_call_request and message.tool_call_id:
                    blocks.append({
                        "type": "tool_use",
                        "id": message.tool_call_id,
                        "name": message.tool_call_request.tool_name,
                        "input": message.tool_call_request.to_arguments(),
                    })
                converted.append({"role": "assistant", "content": blocks})
            case MessageRole.TOOL:
                converted.append({
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": message.tool_call_id or "",
                            "content": _message_text(message),
                        }
                    ],
                })
    return ("\n\n".join(system_parts) or None), converted


# endregion

# region Delta sources

# Tools without parameters stream no argument text.
EMPTY_TOOL_INPUT = "{}"


@dataclass
class _OpenToolCall:
    index: int
    id: str
    name: str
    arguments: str = ""


async def openai_chunks_to_deltas(chunks: AsyncIterable[ChatCompletionChunk]) -> AsyncIterator[ProviderDelta]:
    """Adapt a chat completions stream into provider deltas.

    ``reasoning_content`` (or ``reasoning``) on a delta, as sent by several
    openai-compatible providers, is surfaced as reasoning.
    """
    text_id: str | None = None
    reasoning_id: str | None = None
    tool: _OpenToolCall | None = None
    finish_reason: str | None = None

    def _close_reasoning() -> list[ProviderDelta]:
        nonlocal reasoning_id
        if reasoning_id is None:
            return []
        closed: list[ProviderDelta] = [ReasoningEnd(id=reasoning_id)]
        reasoning_id = None
        return closed

    def _close_text() -> list[ProviderDelta]:
        nonlocal text_id
        if text_id is None:
            return []
        closed: list[ProviderDelta] = [TextEnd(id=text_id)]
        text_id = None
        return closed

    def _close_tool() -> list[ProviderDelta]:
        nonlocal tool
        if tool is None:
            return []
        closed: list[ProviderDelta] = []
        if not tool.arguments:
            tool.arguments = EMPTY_TOOL_INPUT
            closed.append(ToolInputDelta(delta=tool.arguments, id=tool.id))
        closed += [
            ToolInputEnd(id=tool.id),
            ToolCallCommit(tool_call_id=tool.id, tool_name=tool.name, input=tool.arguments),
        ]
        tool = None
        return closed

    yield StreamStart()
    try:
        async for chunk in chunks:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta

            reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
            if isinstance(reasoning, str) and reasoning:
                if reasoning_id is None:
                    reasoning_id = generate_event_id()
                    yield ReasoningStart(id=reasoning_id)
                yield ReasoningDelta(text=reasoning, id=reasoning_id)

            if delta.content:
                for closed in _close_reasoning():
                    yield closed
                if text_id is None:
                    text_id = generate_event_id()
                    yield TextStart(id=text_id)
                yield TextDelta(text=delta.content, id=text_id)

            for tool_call_delta in delta.tool_calls or []:
                for closed in [*_close_reasoning(), *_close_text()]:
                    yield closed
                if tool is None or tool_call_delta.index != tool.index:
                    for closed in _close_tool():
                        yield closed
                    function = tool_call_delta.function
                    tool = _OpenToolCall(
                        index=tool_call_delta.index,
                        id=tool_call_delta.id or generate_event_id(),
                        name=(function.name if function else None) or "",
                    )
                    yield ToolInputStart(id=tool.id, tool_name=tool.name)
                arguments = tool_call_delta.function.arguments if tool_call_delta.function else None
                if arguments:
                    tool.arguments += arguments
                    yield ToolInputDelta(delta=arguments, id=tool.id)

            if choice.finish_reason:
                finish_reason = choice.finish_reason
    except OpenAIError as ex:
        raise ProviderStreamError(f"OpenAI stream failed: {ex}", inner_exception=ex) from ex

    for closed in [*_close_reasoning(), *_close_text(), *_close_tool()]:
        yield closed
    yield StreamFinish(finish_reason=finish_reason)


@dataclass
class _AnthropicBlock:
    kind: str
    id: str
    name: str = ""
    arguments: str = ""


async def anthropic_events_to_deltas(events: AsyncIterable[RawMessageStreamEvent]) -> AsyncIterator[ProviderDelta]:
    """Adapt an Anthropic messages stream into provider deltas."""
    blocks: dict[int, _AnthropicBlock] = {}
    finish_reason: str | None = None
    try:
        async for event in events:
            match event.type:
                case "message_start":
                    yield StreamStart()
                case "content_block_start":
                    content_block = event.content_block
                    match content_block.type:
                        case "text":
                            block = blocks[event.index] = _AnthropicBlock("text", generate_event_id())
                            yield TextStart(id=block.id)
                            if content_block.text:
                                yield TextDelta(text=content_block.text, id=block.id)
                        case "tool_use":
                            block = blocks[event.index] = _AnthropicBlock(
                                "tool", content_block.id, name=content_block.name
                            )
                            yield ToolInputStart(id=block.id, tool_name=block.name)
                        case "thinking":
                            block = blocks[event.index] = _AnthropicBlock("reasoning", generate_event_id())
                            yield ReasoningStart(id=block.id)
                            if content_block.thinking:
                                yield ReasoningDelta(text=content_block.thinking, id=block.id)
                        case _:
                            yield RawChunk(raw=event)
                case "content_block_delta":
                    block = blocks.get(event.index)
                    block_id = block.id if block else ""
                    match event.delta.type:
                        case "text_delta":
                            yield TextDelta(text=event.delta.text, id=block_id)
                        case "input_json_delta":
                            if not event.delta.partial_json:
                                continue
                            if block:
                                block.arguments += event.delta.partial_json
                            yield ToolInputDelta(delta=event.delta.partial_json, id=block_id)
                        case "thinking_delta":
                            yield ReasoningDelta(text=event.delta.thinking, id=block_id)
                        case _:
                            yield RawChunk(raw=event)
                case "content_block_stop":
                    block = blocks.pop(event.index, None)
                    if block is None:
                        continue
                    match block.kind:
                        case "text":
                            yield TextEnd(id=block.id)
                        case "tool":
                            if not block.arguments:
                                block.arguments = EMPTY_TOOL_INPUT
                                yield ToolInputDelta(delta=block.arguments, id=block.id)
                            yield ToolInputEnd(id=block.id)
                            yield ToolCallCommit(tool_call_id=block.id, tool_name=block.name, input=block.arguments)
                        case "reasoning":
                            yield ReasoningEnd(id=block.id)
                case "message_delta":
                    finish_reason = event.delta.stop_reason
                case "message_stop":
                    yield StreamFinish(finish_reason=finish_reason)
                case _:
                    yield RawChunk(raw=event)
    except AnthropicError as ex:
        raise ProviderStreamError(f"Anthropic stream failed: {ex}", inner_exception=ex) from ex


# endregion

_OPENAI_TOP_LEVEL = {
    "temperature": "temperature",
    "topP": "top_p",
    "presencePenalty": "presence_penalty",
    "frequencyPenalty": "frequency_penalty",
    "seed": "seed",
    "stopSequences": "stop",
}
_ANTHROPIC_TOP_LEVEL = {
    "temperature": "temperature",
    "topP": "top_p",
    "topK": "top_k",
    "maxOutputTokens": "max_tokens",
    "stopSequences": "stop_sequences",
}


class GenUIChatClient:
    """Streams model completions as cumulative responses plus AG-UI events.

    Providers other than ``anthropic`` are reached through the OpenAI SDK,
    using the provider's OpenAI-compatible endpoint.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        provider: str | None = None,
        base_url: str | None = None,
        max_input_tokens: int | None = None,
        custom_llm_parameters: CustomLlmParameters | None = None,
        chain_id: str | None = None,
        client: AsyncOpenAI | AsyncAnthropic | None = None,
        env_file_path: str | None = None,
        env_file_encoding: str | None = None,
    ) -> None:
        """Initialize the chat client.

        Keyword Args:
            api_key: The provider API key. Not used when ``client`` is given.
            model: The model name. Defaults to ``gpt-5.1-chat-latest``.
            provider: The provider name. Defaults to ``openai``.
            base_url: Endpoint for ``openai-compatible`` providers, or an override
                for the other OpenAI-compatible endpoints.
            max_input_tokens: Overrides the model's input token limit.
            custom_llm_parameters: Per provider and model request parameters.
            chain_id: Identifier tying related requests together.
            client: A preconfigured ``AsyncOpenAI`` or ``AsyncAnthropic`` client.
            env_file_path: Path to a ``.env`` file to read settings from.
            env_file_encoding: Encoding of the ``.env`` file.
        """
        settings = load_settings(
            ChatClientSettings,
            env_prefix="GENUI_",
            env_file_path=env_file_path,
            env_file_encoding=env_file_encoding,
            api_key=api_key,
            model=model,
            provider=provider,
            base_url=base_url,
            max_input_tokens=max_input_tokens,
        )
        self.model: str = settings.get("model") or DEFAULT_OPENAI_MODEL
        self.provider: str = settings.get("provider") or DEFAULT_PROVIDER
        self.max_input_tokens = settings.get("max_input_tokens")
        self.custom_llm_parameters = custom_llm_parameters
        self.chain_id = chain_id or generate_event_id()
        provider_config = LLM_PROVIDER_CONFIG.get(self.provider)
        if provider_config is None:
            raise ServiceInitializationError(f"Unsupported provider: {self.provider}")
        if self.provider == "cerebras":
            self.base_url = provider_config.base_url
        else:
            self.base_url = settings.get("base_url") or provider_config.base_url
        if provider_config.requires_base_url and not self.base_url:
            raise ServiceInitializationError(f"Provider '{self.provider}' requires a base URL")
        self._client = client or self._create_client(settings.get("api_key"))

    def _create_client(self, api_key: SecretString | None) -> AsyncOpenAI | AsyncAnthropic:
        secret = api_key.get_secret_value() if api_key else None
        try:
            if self.provider == "anthropic":
                return AsyncAnthropic(api_key=secret)
            return AsyncOpenAI(api_key=secret, base_url=self.base_url)
        except (OpenAIError, AnthropicError) as ex:
            raise ServiceInitializationError(f"Failed to create the {self.provider} client: {ex}", ex) from ex

    async def get_streaming_response(
        self,
        messages: Sequence[ThreadMessage],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        tool_choice: ToolChoice | None = None,
        prompt_template_params: TemplateParameters | None = None,
    ) -> AsyncIterator[LLMStreamItem]:
        """Stream the completion for the messages.

        Yields:
            One cumulative response with its incremental AG-UI events per provider delta.
        """
        messages = try_format_template(messages, prompt_template_params or {})
        model_config = get_model_config(self.provider, self.model)
        token_limit = self.max_input_tokens or (model_config.input_token_limit if model_config else None)
        messages = limit_tokens(messages, token_limit)
        parameters = resolve_request_parameters(self.provider, self.model, self.custom_llm_parameters)

        if isinstance(self._client, AsyncAnthropic):
            deltas = self._stream_anthropic(messages, tools, tool_choice, parameters)
        else:
            deltas = self._stream_openai(messages, tools, tool_choice, parameters)
        async for item in normalize_stream(deltas):
            yield item

    async def get_response(
        self,
        messages: Sequence[ThreadMessage],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        tool_choice: ToolChoice | None = None,
        prompt_template_params: TemplateParameters | None = None,
    ) -> LLMResponse:
        """Run the completion to the end and return the final response."""
        response = LLMResponse()
        async for item in self.get_streaming_response(
            messages, tools=tools, tool_choice=tool_choice, prompt_template_params=prompt_template_params
        ):
            response = item.llm_response
        return response

    def _prepare_openai_options(
        self,
        tools: Sequence[Mapping[str, Any]] | None,
        tool_choice: ToolChoice | None,
        parameters: ResolvedParameters,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {}
        extra_body: dict[str, Any] = {}
        for key, value in parameters["top_level"].items():
            if key == "maxOutputTokens":
                options["max_completion_tokens" if self.provider == "openai" else "max_tokens"] = value
            elif key in _OPENAI_TOP_LEVEL:
                options[_OPENAI_TOP_LEVEL[key]] = value
            else:
                extra_body[key] = value

        model_config = get_model_config(self.provider, self.model)
        supports_reasoning = bool(model_config and "reasoningEffort" in model_config.model_specific_params)
        for key, value in parameters["provider_options"].items():
            match key:
                case "parallelToolCalls":
                    if tools:
                        options["parallel_tool_calls"] = value
                case "reasoningEffort":
                    if supports_reasoning or parameters["provider_key"] == "openai-compatible":
                        options["reasoning_effort"] = value
                case "reasoningSummary" | "strictJsonSchema":
                    logger.debug(f"Provider option '{key}' does not apply to chat completions")
                case _:
                    extra_body[key] = value

        if tools:
            options["tools"] = [dict(tool) for tool in tools]
            if tool_choice is not None:
                options["tool_choice"] = tool_choice if isinstance(tool_choice, str) else dict(tool_choice)
        if extra_body:
            options["extra_body"] = extra_body
        return options

    async def _stream_openai(
        self,
        messages: Sequence[ThreadMessage],
        tools: Sequence[Mapping[str, Any]] | None,
        tool_choice: ToolChoice | None,
        parameters: ResolvedParameters,
    ) -> AsyncIterator[ProviderDelta]:
        client: AsyncOpenAI = self._client  # type: ignore[assignment]
        options = self._prepare_openai_options(tools, tool_choice, parameters)
        try:
            stream = await client.chat.completions.create(
                model=self.model, messages=to_openai_messages(messages), stream=True, **options
            )
        except OpenAIError as ex:
            raise ProviderStreamError(
                f"{type(self).__name__} failed to complete the prompt: {ex}", inner_exception=ex
            ) from ex
        async for delta in openai_chunks_to_deltas(stream):
            yield delta

    def _prepare_anthropic_options(
        self,
        tools: Sequence[Mapping[str, Any]] | None,
        tool_choice: ToolChoice | None,
        parameters: ResolvedParameters,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {"max_tokens": ANTHROPIC_DEFAULT_MAX_TOKENS}
        for key, value in parameters["top_level"].items():
            if key in _ANTHROPIC_TOP_LEVEL:
                options[_ANTHROPIC_TOP_LEVEL[key]] = value
            else:
                logger.debug(f"Parameter '{key}' is not supported by Anthropic")

        if not tools:
            return options
        options["tools"] = [
            {
                "name": tool["function"]["name"],
                "description": tool["function"].get("description", ""),
                "input_schema": tool["function"].get("parameters") or {"type": "object", "properties": {}},
            }
            for tool in tools
            if tool.get("type") == "function"
        ]
        choice: dict[str, Any]
        match tool_choice:
            case None | "auto":
                choice = {"type": "auto"}
            case "required":
                choice = {"type": "any"}
            case "none":
                choice = {"type": "none"}
            case {"type": "function", "function": {"name": name}}:
                choice = {"type": "tool", "name": name}
            case _:
                logger.warning(f"Unsupported tool choice {tool_choice!r}, falling back to auto")
                choice = {"type": "auto"}
        if parameters["provider_options"].get("disableParallelToolUse") and choice["type"] != "none":
            choice["disable_parallel_tool_use"] = True
        options["tool_choice"] = choice
        return options

    async def _stream_anthropic(
        self,
        messages: Sequence[ThreadMessage],
        tools: Sequence[Mapping[str, Any]] | None,
        tool_choice: ToolChoice | None,
        parameters: ResolvedParameters,
    ) -> AsyncIterator[ProviderDelta]:
        client: AsyncAnthropic = self._client  # type: ignore[assignment]
        system, anthropic_messages = to_anthropic_messages(messages)
        options = self._prepare_anthropic_options(tools, tool_choice, parameters)
        if system:
            options["system"] = system
        try:
            stream = await client.messages.create(
                model=self.model, messages=anthropic_messages, stream=True, **options
            )
        except AnthropicError as ex:
            raise ProviderStreamError(
                f"{type(self).__name__} failed to complete the prompt: {ex}", inner_exception=ex
            ) from ex
        async for delta in anthropic_events_to_deltas(stream):
            yield delta
