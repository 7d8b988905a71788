# Copyright (c) Microsoft. All rights reserved.

"""Normalizes a model provider's delta stream into cumulative responses plus AG-UI events.

Provider SDK streams are first adapted into the closed set of delta types
defined here; :func:`normalize_stream` then yields one :class:`LLMStreamItem`
per delta.
"""

import time
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass, field
from typing import Any, ClassVar

from ag_ui.core import (
    BaseEvent,
    TextMessageContentEvent,
    TextMessageEndEvent,
    TextMessageStartEvent,
    ThinkingTextMessageContentEvent,
    ThinkingTextMessageEndEvent,
    ThinkingTextMessageStartEvent,
    ToolCallArgsEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
)

from ._component_streaming import ComponentStreamTracker, try_extract_component_name
from ._logging import get_logger
from ._types import LLMResponse, LLMStreamItem, PartialToolCall
from ._utils import generate_event_id, now_ms
from .exceptions import ProviderStreamError, ToolContractViolation

logger = get_logger(__name__)


# region Stream deltas


@dataclass(frozen=True)
class StreamDelta:
    type: ClassVar[str] = "unknown"


@dataclass(frozen=True)
class TextStart(StreamDelta):
    type: ClassVar[str] = "text-start"
    id: str = ""


@dataclass(frozen=True)
class TextDelta(StreamDelta):
    type: ClassVar[str] = "text-delta"
    text: str = ""
    id: str = ""


@dataclass(frozen=True)
class TextEnd(StreamDelta):
    type: ClassVar[str] = "text-end"
    id: str = ""


@dataclass(frozen=True)
class ToolInputStart(StreamDelta):
    type: ClassVar[str] = "tool-input-start"
    id: str = ""
    tool_name: str = ""


@dataclass(frozen=True)
class ToolInputDelta(StreamDelta):
    type: ClassVar[str] = "tool-input-delta"
    delta: str = ""
    id: str = ""


@dataclass(frozen=True)
class ToolInputEnd(StreamDelta):
    type: ClassVar[str] = "tool-input-end"
    id: str = ""


@dataclass(frozen=True)
class ToolCallCommit(StreamDelta):
    """The model has finished a tool call; its arguments are complete."""

    type: ClassVar[str] = "tool-call"
    tool_call_id: str = ""
    tool_name: str = ""
    input: str = ""


@dataclass(frozen=True)
class ToolResult(StreamDelta):
    type: ClassVar[str] = "tool-result"
    tool_call_id: str = ""
    tool_name: str = ""
    output: Any = None


@dataclass(frozen=True)
class ToolError(StreamDelta):
    type: ClassVar[str] = "tool-error"
    tool_call_id: str = ""
    tool_name: str = ""
    error: Any = None


@dataclass(frozen=True)
class ReasoningStart(StreamDelta):
    type: ClassVar[str] = "reasoning-start"
    id: str = ""


@dataclass(frozen=True)
class ReasoningDelta(StreamDelta):
    type: ClassVar[str] = "reasoning-delta"
    text: str = ""
    id: str = ""


@dataclass(frozen=True)
class ReasoningEnd(StreamDelta):
    type: ClassVar[str] = "reasoning-end"
    id: str = ""


@dataclass(frozen=True)
class StreamStart(StreamDelta):
    type: ClassVar[str] = "start"


@dataclass(frozen=True)
class StreamFinish(StreamDelta):
    type: ClassVar[str] = "finish"
    finish_reason: str | None = None


@dataclass(frozen=True)
class StepStart(StreamDelta):
    type: ClassVar[str] = "start-step"


@dataclass(frozen=True)
class StepFinish(StreamDelta):
    type: ClassVar[str] = "finish-step"


@dataclass(frozen=True)
class Source(StreamDelta):
    type: ClassVar[str] = "source"
    url: str | None = None


@dataclass(frozen=True)
class File(StreamDelta):
    type: ClassVar[str] = "file"
    media_type: str | None = None
    data: Any = None


@dataclass(frozen=True)
class RawChunk(StreamDelta):
    type: ClassVar[str] = "raw"
    raw: Any = None


@dataclass(frozen=True)
class StreamError(StreamDelta):
    type: ClassVar[str] = "error"
    error: Any = None


@dataclass(frozen=True)
class StreamAbort(StreamDelta):
    type: ClassVar[str] = "abort"


ProviderDelta = (
    TextStart
    | TextDelta
    | TextEnd
    | ToolInputStart
    | ToolInputDelta
    | ToolInputEnd
    | ToolCallCommit
    | ToolResult
    | ToolError
    | ReasoningStart
    | ReasoningDelta
    | ReasoningEnd
    | StreamStart
    | StreamFinish
    | StepStart
    | StepFinish
    | Source
    | File
    | RawChunk
    | StreamError
    | StreamAbort
)

# endregion


def _raise_for_error(message: str, error: Any) -> None:
    inner = error if isinstance(error, Exception) else None
    raise ProviderStreamError(message if inner else f"{message}: {error}", inner_exception=inner, log_level=40)


@dataclass
class _ToolCallAccumulator:
    name: str | None = None
    arguments: str = ""
    id: str | None = None
    argument_deltas: list[str] = field(default_factory=list)


async def normalize_stream(deltas: AsyncIterable[ProviderDelta]) -> AsyncIterator[LLMStreamItem]:
    """Yield one cumulative response and its incremental events per provider delta.

    Raises:
        ProviderStreamError: The provider signaled an error, a tool error or an abort.
        ToolContractViolation: A tool result arrived; tools are executed by the caller.
        ComponentStreamingError: A component tool's arguments exceeded the size
            limit or did not form a JSON object.
    """
    accumulated_message = ""
    accumulated_reasoning: list[str] = []
    reasoning_started_at: float | None = None
    reasoning_ended_at: float | None = None
    tool_call = _ToolCallAccumulator()
    text_message_id: str | None = None
    component_tracker: ComponentStreamTracker | None = None

    async for delta in deltas:
        events: list[BaseEvent] = []

        match delta:
            case TextStart():
                accumulated_message = ""
                text_message_id = generate_event_id()
                events.append(TextMessageStartEvent(message_id=text_message_id, role="assistant", timestamp=now_ms()))
            case TextDelta(text=text):
                accumulated_message += text
                if text_message_id and text:
                    events.append(
                        TextMessageContentEvent(message_id=text_message_id, delta=text, timestamp=now_ms())
                    )
            case TextEnd():
                if text_message_id:
                    events.append(TextMessageEndEvent(message_id=text_message_id, timestamp=now_ms()))
            case ToolInputStart(tool_name=tool_name):
                tool_call = _ToolCallAccumulator(name=tool_name)
                component_name = try_extract_component_name(tool_name)
                component_tracker = (
                    ComponentStreamTracker(generate_event_id(), component_name) if component_name else None
                )
            case ToolInputDelta(delta=fragment):
                tool_call.arguments += fragment
                tool_call.argument_deltas.append(fragment)
                if component_tracker:
                    events.extend(component_tracker.process_delta(fragment))
            case ToolInputEnd():
                pass
            case ToolCallCommit(tool_call_id=tool_call_id):
                tool_call.id = tool_call_id
                if tool_call.name:
                    events.append(
                        ToolCallStartEvent(
                            tool_call_id=tool_call_id,
                            tool_call_name=tool_call.name,
                            parent_message_id=text_message_id,
                            timestamp=now_ms(),
                        )
                    )
                    events.extend(
                        ToolCallArgsEvent(tool_call_id=tool_call_id, delta=fragment, timestamp=now_ms())
                        for fragment in tool_call.argument_deltas
                    )
                    events.append(ToolCallEndEvent(tool_call_id=tool_call_id, timestamp=now_ms()))
                    if component_tracker:
                        events.extend(component_tracker.finalize())
                        component_tracker = None
                tool_call.argument_deltas = []
            case ToolResult(tool_name=tool_name):
                raise ToolContractViolation(
                    f"Tool result for '{tool_name}' should not be emitted during streaming", log_level=40
                )
            case ToolError(tool_name=tool_name, error=error):
                _raise_for_error(f"Tool '{tool_name}' failed during streaming", error)
            case ReasoningStart():
                accumulated_reasoning = [*accumulated_reasoning, ""]
                if reasoning_started_at is None:
                    reasoning_started_at = time.time()
                events.append(ThinkingTextMessageStartEvent(timestamp=now_ms()))
            case ReasoningDelta(text=text):
                if not accumulated_reasoning:
                    accumulated_reasoning = [""]
                accumulated_reasoning = [*accumulated_reasoning[:-1], accumulated_reasoning[-1] + text]
                if text:
                    events.append(ThinkingTextMessageContentEvent(delta=text, timestamp=now_ms()))
            case ReasoningEnd():
                reasoning_ended_at = time.time()
                events.append(ThinkingTextMessageEndEvent(timestamp=now_ms()))
            case StreamStart() | StreamFinish() | StepStart() | StepFinish() | Source() | File() | RawChunk():
                logger.debug(f"Ignoring {delta.type} delta")
            case StreamError(error=error):
                _raise_for_error("Provider stream failed", error)
            case StreamAbort():
                raise ProviderStreamError("Aborted by provider", log_level=40)
            case _:
                logger.warning(f"Unknown delta type: {getattr(delta, 'type', type(delta).__name__)}")

        response_tool_call = None
        if tool_call.id and tool_call.name and tool_call.arguments:
            response_tool_call = PartialToolCall(id=tool_call.id, name=tool_call.name, arguments=tool_call.arguments)

        reasoning_duration_ms = None
        if reasoning_started_at is not None and reasoning_ended_at is not None:
            reasoning_duration_ms = int((reasoning_ended_at - reasoning_started_at) * 1000)

        yield LLMStreamItem(
            llm_response=LLMResponse(
                content=accumulated_message,
                tool_call=response_tool_call,
                reasoning=accumulated_reasoning,
                reasoning_duration_ms=reasoning_duration_ms,
            ),
            agui_events=events,
        )
