# Copyright (c) Microsoft. All rights reserved.

"""Type definitions shared by the decision and agent streaming paths."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal

from ag_ui.core import BaseEvent, ToolCall
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageRole(str, Enum):
    """Roles a thread message can have."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# region Content parts


class TextContentPart(_CamelModel):
    type: Literal["text"] = "text"
    text: str


class ImageUrl(_CamelModel):
    url: str
    detail: str | None = None


class ImageUrlContentPart(_CamelModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


class Resource(_CamelModel):
    """A resource reference, optionally with its contents inlined."""

    uri: str
    mime_type: str | None = None
    name: str | None = None
    text: str | None = None
    blob: str | None = None


class ResourceContentPart(_CamelModel):
    type: Literal["resource"] = "resource"
    resource: Resource


ContentPart = Annotated[
    TextContentPart | ImageUrlContentPart | ResourceContentPart,
    Field(discriminator="type"),
]

# endregion


class ToolParameter(_CamelModel):
    parameter_name: str
    parameter_value: Any = None


class ToolCallRequest(_CamelModel):
    """A tool invocation with its parameters in source insertion order."""

    tool_name: str
    parameters: list[ToolParameter] = Field(default_factory=list)

    def to_arguments(self) -> dict[str, Any]:
        return {p.parameter_name: p.parameter_value for p in self.parameters}


class ThreadMessage(_CamelModel):
    """One turn of a thread. Read-only input to the streaming engine."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    thread_id: str
    role: MessageRole
    content: list[ContentPart] = Field(default_factory=list)
    tool_call_id: str | None = None
    tool_call_request: ToolCallRequest | None = None
    reasoning: list[str] | None = None
    component_state: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LegacyComponentDecision(_CamelModel):
    """Running snapshot of what one turn has decided to say, do or render."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str | None = None
    role: MessageRole | None = None
    parent_message_id: str | None = None
    message: str = ""
    component_name: str | None = ""
    props: dict[str, Any] | None = None
    component_state: dict[str, Any] | None = None
    tool_call_request: ToolCallRequest | None = None
    tool_call_id: str | None = None
    status_message: str | None = None
    completion_status_message: str | None = None
    reasoning: list[str] | None = None
    reasoning_duration_ms: int | None = Field(default=None, alias="reasoningDurationMS")

    def patch(self, **fields: Any) -> "LegacyComponentDecision":
        """Return a new snapshot with only the given fields replaced.

        Values are replaced wholesale, never merged into the previous value.
        """
        unknown = set(fields) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown decision fields: {sorted(unknown)}")
        return self.model_copy(update=fields)


@dataclass(frozen=True)
class DecisionStreamItem:
    """A full decision snapshot paired with the protocol events of one delta."""

    decision: LegacyComponentDecision
    agui_events: list[BaseEvent] = field(default_factory=list)


@dataclass(frozen=True)
class PartialToolCall:
    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class LLMResponse:
    """Cumulative view of a model response at one point in the stream."""

    content: str = ""
    tool_call: PartialToolCall | None = None
    reasoning: list[str] = field(default_factory=list)
    reasoning_duration_ms: int | None = None


@dataclass(frozen=True)
class LLMStreamItem:
    llm_response: LLMResponse
    agui_events: list[BaseEvent] = field(default_factory=list)


# region Agent path


class AgentMessage(_CamelModel):
    """A message assembled from external agent events during one run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    role: str
    content: str | None = ""
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    reasoning: list[str] | None = None
    parent_message_id: str | None = None


class AgentResponseType(str, Enum):
    MESSAGE = "message"
    COMPLETE = "complete"


@dataclass(frozen=True)
class AgentResponse:
    type: AgentResponseType
    message: AgentMessage
    complete: bool = False


# endregion
