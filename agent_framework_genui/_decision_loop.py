# Copyright (c) Microsoft. All rights reserved.

"""Direct-completion decision loop.

Streams a model response and folds every chunk into a running
:class:`LegacyComponentDecision`, paired with the AG-UI events of that chunk.
"""

from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any, Protocol

from ._component_streaming import COMPONENT_TOOL_PREFIX
from ._logging import get_logger
from ._resources import ResourceFetcherMap, prefetch_and_cache_resources
from ._template import TemplateParameters
from ._tools import (
    COMPLETION_STATUS_MESSAGE_PARAMETER,
    DISPLAY_MESSAGE_PARAMETER,
    STATUS_MESSAGE_PARAMETER,
    add_parameters_to_tools,
    filter_out_standard_tool_parameters,
    get_tool_name,
    is_ui_tool,
)
from ._types import (
    DecisionStreamItem,
    LegacyComponentDecision,
    LLMResponse,
    LLMStreamItem,
    MessageRole,
    TextContentPart,
    ThreadMessage,
    ToolCallRequest,
)
from ._utils import extract_message_content, tolerant_json_parse
from .exceptions import DecisionLoopError, ToolNotFoundError

logger = get_logger(__name__)

SYSTEM_MESSAGE_ID = "synthetic-system-message-id"

DECISION_LOOP_PROMPT = """You are a helpful assistant embedded in an application that can render UI components.

Respond to the user in plain text, call a tool to take an action, or call one of the \
show_component_* tools to show the user a component. Prefer showing a component when \
one fits the request. Every tool accepts optional display and status message parameters; \
keep them short and written for the user.{custom_instructions}"""


class StreamingChatClient(Protocol):
    """The part of a chat client the decision loop depends on."""

    def get_streaming_response(
        self,
        messages: Sequence[ThreadMessage],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        tool_choice: str | Mapping[str, Any] | None = None,
        prompt_template_params: TemplateParameters | None = None,
    ) -> AsyncIterator[LLMStreamItem]: ...


def generate_decision_loop_prompt(custom_instructions: str | None) -> tuple[str, dict[str, str]]:
    """Return the system prompt template and its arguments."""
    extra = f"\n\nAdditional instructions:\n{custom_instructions}" if custom_instructions else ""
    return DECISION_LOOP_PROMPT, {"custom_instructions": extra}


def _parse_chunk(response: LLMResponse, component_tool_names: set[str]) -> dict[str, Any]:
    """Build the decision fields implied by one cumulative response."""
    tool_call = response.tool_call
    tool_args: dict[str, Any] = {}
    if tool_call:
        parsed = tolerant_json_parse(tool_call.arguments)
        if isinstance(parsed, dict):
            tool_args = parsed

    is_component = tool_call is not None and tool_call.name in component_tool_names
    display_message = extract_message_content(
        response.content.strip() if response.content else (tool_args.get(DISPLAY_MESSAGE_PARAMETER) or " "),
        log=False,
    )
    filtered = filter_out_standard_tool_parameters(tool_args)

    fields: dict[str, Any] = {
        "role": MessageRole.ASSISTANT,
        "message": display_message,
        "component_name": tool_call.name[len(COMPONENT_TOOL_PREFIX) :] if is_component else "",
        "props": {p.parameter_name: p.parameter_value for p in filtered} if is_component else None,
    }
    if tool_call:
        fields["tool_call_id"] = tool_call.id
        fields["tool_call_request"] = ToolCallRequest(tool_name=tool_call.name, parameters=filtered)
    optional = {
        "status_message": tool_args.get(STATUS_MESSAGE_PARAMETER),
        "completion_status_message": tool_args.get(COMPLETION_STATUS_MESSAGE_PARAMETER),
        "reasoning": list(response.reasoning) or None,
        "reasoning_duration_ms": response.reasoning_duration_ms,
    }
    fields.update({name: value for name, value in optional.items() if value is not None})
    return fields


async def run_decision_loop(
    client: StreamingChatClient,
    messages: Sequence[ThreadMessage],
    strict_tools: Sequence[Mapping[str, Any]],
    custom_instructions: str | None = None,
    force_tool_choice: str | None = None,
    resource_fetchers: ResourceFetcherMap | None = None,
) -> AsyncIterator[DecisionStreamItem]:
    """Run one direct-completion turn and stream the accumulated decisions.

    Args:
        client: The chat client to stream from.
        messages: The thread history, oldest first.
        strict_tools: The tool catalog in OpenAI function tool shape.
        custom_instructions: Extra instructions appended to the system prompt.
        force_tool_choice: Name of a tool the model must call.
        resource_fetchers: Resource readers keyed by server key, used to inline
            resource contents before the request is sent.

    Yields:
        The full decision snapshot after each chunk, with that chunk's events.

    Raises:
        ToolNotFoundError: ``force_tool_choice`` is not in the catalog.
        DecisionLoopError: There are no messages, or they have no thread id.
    """
    component_tool_names = {get_tool_name(tool) for tool in strict_tools if is_ui_tool(tool)}
    tools = add_parameters_to_tools(strict_tools)

    if force_tool_choice and not any(get_tool_name(tool) == force_tool_choice for tool in tools):
        raise ToolNotFoundError(f"Tool {force_tool_choice} not found in provided tools")

    if not messages:
        raise DecisionLoopError("Cannot run decision loop with no messages")
    thread_id = messages[0].thread_id
    if not thread_id:
        raise DecisionLoopError("Cannot run decision loop: messages missing thread id")

    system_prompt, system_prompt_args = generate_decision_loop_prompt(custom_instructions)
    cached_messages = await prefetch_and_cache_resources(messages, resource_fetchers or {})
    # Not persisted.
    system_message = ThreadMessage(
        id=SYSTEM_MESSAGE_ID,
        thread_id=thread_id,
        role=MessageRole.SYSTEM,
        content=[TextContentPart(text=system_prompt)],
    )

    tool_choice: str | dict[str, Any] = (
        {"type": "function", "function": {"name": force_tool_choice}} if force_tool_choice else "auto"
    )
    decision = LegacyComponentDecision()
    async for item in client.get_streaming_response(
        [system_message, *cached_messages],
        tools=tools,
        tool_choice=tool_choice,
        prompt_template_params=system_prompt_args,
    ):
        try:
            decision = decision.patch(**_parse_chunk(item.llm_response, component_tool_names))
        except Exception as ex:
            logger.error(f"Error parsing stream chunk: {ex}")
            continue
        yield DecisionStreamItem(decision=decision, agui_events=item.agui_events)
