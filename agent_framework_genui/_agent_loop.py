# Copyright (c) Microsoft. All rights reserved.

"""Agent loop: maps an external agent's message stream onto decision snapshots."""

import json
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

from ._agent_client import AgentClient
from ._logging import get_logger
from ._resources import ResourceFetcherMap, prefetch_and_cache_resources
from ._types import (
    AgentMessage,
    DecisionStreamItem,
    LegacyComponentDecision,
    MessageRole,
    ThreadMessage,
    ToolCallRequest,
    ToolParameter,
)
from ._utils import agui_content_to_string

logger = get_logger(__name__)

_ROLE_MAP: dict[str, MessageRole] = {
    "user": MessageRole.USER,
    "assistant": MessageRole.ASSISTANT,
    "system": MessageRole.SYSTEM,
    "tool": MessageRole.TOOL,
}


def to_message_role(role: str) -> MessageRole | None:
    return _ROLE_MAP.get(role)


def get_tool_call_id(message: AgentMessage) -> str | None:
    if message.role == "assistant":
        return message.tool_calls[0].id if message.tool_calls else None
    if message.role == "tool":
        return message.tool_call_id
    return None


def get_tool_call_request(message: AgentMessage) -> ToolCallRequest | None:
    """Strictly parse the first tool call of an assistant message.

    Returns None, with a warning, when the arguments are not a complete JSON object.
    """
    if message.role != "assistant" or not message.tool_calls:
        return None
    function = message.tool_calls[0].function
    try:
        arguments: Any = json.loads(function.arguments or "{}")
    except json.JSONDecodeError as ex:
        logger.warning(f"Error parsing tool call arguments for tool '{function.name}': {ex} {function.arguments}")
        return None
    if not isinstance(arguments, dict):
        logger.warning(f"Tool call arguments for tool '{function.name}' are not an object: {function.arguments}")
        return None
    return ToolCallRequest(
        tool_name=function.name,
        parameters=[ToolParameter(parameter_name=k, parameter_value=v) for k, v in arguments.items()],
    )


async def run_agent_loop(
    agent_client: AgentClient,
    messages: Sequence[ThreadMessage],
    strict_tools: Sequence[Mapping[str, Any]],
    resource_fetchers: ResourceFetcherMap | None = None,
) -> AsyncIterator[DecisionStreamItem]:
    """Stream an external agent run as decision snapshots.

    Component name and props are never set on this path. Messages whose role
    has no internal equivalent are dropped with a warning.
    """
    cached_messages = await prefetch_and_cache_resources(messages, resource_fetchers or {})
    async for response in agent_client.stream_run(cached_messages, strict_tools):
        message = response.message
        role = to_message_role(message.role)
        if role is None:
            logger.warning(f"Dropping AG-UI message with unsupported role '{message.role}' (id: '{message.id}')")
            continue

        decision = LegacyComponentDecision(
            id=message.id,
            role=role,
            parent_message_id=message.parent_message_id,
            message=agui_content_to_string(message.content),
            component_name=None,
            props=None,
            component_state=None,
            status_message="",
            completion_status_message="",
            tool_call_request=get_tool_call_request(message),
            tool_call_id=get_tool_call_id(message),
            reasoning=message.reasoning,
        )
        yield DecisionStreamItem(decision=decision)
