# Copyright (c) Microsoft. All rights reserved.

"""Streaming client for externally hosted agents that speak AG-UI."""

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Mapping, Sequence
from enum import Enum
from typing import Any

import httpx
from ag_ui.core import (
    AssistantMessage,
    BaseEvent,
    Event,
    EventType,
    FunctionCall,
    Message,
    RunAgentInput,
    SystemMessage,
    Tool,
    ToolCall,
    ToolMessage,
    UserMessage,
)
from pydantic import TypeAdapter, ValidationError

from ._logging import get_logger
from ._types import (
    AgentMessage,
    AgentResponse,
    AgentResponseType,
    MessageRole,
    ThreadMessage,
    ToolCallRequest,
)
from ._utils import agui_content_to_string, content_parts_to_string, generate_event_id
from .exceptions import AgentRunError, UnsupportedAgentProviderError

logger = get_logger(__name__)

COMPLETE_MESSAGE_ID = "genui-assistant-complete"
ACTIVITY_ROLE = "activity"

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


class AgentProviderType(str, Enum):
    MASTRA = "mastra"
    CREWAI = "crewai"
    LLAMAINDEX = "llamaindex"
    PYDANTIC_AI = "pydantic-ai"


class AGUIHttpService:
    """Posts AG-UI runs and yields the server-sent events of the response."""

    def __init__(
        self,
        endpoint: str,
        *,
        headers: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        """Initialize the HTTP service.

        Args:
            endpoint: The AG-UI run endpoint URL.

        Keyword Args:
            headers: Extra headers sent with every request.
            http_client: Optional httpx.AsyncClient instance. If None, one will be created.
            timeout: Request timeout in seconds (default: 60.0)
        """
        self.endpoint = endpoint
        self.headers = dict(headers or {})
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._owns_client:
            await self._client.aclose()

    async def get_json(self, url: str) -> Any:
        """GET a JSON document with the service headers.

        Raises:
            AgentRunError: The request failed or the server returned an error status.
        """
        try:
            response = await self._client.get(url, headers=self.headers)
            response.raise_for_status()
        except httpx.HTTPError as ex:
            raise AgentRunError(f"Request to {url} failed: {ex}", inner_exception=ex) from ex
        return response.json()

    async def post_run(self, run_input: RunAgentInput) -> AsyncIterator[BaseEvent]:
        """Start a run and yield its events in arrival order.

        Lines that are not valid AG-UI events are logged and skipped.

        Raises:
            AgentRunError: The request failed or the server returned an error status.
        """
        payload = run_input.model_dump(mode="json", by_alias=True, exclude_none=True)
        try:
            async with self._client.stream(
                "POST",
                self.endpoint,
                json=payload,
                headers={**self.headers, "Accept": "text/event-stream"},
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if not data:
                        continue
                    try:
                        event = _EVENT_ADAPTER.validate_json(data)
                    except ValidationError as ex:
                        logger.warning(f"Skipping invalid AG-UI event: {ex}")
                        continue
                    yield event
        except httpx.HTTPError as ex:
            raise AgentRunError(f"Agent run request to {self.endpoint} failed: {ex}", inner_exception=ex) from ex


# region History conversion


def _tool_call_request_to_agui(tool_call_request: ToolCallRequest, tool_call_id: str) -> ToolCall:
    """Build an AG-UI tool call whose arguments are JSON with sorted keys."""
    return ToolCall(
        id=tool_call_id,
        type="function",
        function=FunctionCall(
            name=tool_call_request.tool_name,
            arguments=json.dumps(tool_call_request.to_arguments(), sort_keys=True),
        ),
    )


def thread_messages_to_agui(messages: Sequence[ThreadMessage]) -> list[Message]:
    converted: list[Message] = []
    for message in messages:
        content = content_parts_to_string(message.content)
        match message.role:
            case MessageRole.TOOL:
                converted.append(ToolMessage(id=message.id, content=content, tool_call_id=message.tool_call_id or ""))
            case MessageRole.ASSISTANT:
                if message.tool_call_request and not message.tool_call_id:
                    raise AgentRunError("Assistant message has tool_call_request but no tool_call_id")
                tool_calls = (
                    [_tool_call_request_to_agui(message.tool_call_request, message.tool_call_id or "")]
                    if message.tool_call_request
                    else None
                )
                converted.append(AssistantMessage(id=message.id, content=content, tool_calls=tool_calls))
            case MessageRole.SYSTEM:
                converted.append(SystemMessage(id=message.id, content=content))
            case MessageRole.USER:
                converted.append(UserMessage(id=message.id, content=content))
    return converted


def tools_to_agui(tools: Sequence[Mapping[str, Any]]) -> list[Tool]:
    converted: list[Tool] = []
    for tool in tools:
        if tool.get("type") != "function":
            raise AgentRunError("Only function tools are supported")
        function = tool["function"]
        converted.append(
            Tool(
                name=function["name"],
                description=function.get("description") or "",
                parameters=function.get("parameters") or {},
            )
        )
    return converted


# endregion


def _new_message(role: str, message_id: str) -> AgentMessage:
    if role == "tool":
        return AgentMessage(id=message_id, role=role, content="", tool_call_id="")
    return AgentMessage(id=message_id, role=role, content="")


def _last_message(messages: Sequence[Any]) -> Any | None:
    supported = [m for m in messages if getattr(m, "role", None) != ACTIVITY_ROLE]
    return supported[-1] if supported else None


class AgentRunState:
    """Folds AG-UI events into the message currently being assembled.

    ``handle`` returns the responses one event produces. Once a run-finished
    event has been handled, ``finished`` is set and the run is over.
    Tool calls still open at that point are left for the caller to execute.
    """

    def __init__(self) -> None:
        self.current_message: AgentMessage | None = None
        self.current_tool_calls: list[ToolCall] = []
        self.finished = False

    def _emit(self, message: AgentMessage, complete: bool = False) -> list[AgentResponse]:
        self.current_message = message
        return [AgentResponse(type=AgentResponseType.MESSAGE, message=message, complete=complete)]

    def _ensure_message(self) -> AgentMessage:
        if self.current_message is None:
            self.current_message = _new_message("assistant", generate_event_id())
        return self.current_message

    def _require_message(self) -> AgentMessage:
        if self.current_message is None:
            raise AgentRunError("No current message")
        return self.current_message

    def _find_tool_call(self, tool_call_id: str) -> ToolCall:
        for tool_call in self.current_tool_calls:
            if tool_call.id == tool_call_id:
                return tool_call
        raise AgentRunError(f"No tool call found with id {tool_call_id}")

    def _with_tool_calls(self) -> AgentMessage:
        message = self._ensure_message()
        if message.role == "assistant":
            message = message.model_copy(update={"tool_calls": list(self.current_tool_calls)})
        return message

    def handle(self, event: BaseEvent) -> list[AgentResponse]:
        match event.type:
            case EventType.MESSAGES_SNAPSHOT:
                last = _last_message(event.messages)
                if last is None:
                    return []
                return self._emit(self._snapshot_message(last))
            case EventType.RUN_STARTED | EventType.STATE_SNAPSHOT | EventType.STATE_DELTA:
                return []
            case EventType.RUN_ERROR:
                logger.error(f"Agent run reported an error: {getattr(event, 'message', '')}")
                return []
            case EventType.RUN_FINISHED:
                self.finished = True
                result = getattr(event, "result", None)
                if not result:
                    return []
                content = result if isinstance(result, str) else json.dumps(result)
                finished = _new_message("assistant", generate_event_id()).model_copy(update={"content": content})
                return self._emit(finished, complete=True)
            case EventType.TOOL_CALL_START:
                message_id = event.parent_message_id or generate_event_id()
                if self.current_message is None or self.current_message.id != message_id:
                    self.current_message = _new_message("assistant", message_id)
                if self.current_message.role != "assistant":
                    raise AgentRunError("Current message is not an assistant message")
                self.current_tool_calls = [
                    *self.current_tool_calls,
                    ToolCall(
                        id=event.tool_call_id,
                        type="function",
                        function=FunctionCall(name=event.tool_call_name, arguments=""),
                    ),
                ]
                return self._emit(self._with_tool_calls())
            case EventType.TOOL_CALL_ARGS | EventType.TOOL_CALL_CHUNK:
                tool_call = self._find_tool_call(event.tool_call_id)
                updated = tool_call.model_copy(
                    update={
                        "function": tool_call.function.model_copy(
                            update={"arguments": tool_call.function.arguments + (event.delta or "")}
                        )
                    }
                )
                self.current_tool_calls = [updated if t.id == updated.id else t for t in self.current_tool_calls]
                return self._emit(self._with_tool_calls())
            case EventType.TOOL_CALL_END:
                self._find_tool_call(event.tool_call_id)
                return self._emit(self._with_tool_calls())
            case EventType.TOOL_CALL_RESULT:
                self.current_tool_calls = [t for t in self.current_tool_calls if t.id != event.tool_call_id]
                result_message = _new_message("tool", event.message_id).model_copy(
                    update={"content": event.content, "tool_call_id": event.tool_call_id}
                )
                return self._emit(result_message)
            case EventType.TEXT_MESSAGE_START:
                return self._emit(_new_message(event.role, event.message_id))
            case EventType.TEXT_MESSAGE_CONTENT | EventType.TEXT_MESSAGE_CHUNK:
                message = self._require_message()
                content = agui_content_to_string(message.content) + (event.delta or "")
                return self._emit(message.model_copy(update={"content": content}))
            case EventType.THINKING_START:
                return self._emit(self._ensure_message().model_copy(update={"reasoning": []}))
            case EventType.THINKING_TEXT_MESSAGE_START:
                message = self._ensure_message()
                return self._emit(message.model_copy(update={"reasoning": [*(message.reasoning or []), ""]}))
            case EventType.THINKING_TEXT_MESSAGE_CONTENT:
                message = self._require_message()
                reasoning = message.reasoning or [""]
                return self._emit(
                    message.model_copy(update={"reasoning": [*reasoning[:-1], reasoning[-1] + event.delta]})
                )
            case (
                EventType.TEXT_MESSAGE_END
                | EventType.THINKING_END
                | EventType.THINKING_TEXT_MESSAGE_END
                | EventType.STEP_STARTED
                | EventType.STEP_FINISHED
                | EventType.CUSTOM
                | EventType.RAW
                | "ACTIVITY_SNAPSHOT"
                | "ACTIVITY_DELTA"
            ):
                logger.debug(f"Ignoring {event.type} event")
                return []
            case _:
                logger.warning(f"Invalid event type: {event.type}")
                return []

    @staticmethod
    def _snapshot_message(message: Any) -> AgentMessage:
        content = agui_content_to_string(getattr(message, "content", None))
        match message.role:
            case "assistant":
                return AgentMessage(id=message.id, role="assistant", content=content)
            case "tool":
                return AgentMessage(id=message.id, role="tool", content=content, tool_call_id=message.tool_call_id)
            case _:
                return AgentMessage(id=message.id, role=message.role, content=content)


_DONE = object()


class AgentClient:
    """Runs an externally hosted agent and streams its messages.

    Use :meth:`create` to build one for a provider type.
    """

    def __init__(self, chain_id: str, http_service: AGUIHttpService) -> None:
        self.chain_id = chain_id
        self._http_service = http_service

    @classmethod
    async def create(
        cls,
        *,
        agent_provider_type: AgentProviderType | str,
        agent_url: str,
        chain_id: str,
        agent_name: str | None = None,
        headers: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "AgentClient":
        """Create a client for the given agent provider.

        Keyword Args:
            agent_provider_type: Which agent framework serves the agent.
            agent_url: The agent's base URL.
            chain_id: Identifier tying related requests together.
            agent_name: The agent to run, required for Mastra.
            headers: Extra headers sent with every request.
            http_client: Optional httpx.AsyncClient instance.

        Raises:
            AgentRunError: The Mastra agent name is missing or unknown.
            UnsupportedAgentProviderError: The provider type is not supported.
        """
        try:
            provider_type = AgentProviderType(agent_provider_type)
        except ValueError as ex:
            raise UnsupportedAgentProviderError(
                f"Unsupported agent provider type: {agent_provider_type}", inner_exception=ex
            ) from ex

        match provider_type:
            case AgentProviderType.MASTRA:
                name = (agent_name or "").strip()
                if not name:
                    raise AgentRunError("Agent name is required")
                base_url = agent_url.rstrip("/")
                service = AGUIHttpService(
                    f"{base_url}/api/agents/{name}/agui", headers=headers, http_client=http_client
                )
                try:
                    agents = await service.get_json(f"{base_url}/api/agents")
                except AgentRunError:
                    await service.close()
                    raise
                if not isinstance(agents, Mapping) or name not in agents:
                    await service.close()
                    raise AgentRunError(f"Agent {name} not found")
            case AgentProviderType.CREWAI | AgentProviderType.LLAMAINDEX | AgentProviderType.PYDANTIC_AI:
                service = AGUIHttpService(agent_url, headers=headers, http_client=http_client)
        return cls(chain_id, service)

    async def close(self) -> None:
        await self._http_service.close()

    async def _read_events(self, run_input: RunAgentInput, queue: "asyncio.Queue[Any]") -> None:
        try:
            async for event in self._http_service.post_run(run_input):
                await queue.put(event)
        except Exception as ex:
            await queue.put(ex)
        else:
            await queue.put(_DONE)

    async def stream_run(
        self,
        messages: Sequence[ThreadMessage],
        tools: Sequence[Mapping[str, Any]],
    ) -> AsyncIterator[AgentResponse]:
        """Run the agent on the history and stream the assembled messages.

        Yields:
            One response per state change. The stream ends after a run-finished
            event, or with a ``COMPLETE`` item when the server closes the stream
            without one.

        Raises:
            AgentRunError: The history or tools cannot be sent, the request
                failed, or the events are inconsistent.
        """
        run_input = RunAgentInput(
            thread_id=messages[0].thread_id if messages else generate_event_id(),
            run_id=generate_event_id(),
            state={},
            messages=thread_messages_to_agui(messages),
            tools=tools_to_agui(tools),
            context=[],
            forwarded_props={},
        )
        # One in-flight event between the reader and the consumer.
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=1)
        reader = asyncio.create_task(self._read_events(run_input, queue))
        state = AgentRunState()
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    yield AgentResponse(
                        type=AgentResponseType.COMPLETE,
                        message=AgentMessage(id=COMPLETE_MESSAGE_ID, role="assistant", content=""),
                    )
                    return
                if isinstance(item, Exception):
                    raise item
                for response in state.handle(item):
                    yield response
                if state.finished:
                    return
        finally:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
