# Copyright (c) Microsoft. All rights reserved.

"""Backend facade choosing between the direct-completion and agent paths."""

import hashlib
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypedDict

import httpx

from ._agent_client import AgentClient, AgentProviderType
from ._agent_loop import run_agent_loop
from ._chat_client import GenUIChatClient
from ._decision_loop import run_decision_loop
from ._llm_config import DEFAULT_OPENAI_MODEL, DEFAULT_PROVIDER, CustomLlmParameters
from ._logging import get_logger
from ._resources import ResourceFetcherMap
from ._settings import load_settings
from ._types import DecisionStreamItem, ThreadMessage
from .exceptions import ServiceInitializationError

logger = get_logger(__name__)


class AiProviderType(str, Enum):
    LLM = "llm"
    AGENT = "agent"


class BackendSettings(TypedDict, total=False):
    """Backend settings, resolved from ``GENUI_*`` environment variables.

    Keys:
        model: The model name. Env var ``GENUI_MODEL``.
        provider: The model provider. Env var ``GENUI_PROVIDER``.
        base_url: Endpoint for openai-compatible providers. Env var ``GENUI_BASE_URL``.
        max_input_tokens: Input token budget. Env var ``GENUI_MAX_INPUT_TOKENS``.
        ai_provider_type: ``llm`` or ``agent``. Env var ``GENUI_AI_PROVIDER_TYPE``.
        agent_provider_type: The agent framework. Env var ``GENUI_AGENT_PROVIDER_TYPE``.
        agent_url: The agent's base URL. Env var ``GENUI_AGENT_URL``.
        agent_name: The agent to run (Mastra). Env var ``GENUI_AGENT_NAME``.
    """

    model: str | None
    provider: str | None
    base_url: str | None
    max_input_tokens: int | None
    ai_provider_type: str | None
    agent_provider_type: str | None
    agent_url: str | None
    agent_name: str | None


@dataclass(frozen=True)
class ModelOptions:
    """The effective model options, with defaults filled in."""

    model: str
    provider: str
    base_url: str | None = None
    max_input_tokens: int | None = None


class GenUIBackend:
    """Runs decision loops against either a model provider or an external agent."""

    def __init__(
        self,
        model_options: ModelOptions,
        chat_client: GenUIChatClient | None,
        agent_client: AgentClient | None = None,
    ) -> None:
        self.model_options = model_options
        self.chat_client = chat_client
        self.agent_client = agent_client

    def run_decision_loop(
        self,
        messages: Sequence[ThreadMessage],
        strict_tools: Sequence[Mapping[str, Any]],
        *,
        custom_instructions: str | None = None,
        force_tool_choice: str | None = None,
        resource_fetchers: ResourceFetcherMap | None = None,
    ) -> AsyncIterator[DecisionStreamItem]:
        """Stream one turn through the agent when configured, else through the model.

        ``custom_instructions`` and ``force_tool_choice`` only apply to the model path.
        """
        if self.agent_client:
            return run_agent_loop(self.agent_client, messages, strict_tools, resource_fetchers)
        if self.chat_client is None:
            raise ServiceInitializationError("Backend has neither a chat client nor an agent client")
        return run_decision_loop(
            self.chat_client,
            messages,
            strict_tools,
            custom_instructions,
            force_tool_choice,
            resource_fetchers,
        )

    async def close(self) -> None:
        if self.agent_client:
            await self.agent_client.close()


async def create_backend(
    *,
    chain_id: str,
    api_key: str | None = None,
    ai_provider_type: AiProviderType | str | None = None,
    model: str | None = None,
    provider: str | None = None,
    base_url: str | None = None,
    max_input_tokens: int | None = None,
    agent_provider_type: AgentProviderType | str | None = None,
    agent_url: str | None = None,
    agent_name: str | None = None,
    custom_llm_parameters: CustomLlmParameters | None = None,
    headers: Mapping[str, str] | None = None,
    http_client: httpx.AsyncClient | None = None,
    env_file_path: str | None = None,
    env_file_encoding: str | None = None,
) -> GenUIBackend:
    """Create a backend for the model path or the agent path.

    Keyword Args:
        chain_id: Identifier tying related requests together, see :func:`generate_chain_id`.
        api_key: The model provider API key.
        ai_provider_type: ``llm`` (default) or ``agent``.
        model: The model name.
        provider: The model provider.
        base_url: Endpoint for openai-compatible providers.
        max_input_tokens: Overrides the model's input token limit.
        agent_provider_type: The agent framework, required for ``agent``.
        agent_url: The agent's base URL, required for ``agent``.
        agent_name: The agent to run, required for Mastra.
        custom_llm_parameters: Per provider and model request parameters.
        headers: Extra headers sent to the agent.
        http_client: Optional httpx.AsyncClient used for agent requests.
        env_file_path: Path to a ``.env`` file to read settings from.
        env_file_encoding: Encoding of the ``.env`` file.

    Raises:
        ServiceInitializationError: The provider type is unknown, or agent mode
            is missing its agent type or URL.
    """
    settings = load_settings(
        BackendSettings,
        env_prefix="GENUI_",
        env_file_path=env_file_path,
        env_file_encoding=env_file_encoding,
        model=model,
        provider=provider,
        base_url=base_url,
        max_input_tokens=max_input_tokens,
        ai_provider_type=ai_provider_type.value if isinstance(ai_provider_type, Enum) else ai_provider_type,
        agent_provider_type=(
            agent_provider_type.value if isinstance(agent_provider_type, Enum) else agent_provider_type
        ),
        agent_url=agent_url,
        agent_name=agent_name,
    )
    model_options = ModelOptions(
        model=settings.get("model") or DEFAULT_OPENAI_MODEL,
        provider=settings.get("provider") or DEFAULT_PROVIDER,
        base_url=settings.get("base_url"),
        max_input_tokens=settings.get("max_input_tokens"),
    )

    try:
        provider_type = AiProviderType(settings.get("ai_provider_type") or AiProviderType.LLM)
    except ValueError as ex:
        raise ServiceInitializationError(
            f"Unsupported AI provider type: {settings.get('ai_provider_type')}", inner_exception=ex
        ) from ex

    match provider_type:
        case AiProviderType.LLM:
            chat_client = GenUIChatClient(
                api_key=api_key,
                model=model_options.model,
                provider=model_options.provider,
                base_url=model_options.base_url,
                max_input_tokens=model_options.max_input_tokens,
                custom_llm_parameters=custom_llm_parameters,
                chain_id=chain_id,
                env_file_path=env_file_path,
                env_file_encoding=env_file_encoding,
            )
            return GenUIBackend(model_options, chat_client)
        case AiProviderType.AGENT:
            agent_type = settings.get("agent_provider_type")
            normalized_url = (settings.get("agent_url") or "").strip()
            if not agent_type or not normalized_url:
                raise ServiceInitializationError(
                    f"Agent type and URL are required, got agent type {agent_type!r} and URL {normalized_url!r}",
                    log_level=40,
                )
            agent_client = await AgentClient.create(
                agent_provider_type=agent_type,
                agent_url=normalized_url,
                agent_name=settings.get("agent_name"),
                chain_id=chain_id,
                headers=headers,
                http_client=http_client,
            )
            return GenUIBackend(model_options, None, agent_client)


def generate_chain_id(value: str) -> str:
    """Derive a stable UUID-shaped chain id from a string.

    The same value always yields the same id. The SHA-256 digest is laid out
    as a version 4 UUID with the RFC 4122 variant bits.
    """
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    versioned = digest[:12] + "4" + digest[13:32]
    variant = format((int(digest[16], 16) & 0x3) | 0x8, "x")
    hex_id = versioned[:16] + variant + versioned[17:]
    return "-".join((hex_id[:8], hex_id[8:12], hex_id[12:16], hex_id[16:20], hex_id[20:32]))
