# Copyright (c) Microsoft. All rights reserved.

"""Streaming decision and component-prop synchronization engine for generative UI."""

import importlib.metadata

from ._agent_client import AgentClient, AgentProviderType, AgentRunState, AGUIHttpService
from ._agent_loop import run_agent_loop
from ._backend import AiProviderType, BackendSettings, GenUIBackend, ModelOptions, create_backend, generate_chain_id
from ._chat_client import ChatClientSettings, GenUIChatClient, limit_tokens
from ._component_streaming import (
    COMPONENT_END_EVENT,
    COMPONENT_PROPS_DELTA_EVENT,
    COMPONENT_START_EVENT,
    COMPONENT_TOOL_PREFIX,
    MAX_JSON_SIZE,
    ComponentStreamTracker,
    create_json_patch_path,
    extract_component_name,
    is_component_tool,
    try_extract_component_name,
)
from ._decision_loop import run_decision_loop
from ._llm_config import LLM_PROVIDER_CONFIG, resolve_request_parameters
from ._logging import get_logger, setup_logging
from ._provider_stream import (
    File,
    ProviderDelta,
    RawChunk,
    ReasoningDelta,
    ReasoningEnd,
    ReasoningStart,
    Source,
    StepFinish,
    StepStart,
    StreamAbort,
    StreamError,
    StreamFinish,
    StreamStart,
    TextDelta,
    TextEnd,
    TextStart,
    ToolCallCommit,
    ToolError,
    ToolInputDelta,
    ToolInputEnd,
    ToolInputStart,
    ToolResult,
    normalize_stream,
)
from ._resources import ResourceFetcher, ResourceFetcherMap, prefetch_and_cache_resources
from ._sanitization import sanitize_event
from ._settings import SecretString, load_settings
from ._template import format_object_template, format_template, get_template_variables
from ._tools import STANDARD_TOOL_PARAMETERS, add_parameters_to_tools, filter_out_standard_tool_parameters
from ._types import (
    AgentMessage,
    AgentResponse,
    AgentResponseType,
    ContentPart,
    DecisionStreamItem,
    ImageUrl,
    ImageUrlContentPart,
    LegacyComponentDecision,
    LLMResponse,
    LLMStreamItem,
    MessageRole,
    PartialToolCall,
    Resource,
    ResourceContentPart,
    TextContentPart,
    ThreadMessage,
    ToolCallRequest,
    ToolParameter,
)
from .exceptions import (
    AgentRunError,
    ComponentFinalizeError,
    ComponentSizeLimitExceeded,
    ComponentStreamingError,
    DecisionLoopError,
    GenUIException,
    InvalidComponentToolName,
    ProviderStreamError,
    ServiceInitializationError,
    TemplateFormatError,
    ToolContractViolation,
    ToolNotFoundError,
    UnsupportedAgentProviderError,
)

try:
    __version__ = importlib.metadata.version(__name__)
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "AGUIHttpService",
    "AgentClient",
    "AgentMessage",
    "AgentProviderType",
    "AgentResponse",
    "AgentResponseType",
    "AgentRunError",
    "AgentRunState",
    "AiProviderType",
    "BackendSettings",
    "COMPONENT_END_EVENT",
    "COMPONENT_PROPS_DELTA_EVENT",
    "COMPONENT_START_EVENT",
    "COMPONENT_TOOL_PREFIX",
    "ChatClientSettings",
    "ComponentFinalizeError",
    "ComponentSizeLimitExceeded",
    "ComponentStreamTracker",
    "ComponentStreamingError",
    "ContentPart",
    "DecisionLoopError",
    "DecisionStreamItem",
    "File",
    "GenUIBackend",
    "GenUIChatClient",
    "GenUIException",
    "ImageUrl",
    "ImageUrlContentPart",
    "InvalidComponentToolName",
    "LLMResponse",
    "LLMStreamItem",
    "LLM_PROVIDER_CONFIG",
    "LegacyComponentDecision",
    "MAX_JSON_SIZE",
    "MessageRole",
    "ModelOptions",
    "PartialToolCall",
    "ProviderDelta",
    "ProviderStreamError",
    "RawChunk",
    "ReasoningDelta",
    "ReasoningEnd",
    "ReasoningStart",
    "Resource",
    "ResourceContentPart",
    "ResourceFetcher",
    "ResourceFetcherMap",
    "STANDARD_TOOL_PARAMETERS",
    "SecretString",
    "ServiceInitializationError",
    "Source",
    "StepFinish",
    "StepStart",
    "StreamAbort",
    "StreamError",
    "StreamFinish",
    "StreamStart",
    "TemplateFormatError",
    "TextContentPart",
    "TextDelta",
    "TextEnd",
    "TextStart",
    "ThreadMessage",
    "ToolCallCommit",
    "ToolCallRequest",
    "ToolContractViolation",
    "ToolError",
    "ToolInputDelta",
    "ToolInputEnd",
    "ToolInputStart",
    "ToolNotFoundError",
    "ToolParameter",
    "ToolResult",
    "UnsupportedAgentProviderError",
    "__version__",
    "add_parameters_to_tools",
    "create_backend",
    "create_json_patch_path",
    "extract_component_name",
    "filter_out_standard_tool_parameters",
    "format_object_template",
    "format_template",
    "generate_chain_id",
    "get_logger",
    "get_template_variables",
    "is_component_tool",
    "limit_tokens",
    "load_settings",
    "normalize_stream",
    "prefetch_and_cache_resources",
    "resolve_request_parameters",
    "run_agent_loop",
    "run_decision_loop",
    "sanitize_event",
    "setup_logging",
    "try_extract_component_name",
]
