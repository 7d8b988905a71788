# Copyright (c) Microsoft. All rights reserved.

import logging
from typing import Any, Literal

logger = logging.getLogger("agent_framework_genui")


class GenUIException(Exception):
    """Base exception for the generative UI streaming engine.

    Automatically logs the message as debug.
    """

    def __init__(
        self,
        message: str,
        inner_exception: Exception | None = None,
        log_level: Literal[0] | Literal[10] | Literal[20] | Literal[30] | Literal[40] | Literal[50] | None = 10,
        *args: Any,
        **kwargs: Any,
    ):
        """Create a GenUIException.

        This emits a debug log (by default), with the inner_exception if provided.
        """
        if log_level is not None:
            logger.log(log_level, message, exc_info=inner_exception)
        self.inner_exception = inner_exception
        super().__init__(message, *args)  # type: ignore


# region Component streaming


class ComponentStreamingError(GenUIException):
    """An error occurred while streaming component props."""

    pass


class ComponentSizeLimitExceeded(ComponentStreamingError):
    """The accumulated component JSON grew past the size ceiling."""

    pass


class ComponentFinalizeError(ComponentStreamingError):
    """The final component JSON could not be strictly parsed."""

    pass


class InvalidComponentToolName(ComponentStreamingError):
    """A tool name does not name a UI-producing component tool."""

    pass


# endregion

# region Streaming


class ProviderStreamError(GenUIException):
    """The model provider signaled an error or abort mid-stream."""

    pass


class ToolContractViolation(GenUIException):
    """A tool was executed inside the stream instead of by the caller."""

    pass


class ToolNotFoundError(GenUIException):
    """A forced tool choice does not exist in the tool catalog."""

    pass


class DecisionLoopError(GenUIException):
    """The decision loop could not be started."""

    pass


class TemplateFormatError(GenUIException):
    """A prompt template references a variable that was not provided."""

    pass


# endregion

# region Agents


class AgentRunError(GenUIException):
    """An error occurred while running an external agent."""

    pass


class UnsupportedAgentProviderError(AgentRunError):
    """The agent provider type is not supported."""

    pass


# endregion

# region Service


class ServiceInitializationError(GenUIException):
    """An error occurred while initializing a client or backend."""

    pass


# endregion
