# Copyright (c) Microsoft. All rights reserved.

"""Tool catalog helpers: reserved control parameters and component tool detection."""

import copy
from collections.abc import Mapping, Sequence
from typing import Any

from ._component_streaming import is_component_tool
from ._types import ToolParameter

STANDARD_PARAMETER_PREFIX = "_genui_"
DISPLAY_MESSAGE_PARAMETER = "_genui_displayMessage"
STATUS_MESSAGE_PARAMETER = "_genui_statusMessage"
COMPLETION_STATUS_MESSAGE_PARAMETER = "_genui_completionStatusMessage"
MAX_CALLS_PARAMETER = "_genui_maxCalls"

STANDARD_TOOL_PARAMETERS: dict[str, dict[str, Any]] = {
    DISPLAY_MESSAGE_PARAMETER: {
        "type": "string",
        "description": "A short message to show the user in place of the tool call.",
    },
    STATUS_MESSAGE_PARAMETER: {
        "type": "string",
        "description": "A message describing what is happening while the tool runs, e.g. 'Fetching the forecast'.",
    },
    COMPLETION_STATUS_MESSAGE_PARAMETER: {
        "type": "string",
        "description": "A message describing what happened once the tool finished, e.g. 'Fetched the forecast'.",
    },
    MAX_CALLS_PARAMETER: {
        "type": "integer",
        "description": "The maximum number of times this tool may be called in a row.",
    },
}


def get_tool_name(tool: Mapping[str, Any]) -> str:
    if tool.get("type") == "function":
        return str(tool["function"]["name"])
    return str(tool.get("name", ""))


def is_ui_tool(tool: Mapping[str, Any]) -> bool:
    return is_component_tool(get_tool_name(tool))


def add_parameters_to_tools(
    tools: Sequence[Mapping[str, Any]],
    parameters: Mapping[str, dict[str, Any]] = STANDARD_TOOL_PARAMETERS,
) -> list[dict[str, Any]]:
    """Return copies of the tools with the given parameters added to their schemas.

    Strict tools get the parameters as nullable and required so the schema
    stays valid for strict structured outputs.
    """
    augmented: list[dict[str, Any]] = []
    for tool in tools:
        new_tool = copy.deepcopy(dict(tool))
        if new_tool.get("type") != "function":
            augmented.append(new_tool)
            continue
        function = new_tool["function"]
        schema = function.setdefault("parameters", {"type": "object", "properties": {}})
        properties = schema.setdefault("properties", {})
        strict = bool(function.get("strict"))
        for name, definition in parameters.items():
            definition = dict(definition)
            if strict:
                definition["type"] = [definition["type"], "null"]
                required = schema.setdefault("required", [])
                if name not in required:
                    required.append(name)
            properties[name] = definition
        augmented.append(new_tool)
    return augmented


def filter_out_standard_tool_parameters(arguments: Mapping[str, Any]) -> list[ToolParameter]:
    """Strip reserved control parameters, keeping the source order of the rest."""
    return [
        ToolParameter(parameter_name=name, parameter_value=value)
        for name, value in arguments.items()
        if not name.startswith(STANDARD_PARAMETER_PREFIX)
    ]
