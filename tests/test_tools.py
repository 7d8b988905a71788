# Copyright (c) Microsoft. All rights reserved.

"""Tests for the tool catalog helpers (_tools.py)."""

import copy

from utils_test_genui import function_tool

from agent_framework_genui import STANDARD_TOOL_PARAMETERS, add_parameters_to_tools, filter_out_standard_tool_parameters
from agent_framework_genui._tools import get_tool_name, is_ui_tool


def test_standard_parameters_are_added_without_mutating_input(get_weather_tool):
    original = copy.deepcopy(get_weather_tool)

    [augmented] = add_parameters_to_tools([get_weather_tool])

    assert get_weather_tool == original
    properties = augmented["function"]["parameters"]["properties"]
    assert set(STANDARD_TOOL_PARAMETERS) <= set(properties)
    assert "city" in properties
    assert augmented["function"]["parameters"]["required"] == ["city"]
    assert properties["_genui_maxCalls"]["type"] == "integer"


def test_strict_tools_get_nullable_required_parameters():
    """Test strict schemas keep every property required by making the added ones nullable."""
    tool = function_tool("lookup", strict=True, query={"type": "string"})

    [augmented] = add_parameters_to_tools([tool])

    schema = augmented["function"]["parameters"]
    assert schema["required"] == ["query", *STANDARD_TOOL_PARAMETERS]
    assert schema["properties"]["_genui_statusMessage"]["type"] == ["string", "null"]
    assert schema["properties"]["query"] == {"type": "string"}


def test_tool_without_parameters_gets_a_schema():
    tool = {"type": "function", "function": {"name": "ping"}}

    [augmented] = add_parameters_to_tools([tool])

    assert augmented["function"]["parameters"]["type"] == "object"
    assert set(augmented["function"]["parameters"]["properties"]) == set(STANDARD_TOOL_PARAMETERS)


def test_filter_out_standard_parameters_keeps_source_order():
    arguments = {
        "zeta": 1,
        "_genui_displayMessage": "Here you go",
        "alpha": {"nested": True},
        "_genui_maxCalls": 2,
        "_genui_somethingNew": "reserved",
    }

    parameters = filter_out_standard_tool_parameters(arguments)

    assert [(p.parameter_name, p.parameter_value) for p in parameters] == [("zeta", 1), ("alpha", {"nested": True})]


def test_ui_tool_detection(weather_card_tool, get_weather_tool):
    assert get_tool_name(weather_card_tool) == "show_component_WeatherCard"
    assert is_ui_tool(weather_card_tool)
    assert not is_ui_tool(get_weather_tool)
