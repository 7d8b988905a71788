# Copyright (c) Microsoft. All rights reserved.

"""Incremental JSON-to-patch tracking for UI component tool calls.

Props deltas carry RFC 6902 JSON Patch operations whose paths are RFC 6901
JSON Pointers built from raw top-level prop keys. Consumers apply the patches
in order to one props tree per component.

The tolerant parser returns a fresh object tree on every call, so the
previous parse is kept by reference and never cloned.
"""

import json
from typing import Any, Literal

from ag_ui.core import BaseEvent, CustomEvent
from jsonpointer import JsonPointer

from ._utils import now_ms, tolerant_json_parse
from .exceptions import ComponentFinalizeError, ComponentSizeLimitExceeded, InvalidComponentToolName

MAX_JSON_SIZE = 10 * 1024 * 1024
COMPONENT_TOOL_PREFIX = "show_component_"

COMPONENT_START_EVENT = "genui.component.start"
COMPONENT_PROPS_DELTA_EVENT = "genui.component.props_delta"
COMPONENT_END_EVENT = "genui.component.end"

PropStreamingStatus = Literal["started", "streaming", "done"]


def create_json_patch_path(key: str) -> str:
    """Build a single-segment JSON Pointer for a raw top-level prop key.

    ``~`` becomes ``~0`` and ``/`` becomes ``~1``; the empty key yields ``/``.
    """
    return JsonPointer.from_parts([key]).path


def is_component_tool(tool_name: str) -> bool:
    """A component tool has the component prefix and a non-empty name after it."""
    return tool_name.startswith(COMPONENT_TOOL_PREFIX) and len(tool_name) > len(COMPONENT_TOOL_PREFIX)


def try_extract_component_name(tool_name: str) -> str | None:
    if not is_component_tool(tool_name):
        return None
    return tool_name[len(COMPONENT_TOOL_PREFIX) :]


def extract_component_name(tool_name: str) -> str:
    """Extract the component name, raising when the tool is not a component tool."""
    component_name = try_extract_component_name(tool_name)
    if not component_name:
        raise InvalidComponentToolName(f"Invalid component tool name: {tool_name}")
    return component_name


def _json_equal(left: Any, right: Any) -> bool:
    """Structural equality that does not treat ``True`` and ``1`` as equal."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(_json_equal(v, right[k]) for k, v in left.items())
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(_json_equal(a, b) for a, b in zip(left, right))
    return left == right


class ComponentStreamTracker:
    """Turns one tool call's streaming JSON arguments into prop patches.

    A property starts as ``started`` when first seen, becomes ``streaming``
    when its value changes, and is ``done`` once a later property appears
    or the component is finalized.
    """

    def __init__(self, component_id: str, component_name: str) -> None:
        self.component_id = component_id
        self.component_name = component_name
        self._accumulated_json = ""
        self._accumulated_size = 0
        self._previous_props: dict[str, Any] = {}
        self._previous_keys: list[str] = []
        self._seen_keys: set[str] = set()
        self.streaming_status: dict[str, PropStreamingStatus] = {}
        self._started = False

    def process_delta(self, fragment: str) -> list[BaseEvent]:
        """Append a raw JSON fragment and return the events it implies.

        Raises:
            ComponentSizeLimitExceeded: The fragment would push the accumulated
                JSON past ``MAX_JSON_SIZE`` bytes. Nothing is appended.
        """
        fragment_size = len(fragment.encode("utf-8"))
        if self._accumulated_size + fragment_size > MAX_JSON_SIZE:
            raise ComponentSizeLimitExceeded(
                f"Component {self.component_id} ({self.component_name}) JSON exceeds maximum size of "
                f"{MAX_JSON_SIZE} bytes"
            )

        events: list[BaseEvent] = []
        if not self._started:
            self._started = True
            events.append(self._event(COMPONENT_START_EVENT, {"name": self.component_name}))

        self._accumulated_json += fragment
        self._accumulated_size += fragment_size

        current_props = tolerant_json_parse(self._accumulated_json)
        if not isinstance(current_props, dict):
            return events

        patches, status_updates, new_keys = self._detect_property_changes(current_props)
        self.streaming_status.update(status_updates)
        if new_keys:
            superseded = [key for key in self._previous_keys if key not in new_keys]
            superseded.extend(new_keys[:-1])
            for key in superseded:
                if key in self.streaming_status:
                    self.streaming_status[key] = "done"

        self._previous_keys = list(current_props)
        self._seen_keys.update(current_props)
        self._previous_props = current_props

        if patches:
            events.append(
                self._event(
                    COMPONENT_PROPS_DELTA_EVENT,
                    {"patch": patches, "streamingStatus": dict(self.streaming_status)},
                )
            )
        return events

    def finalize(self) -> list[BaseEvent]:
        """Strictly parse the complete JSON and emit the end event.

        Raises:
            ComponentFinalizeError: The accumulated JSON is not a complete object.
        """
        try:
            final_props = json.loads(self._accumulated_json)
        except json.JSONDecodeError as ex:
            raise ComponentFinalizeError(
                f"Component {self.component_id} ({self.component_name}) failed to parse final JSON: {ex}",
                inner_exception=ex,
            ) from ex
        if not isinstance(final_props, dict):
            raise ComponentFinalizeError(
                f"Component {self.component_id} ({self.component_name}) failed to parse final JSON: "
                "final JSON is not an object"
            )

        for key in self.streaming_status:
            self.streaming_status[key] = "done"
        return [self._event(COMPONENT_END_EVENT, {"finalProps": final_props})]

    def _detect_property_changes(
        self, current_props: dict[str, Any]
    ) -> tuple[list[dict[str, Any]], dict[str, PropStreamingStatus], list[str]]:
        previous_props = self._previous_props
        patches: list[dict[str, Any]] = []
        status_updates: dict[str, PropStreamingStatus] = {}
        new_keys: list[str] = []

        for key, value in current_props.items():
            path = create_json_patch_path(key)
            if key not in self._seen_keys:
                patches.append({"op": "add", "path": path, "value": value})
                status_updates[key] = "started"
                new_keys.append(key)
            elif key not in previous_props:
                patches.append({"op": "add", "path": path, "value": value})
                status_updates[key] = "streaming"
            elif not _json_equal(previous_props[key], value):
                patches.append({"op": "replace", "path": path, "value": value})
                if self.streaming_status.get(key) != "done":
                    status_updates[key] = "streaming"

        for key in previous_props:
            if key not in current_props:
                patches.append({"op": "remove", "path": create_json_patch_path(key)})
                self.streaming_status.pop(key, None)

        return patches, status_updates, new_keys

    def _event(self, name: str, value: dict[str, Any]) -> CustomEvent:
        return CustomEvent(name=name, value={"componentId": self.component_id, **value}, timestamp=now_ms())
