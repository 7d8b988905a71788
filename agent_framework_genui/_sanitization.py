# Copyright (c) Microsoft. All rights reserved.

"""Output filter applied to every protocol event before it leaves the process."""

import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

SENSITIVE_FIELDS = frozenset({
    "stack",
    "stackTrace",
    "error_stack",
    "internalError",
    "originalError",
    "rawError",
    "__proto__",
    "constructor",
    "prototype",
})

# Keeps tab, newline and carriage return.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _sanitize_value(item) for key, item in value.items() if key not in SENSITIVE_FIELDS}
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(item) for item in value]
    if isinstance(value, str):
        return _CONTROL_CHARS.sub("", value)
    return value


def sanitize_event(event: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    """Return a cleaned copy of an event that is safe to send to clients.

    Deny-listed keys (stack traces, raw/internal error payloads and
    prototype-pollution keys) are dropped at every nesting level and ASCII
    control characters are stripped from all strings. The input is never
    mutated. Pydantic events are dumped in their camelCase wire shape first.

    Args:
        event: The event to sanitize.

    Returns:
        The sanitized event as a plain dict.
    """
    if isinstance(event, BaseModel):
        event = event.model_dump(mode="json", by_alias=True, exclude_none=True)
    return _sanitize_value(event)
