# Copyright (c) Microsoft. All rights reserved.

"""Utility functions shared across the streaming paths."""

import json
import time
import uuid
from collections.abc import Sequence
from typing import Any

from partial_json_parser import Allow, loads

from ._logging import get_logger
from ._types import ContentPart, TextContentPart

logger = get_logger(__name__)

# Trailing numbers are held back until a delimiter proves they are complete.
_TOLERANT_ALLOW = Allow.ALL & ~Allow.NUM

_last_timestamp_ms = 0


def generate_event_id() -> str:
    """Generate a unique event ID."""
    return str(uuid.uuid4())


def now_ms() -> int:
    """Epoch milliseconds that never go backwards within the process."""
    global _last_timestamp_ms
    _last_timestamp_ms = max(_last_timestamp_ms, int(time.time() * 1000))
    return _last_timestamp_ms


def content_parts_to_string(content: Sequence[ContentPart]) -> str:
    """Join the text parts of a message, one per line."""
    return "\n".join(part.text for part in content if isinstance(part, TextContentPart))


def agui_content_to_string(content: Any) -> str:
    """Flatten AG-UI message content (string, parts list or None) into text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts: list[str] = []
        for part in content:
            text = part.get("text") if isinstance(part, dict) else getattr(part, "text", None)
            if isinstance(text, str):
                texts.append(text)
        return "".join(texts)
    return json.dumps(content)


def tolerant_json_parse(text: str) -> Any | None:
    """Best-effort parse of possibly truncated JSON; ``None`` when nothing is parseable yet.

    Every call returns a freshly built object tree.
    """
    if not text.strip():
        return None
    try:
        return loads(text, _TOLERANT_ALLOW)
    except Exception:  # incomplete or malformed so far, more data may arrive
        return None


def extract_message_content(content: str | None, log: bool = True) -> str:
    """Return the text to display for model output.

    Output shaped like ``{"message": "..."}``, even when truncated, is unwrapped
    to the message field.
    """
    if content is None:
        return ""
    parsed = tolerant_json_parse(content) if content.lstrip().startswith("{") else None
    if isinstance(parsed, dict) and isinstance(parsed.get("message"), str):
        if log:
            logger.warning("Model response is a JSON object, extracting message")
        return parsed["message"]
    return content
