# Copyright (c) Microsoft. All rights reserved.

"""Inline resource contents into message history before a run starts."""

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from ._logging import get_logger
from ._types import ResourceContentPart, ThreadMessage

logger = get_logger(__name__)

ResourceFetcher = Callable[[str], Awaitable[Mapping[str, Any]]]
"""Reads one resource URI and returns an MCP-style ``{"contents": [...]}`` result."""

ResourceFetcherMap = Mapping[str, ResourceFetcher]


def split_resource_uri(uri: str, fetchers: ResourceFetcherMap) -> tuple[str, str] | None:
    """Split ``<serverKey>:<uri>`` into its parts when the server key has a fetcher."""
    server_key, sep, resource_uri = uri.partition(":")
    if not sep or server_key not in fetchers:
        return None
    return server_key, resource_uri


async def prefetch_and_cache_resources(
    messages: Sequence[ThreadMessage],
    fetchers: ResourceFetcherMap,
) -> list[ThreadMessage]:
    """Return copies of the messages with referenced resource contents inlined.

    Each distinct URI is fetched once. Parts that already carry contents, have
    no matching fetcher, or fail to fetch are left as they are.
    """
    if not fetchers:
        return list(messages)

    cache: dict[str, Mapping[str, Any] | None] = {}
    result: list[ThreadMessage] = []
    for message in messages:
        new_content = []
        changed = False
        for part in message.content:
            if isinstance(part, ResourceContentPart) and part.resource.text is None and part.resource.blob is None:
                inlined = await _inline_resource(part, fetchers, cache)
                if inlined is not part:
                    changed = True
                new_content.append(inlined)
            else:
                new_content.append(part)
        result.append(message.model_copy(update={"content": new_content}) if changed else message)
    return result


async def _inline_resource(
    part: ResourceContentPart,
    fetchers: ResourceFetcherMap,
    cache: dict[str, Mapping[str, Any] | None],
) -> ResourceContentPart:
    uri = part.resource.uri
    target = split_resource_uri(uri, fetchers)
    if target is None:
        return part

    if uri not in cache:
        server_key, resource_uri = target
        try:
            cache[uri] = await fetchers[server_key](resource_uri)
        except Exception as ex:
            logger.warning(f"Failed to fetch resource '{uri}' from server '{server_key}': {ex}")
            cache[uri] = None

    fetched = cache[uri]
    contents = (fetched or {}).get("contents") or []
    if not contents:
        return part
    first = contents[0]
    resource = part.resource.model_copy(
        update={
            "text": first.get("text"),
            "blob": first.get("blob"),
            "mime_type": first.get("mimeType") or part.resource.mime_type,
        }
    )
    return part.model_copy(update={"resource": resource})
