"""Stream event wire format for Server-Sent Events."""

import json
from typing import AsyncIterator

from oceochat.data.schema import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    MetadataEvent,
    StreamEvent,
    is_terminal,
)

DONE_SENTINEL = "[DONE]"


def event_data(event: StreamEvent) -> str:
    """Serialize one stream event to the payload of a ``data:`` line."""
    if isinstance(event, ContentEvent):
        return json.dumps({"chunk": event.text})
    if isinstance(event, MetadataEvent):
        return json.dumps({"meta": event.payload})
    if isinstance(event, ErrorEvent):
        return json.dumps({"error": event.reason})
    if isinstance(event, DoneEvent):
        return DONE_SENTINEL
    raise TypeError(f"not a stream event: {event!r}")


def encode_line(event: StreamEvent) -> str:
    """Full wire line, ``data: <payload>`` followed by a blank line."""
    return f"data: {event_data(event)}\n\n"


async def sse_messages(events: AsyncIterator[StreamEvent]) -> AsyncIterator[dict[str, str]]:
    """Adapt stream events to EventSourceResponse messages.

    Stops after the first terminal event. A stream that ends without a
    terminal is closed with an error event so clients never wait forever.
    """
    async for event in events:
        yield {"data": event_data(event)}
        if is_terminal(event):
            return
    yield {"data": event_data(ErrorEvent("stream ended unexpectedly"))}
