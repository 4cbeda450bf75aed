"""Server-sent-event framing for the streaming chat transport.

Each event becomes one ``data: {json}\\n\\n`` frame whose JSON payload
always carries a ``type`` key, so a standard EventSource consumer can
dispatch on it.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

from docvault.models.chat import StreamEvent


def encode_sse(event: StreamEvent) -> str:
    """Render one stream event as an SSE ``data:`` frame."""
    payload = {"type": event.type, **event.data}
    return f"data: {json.dumps(payload, default=str)}\n\n"


async def sse_frames(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """Map an event stream to SSE frames, closing the source on exit."""
    try:
        async for event in events:
            yield encode_sse(event)
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
