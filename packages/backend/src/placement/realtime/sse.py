"""SSE response — turns a registry connection into a streaming HTTP response.

Learn: Starlette's StreamingResponse watches for the client disconnect
and cancels the body iterator. The `finally` in event_stream() is
therefore the single place a connection leaves the registry when the
browser goes away (tab closed, navigation, network loss).
"""

from typing import AsyncIterator

from fastapi.responses import StreamingResponse

from placement.realtime.registry import Connection, ConnectionRegistry

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # nginx: flush each frame instead of buffering the response
    "X-Accel-Buffering": "no",
}


async def event_stream(
    registry: ConnectionRegistry,
    user_id: str,
    entry: Connection,
) -> AsyncIterator[str]:
    """Yield frames for one connection, removing it from the registry on exit."""
    try:
        async for frame in entry.frames():
            yield frame
    finally:
        registry.close(user_id, entry)


def subscribe_response(
    registry: ConnectionRegistry,
    user_id: str,
    user_type: str,
) -> StreamingResponse:
    """Open a registry connection and wrap it in an event-stream response."""
    entry = registry.open(user_id, user_type)
    return StreamingResponse(
        event_stream(registry, user_id, entry),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
