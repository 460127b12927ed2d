"""SSE wire frames.

Learn: one frame per event, terminated by a blank line:

    event: notification
    data: {"id":"1","title":"New offer"}

JSON never contains a raw newline, so the payload always fits on a
single data line. Lines starting with ":" are comments; the server
sends one right away so the client's open signal fires immediately.
"""

import json
from typing import Any

KEEPALIVE_FRAME = ":ok\n\n"


def format_frame(event: str, payload: Any) -> str:
    """Serialize an event name and JSON-able payload into one SSE frame."""
    data = json.dumps(payload, separators=(",", ":"), default=str)
    return f"event: {event}\ndata: {data}\n\n"
