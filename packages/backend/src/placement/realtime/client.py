"""Notification subscription client — a reconnecting EventSource in Python.

Learn: this is the consumer half of the push channel, the same contract
the browser front-ends implement with EventSource:

    Idle → Connecting → Open → (events...) → Reconnecting → Connecting → ...
                                      close() from any state → Closed

- Open means HTTP 200 with a text/event-stream body. The retry counter
  resets to 0 and `connected` flips to True.
- Each `notification` frame is JSON-decoded and handed to the callback.
  Malformed frames are logged and dropped; the stream stays up.
- Any failure (connect error, non-200, server closing the stream) tears
  the stream down and schedules ONE reconnect after
  min(1s * 2^retry_count, 30s). Retries never stop on their own.
- close() cancels the stream and the pending timer. Nothing reconnects
  after that.
"""

import asyncio
import inspect
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
import structlog

from placement.config import settings

logger = structlog.get_logger()

NotificationCallback = Callable[[Any], Union[None, Awaitable[None]]]
Scheduler = Callable[[float, Callable[[], None]], Any]

# 2.0 ** 1024 overflows a float; the cap is reached long before this.
_MAX_EXPONENT = 62


def backoff_delay(retry_count: int, base: float = 1.0, cap: float = 30.0) -> float:
    """Delay before reconnect attempt number `retry_count` (0-based), in seconds."""
    return min(base * 2.0 ** min(retry_count, _MAX_EXPONENT), cap)


# ─── Wire decoding ───────────────────────────────────────


@dataclass
class ServerSentEvent:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """Line-at-a-time SSE parser.

    Feed it lines without their terminators (what httpx's aiter_lines
    yields). A blank line dispatches the buffered event; events without
    any data line are dropped, as browsers do.
    """

    def __init__(self):
        self._event = ""
        self._data: list[str] = []
        self._retry: Optional[int] = None
        self._last_event_id: Optional[str] = None

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        if not line:
            if not self._data:
                self._event = ""
                self._retry = None
                return None
            sse = ServerSentEvent(
                event=self._event or "message",
                data="\n".join(self._data),
                id=self._last_event_id,
                retry=self._retry,
            )
            self._event = ""
            self._data = []
            self._retry = None
            return sse

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            try:
                self._retry = int(value)
            except ValueError:
                pass
        return None


# ─── Subscription ────────────────────────────────────────


class SubscriptionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class SubscriptionError(Exception):
    """The server answered, but not with an event stream."""


class NotificationSubscription:
    """Keeps one live event stream open for a logged-in user.

    Args:
        base_url: backend origin, e.g. "http://localhost:8080".
        role: "student", "company" or "admin" — picks the subscribe route.
        on_notification: called with each decoded payload (sync or async).
        token: access token, sent as the accessToken cookie.
        client: preconfigured httpx.AsyncClient (tests, custom auth).
            When omitted the subscription owns and closes its own client.
        schedule: timer factory `(delay, callback) -> handle.cancel()`.
            Defaults to loop.call_later.
    """

    def __init__(
        self,
        base_url: str,
        role: str,
        on_notification: Optional[NotificationCallback] = None,
        *,
        event: str = "notification",
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        enabled: bool = True,
        base_delay: float = settings.sse_retry_base_seconds,
        max_delay: float = settings.sse_retry_max_seconds,
        schedule: Optional[Scheduler] = None,
    ):
        self.url = f"{base_url.rstrip('/')}/api/{role}/notifications/subscribe"
        self.role = role
        self.event = event
        self.on_notification = on_notification
        self.enabled = enabled
        self.base_delay = base_delay
        self.max_delay = max_delay

        self.state = SubscriptionState.IDLE
        self.connected = False
        self.retry_count = 0
        self.last_delay: Optional[float] = None
        self.stream_task: Optional[asyncio.Task] = None

        self._owns_client = client is None
        if client is None:
            cookies = {"accessToken": token} if token else None
            # No read timeout: the stream may sit idle for hours between events
            client = httpx.AsyncClient(
                cookies=cookies,
                timeout=httpx.Timeout(10.0, read=None),
            )
        self._client = client
        self._schedule = schedule
        self._timer: Any = None
        self._closed = False

    # ─── Public API ───────────────────────────────────────

    def start(self) -> None:
        """Open the stream (Idle → Connecting). Must run inside an event loop.

        While reconnecting, this connects now instead of waiting out the
        delay; the pending timer is dropped so only one stream is opened.
        """
        if self._closed or not self.enabled:
            return
        if self._stream_running():
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.stream_task = asyncio.get_running_loop().create_task(self._run())

    async def close(self) -> None:
        """Tear down: cancel the stream and any pending reconnect."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        task = self.stream_task
        self.stream_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._owns_client:
            await self._client.aclose()

        self.connected = False
        self.state = SubscriptionState.CLOSED
        logger.info("sse.client_closed", url=self.url)

    @property
    def reconnect_pending(self) -> bool:
        return self._timer is not None

    async def __aenter__(self) -> "NotificationSubscription":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ─── Stream lifecycle ─────────────────────────────────

    async def _run(self) -> None:
        self.state = SubscriptionState.CONNECTING
        logger.debug("sse.client_connecting", url=self.url, retry_count=self.retry_count)
        try:
            async with self._client.stream(
                "GET",
                self.url,
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            ) as response:
                if response.status_code != 200:
                    raise SubscriptionError(f"HTTP {response.status_code}")
                content_type = response.headers.get("content-type", "")
                if not content_type.startswith("text/event-stream"):
                    raise SubscriptionError(f"unexpected content type {content_type!r}")

                self._on_open()
                decoder = SSEDecoder()
                async for line in response.aiter_lines():
                    sse = decoder.decode(line)
                    if sse is not None:
                        await self._dispatch(sse)
            logger.info("sse.client_stream_ended", url=self.url)
        except (httpx.HTTPError, SubscriptionError) as e:
            logger.warning("sse.client_error", url=self.url, error=str(e))
        except Exception:
            # Anything else (InvalidURL, StreamError, ...) still reconnects
            logger.exception("sse.client_failed", url=self.url)

        if not self._closed:
            self._schedule_reconnect()

    def _on_open(self) -> None:
        self.state = SubscriptionState.OPEN
        self.connected = True
        self.retry_count = 0
        logger.info("sse.client_open", url=self.url)

    async def _dispatch(self, sse: ServerSentEvent) -> None:
        if sse.event != self.event:
            return
        try:
            payload = json.loads(sse.data)
        except json.JSONDecodeError:
            logger.debug("sse.client_malformed_event", event=sse.event, data=sse.data[:200])
            return

        if self.on_notification is None:
            return
        try:
            result = self.on_notification(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("sse.client_callback_failed", event=sse.event)

    # ─── Reconnect ────────────────────────────────────────

    def _schedule_reconnect(self) -> None:
        self.connected = False
        self.state = SubscriptionState.RECONNECTING

        delay = backoff_delay(self.retry_count, self.base_delay, self.max_delay)
        self.retry_count += 1
        self.last_delay = delay

        if self._timer is not None:
            self._timer.cancel()
        schedule = self._schedule or asyncio.get_running_loop().call_later
        self._timer = schedule(delay, self._fire_reconnect)
        logger.info(
            "sse.client_reconnect_scheduled",
            url=self.url,
            delay=delay,
            retry_count=self.retry_count,
        )

    def _fire_reconnect(self) -> None:
        self._timer = None
        if self._closed or self._stream_running():
            return
        self.stream_task = asyncio.get_running_loop().create_task(self._run())

    def _stream_running(self) -> bool:
        return self.stream_task is not None and not self.stream_task.done()
