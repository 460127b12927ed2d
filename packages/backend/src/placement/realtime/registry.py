"""SSE connection registry — who is listening, and how to reach them.

Learn: the registry maps user_id → set of live connections. A user with
two browser tabs open has two entries; each entry pairs an outbound
frame queue with the user's role (student, company, admin) so we can
broadcast to a whole role.

Invariants:
- A user key with an empty set is deleted immediately.
- Each entry is removed exactly once, either when its HTTP stream ends
  or when a write to it fails. close() is idempotent.
- Each connection buffers at most `queue_size` frames; a consumer that
  falls that far behind gets its write refused.

Threads: the map is guarded by a threading.Lock. asyncio.Queue is not
thread-safe, so a Connection remembers the loop it was opened on and a
write from any other thread (sync endpoints in the threadpool) is run
on that loop; the calling thread waits for the outcome, so a refused
write still raises ConnectionClosedError in the caller. Writes made on
the loop itself never block.
"""

import asyncio
import concurrent.futures
import itertools
import threading
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import structlog

from placement.config import settings
from placement.realtime.frames import KEEPALIVE_FRAME, format_frame

logger = structlog.get_logger()

USER_TYPES = ("student", "company", "admin")

# Seconds a worker thread waits for the event loop to take its frame
THREAD_WRITE_TIMEOUT = 5.0


class ConnectionClosedError(Exception):
    """Raised when a frame cannot be written to a connection."""


class Connection:
    """One open push channel: a bounded frame queue plus a role tag."""

    _ids = itertools.count(1)

    def __init__(self, user_id: str, user_type: str, queue_size: int = 100):
        self.id = next(Connection._ids)
        self.user_id = user_id
        self.user_type = user_type
        self.opened_at = datetime.now(timezone.utc)
        self.closed = False
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=queue_size)
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            # Built outside any loop (scripts, sync tests): same-thread use only
            self._loop = None

    def __repr__(self) -> str:
        return f"<Connection #{self.id} user={self.user_id} type={self.user_type}>"

    @property
    def pending(self) -> int:
        """Frames written but not yet flushed to the client."""
        return self._queue.qsize()

    def write(self, frame: str) -> None:
        """Queue a frame for delivery. Raises ConnectionClosedError on failure."""
        if self.closed:
            raise ConnectionClosedError(f"connection {self.id} is closed")
        if self._off_loop():
            self._write_from_thread(frame)
        else:
            self._put(frame)

    def close(self) -> None:
        """Stop the stream. Frames still queued are dropped."""
        if self.closed:
            return
        self.closed = True
        if self._off_loop():
            try:
                self._loop.call_soon_threadsafe(self._wake_reader)
            except RuntimeError:
                # Loop already closed: no reader is left to wake
                pass
        else:
            self._wake_reader()

    async def frames(self) -> AsyncIterator[str]:
        """Yield queued frames in write order until the connection closes."""
        while not self.closed:
            frame = await self._queue.get()
            if frame is None:
                break
            yield frame

    # ─── Queue access (event loop only) ───────────────────

    def _off_loop(self) -> bool:
        if self._loop is None:
            return False
        try:
            return asyncio.get_running_loop() is not self._loop
        except RuntimeError:
            return True

    def _put(self, frame: str) -> None:
        if self.closed:
            raise ConnectionClosedError(f"connection {self.id} is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            raise ConnectionClosedError(
                f"connection {self.id} write buffer full ({self._queue.maxsize})"
            ) from None

    async def _put_async(self, frame: str) -> None:
        self._put(frame)

    def _write_from_thread(self, frame: str) -> None:
        coro = self._put_async(frame)
        try:
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        except RuntimeError:
            coro.close()
            raise ConnectionClosedError(
                f"connection {self.id} event loop is closed"
            ) from None
        try:
            future.result(timeout=THREAD_WRITE_TIMEOUT)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise ConnectionClosedError(
                f"connection {self.id} event loop did not accept the write"
            ) from None

    def _wake_reader(self) -> None:
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Reader is not blocked; it sees `closed` after its next get()
            pass


class ConnectionRegistry:
    """Process-wide map of user_id → live SSE connections."""

    def __init__(self, queue_size: int = 100, max_per_user: int = 0):
        self.queue_size = queue_size
        self.max_per_user = max_per_user
        self._clients: dict[str, set[Connection]] = {}
        self._lock = threading.Lock()

    # ─── Lifecycle ────────────────────────────────────────

    def open(self, user_id: str, user_type: str) -> Connection:
        """Register a new connection for a user.

        Learn: the keep-alive comment is queued before the entry becomes
        visible, so it is always the first thing the client reads. When
        a per-user cap is configured the oldest connection is evicted to
        make room; the default (0) keeps every connection.
        """
        entry = Connection(user_id, user_type, queue_size=self.queue_size)
        entry.write(KEEPALIVE_FRAME)

        evicted: Optional[Connection] = None
        with self._lock:
            entries = self._clients.setdefault(user_id, set())
            if self.max_per_user and len(entries) >= self.max_per_user:
                evicted = min(entries, key=lambda c: c.id)
                entries.discard(evicted)
            entries.add(entry)
            total = len(entries)

        if evicted is not None:
            evicted.close()
            logger.info(
                "sse.connection_evicted",
                user_id=user_id,
                connection_id=evicted.id,
                max_per_user=self.max_per_user,
            )

        logger.info(
            "sse.connection_opened",
            user_id=user_id,
            user_type=user_type,
            connection_id=entry.id,
            user_connections=total,
        )
        return entry

    def close(self, user_id: str, entry: Connection) -> None:
        """Remove a connection. Unknown or already-removed entries are a no-op."""
        removed = False
        with self._lock:
            entries = self._clients.get(user_id)
            if entries is not None and entry in entries:
                entries.discard(entry)
                removed = True
                if not entries:
                    del self._clients[user_id]

        entry.close()
        if removed:
            logger.info(
                "sse.connection_closed",
                user_id=user_id,
                connection_id=entry.id,
            )

    # ─── Delivery ─────────────────────────────────────────

    def send_to_user(self, user_id: str, event: str, payload: Any) -> int:
        """Write one event to every connection of a user.

        Returns the number of connections that accepted the frame.
        A connection whose write fails is removed; the rest still get
        the event. Unknown users are a silent no-op.
        """
        with self._lock:
            entries = list(self._clients.get(user_id, ()))
        if not entries:
            return 0

        frame = format_frame(event, payload)
        delivered = 0
        for entry in entries:
            try:
                entry.write(frame)
                delivered += 1
            except ConnectionClosedError as e:
                logger.info(
                    "sse.write_failed",
                    user_id=user_id,
                    connection_id=entry.id,
                    event=event,
                    error=str(e),
                )
                self.close(user_id, entry)
        return delivered

    def broadcast_to_type(self, user_type: str, event: str, payload: Any) -> int:
        """Write one event to every connection tagged with `user_type`.

        Failed writes are skipped, not removed; a dead connection is
        cleaned up when its own stream ends.
        """
        with self._lock:
            entries = [
                entry
                for user_entries in self._clients.values()
                for entry in user_entries
                if entry.user_type == user_type
            ]

        frame = format_frame(event, payload)
        delivered = 0
        for entry in entries:
            try:
                entry.write(frame)
                delivered += 1
            except ConnectionClosedError:
                logger.debug(
                    "sse.broadcast_write_skipped",
                    user_id=entry.user_id,
                    connection_id=entry.id,
                    event=event,
                )
        return delivered

    # ─── Introspection ────────────────────────────────────

    def count_connections(self) -> int:
        """Total open connections across all users."""
        with self._lock:
            return sum(len(entries) for entries in self._clients.values())

    def is_user_connected(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._clients.get(user_id))

    def user_ids(self) -> list[str]:
        """Users that currently hold at least one connection."""
        with self._lock:
            return list(self._clients)

    def connections_for(self, user_id: str) -> list[Connection]:
        with self._lock:
            return sorted(self._clients.get(user_id, ()), key=lambda c: c.id)


# Global registry (one per process)
registry = ConnectionRegistry(
    queue_size=settings.sse_queue_size,
    max_per_user=settings.sse_max_connections_per_user,
)


def get_registry() -> ConnectionRegistry:
    """FastAPI dependency — the process-wide registry."""
    return registry
