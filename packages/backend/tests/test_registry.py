"""Connection registry tests.

Learn: Tests cover the registry contract end to end:
1. open/close bookkeeping — no empty user keys left behind
2. send_to_user fan-out across tabs, and failure isolation
3. broadcast_to_type role filtering
4. the optional per-user cap
"""

import asyncio
import json

import pytest

from placement.realtime.frames import KEEPALIVE_FRAME, format_frame
from placement.realtime.registry import (
    Connection,
    ConnectionClosedError,
    ConnectionRegistry,
)


async def _read(entry: Connection, n: int) -> list[str]:
    """Read the next n frames queued on a connection."""
    stream = entry.frames()
    frames = [await stream.__anext__() for _ in range(n)]
    await stream.aclose()
    return frames


def _decode(frame: str) -> tuple[str, dict]:
    event_line, data_line, *_ = frame.split("\n")
    return event_line[len("event: "):], json.loads(data_line[len("data: "):])


# ═══════════════════════════════════════════════════════════
# Frames
# ═══════════════════════════════════════════════════════════


def test_format_frame_wire_shape():
    frame = format_frame("notification", {"id": "1", "title": "Hi"})
    assert frame == 'event: notification\ndata: {"id":"1","title":"Hi"}\n\n'


def test_format_frame_escapes_newlines_in_payload():
    frame = format_frame("notification", {"message": "line1\nline2"})
    # Exactly one event line, one data line, then the blank terminator
    assert frame.count("\n") == 3
    assert _decode(frame) == ("notification", {"message": "line1\nline2"})


# ═══════════════════════════════════════════════════════════
# Open / close
# ═══════════════════════════════════════════════════════════


def test_unknown_user_is_not_connected(registry):
    assert registry.is_user_connected("nobody") is False
    assert "nobody" not in registry.user_ids()
    assert registry.count_connections() == 0


@pytest.mark.asyncio
async def test_open_queues_keepalive_first(registry):
    entry = registry.open("user-1", "student")
    assert registry.is_user_connected("user-1")
    assert await _read(entry, 1) == [KEEPALIVE_FRAME]


def test_open_twice_same_user_counts_two(registry):
    registry.open("user-1", "student")
    registry.open("user-1", "student")
    assert registry.count_connections() == 2
    assert registry.user_ids() == ["user-1"]


def test_close_last_entry_removes_user_key(registry):
    entry = registry.open("user-1", "student")
    registry.close("user-1", entry)

    assert registry.is_user_connected("user-1") is False
    assert registry.user_ids() == []
    assert registry.count_connections() == 0
    assert entry.closed


def test_close_one_of_two_keeps_user(registry):
    a = registry.open("user-1", "student")
    b = registry.open("user-1", "student")
    registry.close("user-1", a)

    assert registry.is_user_connected("user-1")
    assert registry.connections_for("user-1") == [b]


def test_close_is_idempotent(registry):
    entry = registry.open("user-1", "student")
    registry.close("user-1", entry)
    registry.close("user-1", entry)
    registry.close("someone-else", entry)
    assert registry.count_connections() == 0


def test_open_then_close_restores_prior_state(registry):
    registry.open("user-2", "company")
    before = (registry.user_ids(), registry.count_connections())

    entry = registry.open("user-1", "student")
    registry.close("user-1", entry)

    assert (registry.user_ids(), registry.count_connections()) == before


@pytest.mark.asyncio
async def test_closed_connection_stream_ends(registry):
    entry = registry.open("user-1", "student")
    registry.close("user-1", entry)

    frames = [frame async for frame in entry.frames()]
    assert frames == []


def test_write_after_close_raises():
    entry = Connection("user-1", "student")
    entry.close()
    with pytest.raises(ConnectionClosedError):
        entry.write("event: x\ndata: {}\n\n")


# ═══════════════════════════════════════════════════════════
# send_to_user
# ═══════════════════════════════════════════════════════════


def test_send_to_unconnected_user_is_noop(registry):
    assert registry.send_to_user("ghost", "notification", {"id": "1"}) == 0
    assert registry.user_ids() == []


@pytest.mark.asyncio
async def test_send_to_user_reaches_every_tab(registry):
    """Two tabs for one user both get the identical event."""
    tab1 = registry.open("user-a", "student")
    tab2 = registry.open("user-a", "student")

    payload = {"id": "1", "title": "New offer", "message": "ACME", "type": "info"}
    assert registry.send_to_user("user-a", "notification", payload) == 2

    for tab in (tab1, tab2):
        keepalive, frame = await _read(tab, 2)
        assert keepalive == KEEPALIVE_FRAME
        assert _decode(frame) == ("notification", payload)


@pytest.mark.asyncio
async def test_send_to_user_does_not_leak_to_other_users(registry):
    registry.open("user-a", "student")
    other = registry.open("user-b", "student")

    registry.send_to_user("user-a", "notification", {"id": "1"})
    assert other.pending == 1  # only the keep-alive


@pytest.mark.asyncio
async def test_send_to_user_failed_write_drops_only_that_entry(registry):
    healthy = registry.open("user-a", "student")
    broken = registry.open("user-a", "student")
    broken.close()  # transport gone, close signal not processed yet

    assert registry.send_to_user("user-a", "notification", {"id": "1"}) == 1

    assert registry.connections_for("user-a") == [healthy]
    _, frame = await _read(healthy, 2)
    assert _decode(frame) == ("notification", {"id": "1"})


def test_send_to_user_full_buffer_counts_as_failure():
    registry = ConnectionRegistry(queue_size=1)
    registry.open("user-a", "student")  # keep-alive fills the buffer

    assert registry.send_to_user("user-a", "notification", {"id": "1"}) == 0
    assert registry.is_user_connected("user-a") is False
    assert registry.user_ids() == []


@pytest.mark.asyncio
async def test_writes_to_one_entry_keep_call_order(registry):
    entry = registry.open("user-a", "student")
    for i in range(3):
        registry.send_to_user("user-a", "notification", {"seq": i})

    frames = await _read(entry, 4)
    assert [_decode(f)[1]["seq"] for f in frames[1:]] == [0, 1, 2]


# ═══════════════════════════════════════════════════════════
# broadcast_to_type
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_broadcast_only_reaches_matching_role(registry):
    admin1 = registry.open("admin-1", "admin")
    admin2 = registry.open("admin-2", "admin")
    student = registry.open("student-1", "student")
    company = registry.open("company-1", "company")

    delivered = registry.broadcast_to_type("admin", "announcement", {"title": "Audit"})
    assert delivered == 2

    for entry in (admin1, admin2):
        _, frame = await _read(entry, 2)
        assert _decode(frame) == ("announcement", {"title": "Audit"})
    assert student.pending == 1
    assert company.pending == 1


def test_broadcast_skips_failed_writes_and_keeps_going(registry):
    dead = registry.open("admin-1", "admin")
    registry.open("admin-2", "admin")
    dead.close()

    assert registry.broadcast_to_type("admin", "announcement", {}) == 1
    # Left for its own close signal to clean up
    assert registry.count_connections() == 2


def test_broadcast_with_no_connections(registry):
    assert registry.broadcast_to_type("company", "announcement", {}) == 0


# ═══════════════════════════════════════════════════════════
# Per-user cap
# ═══════════════════════════════════════════════════════════


def test_unbounded_by_default(registry):
    for _ in range(25):
        registry.open("user-a", "student")
    assert registry.count_connections() == 25


def test_cap_evicts_oldest_connection():
    registry = ConnectionRegistry(max_per_user=2)
    first = registry.open("user-a", "student")
    second = registry.open("user-a", "student")
    third = registry.open("user-a", "student")

    assert registry.connections_for("user-a") == [second, third]
    assert first.closed
    assert registry.count_connections() == 2


# ═══════════════════════════════════════════════════════════
# Producers on worker threads
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_send_from_worker_thread_wakes_blocked_reader(registry):
    entry = registry.open("user-a", "student")
    stream = entry.frames()
    assert await stream.__anext__() == KEEPALIVE_FRAME

    reader = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)  # reader is now parked on the empty queue

    delivered = await asyncio.to_thread(
        registry.send_to_user, "user-a", "notification", {"id": "1"}
    )

    assert delivered == 1
    frame = await asyncio.wait_for(reader, timeout=1)
    assert frame == format_frame("notification", {"id": "1"})
    await stream.aclose()


@pytest.mark.asyncio
async def test_full_buffer_from_worker_thread_drops_connection():
    registry = ConnectionRegistry(queue_size=1)
    entry = registry.open("user-a", "student")  # keep-alive fills the buffer

    delivered = await asyncio.to_thread(
        registry.send_to_user, "user-a", "notification", {"id": "1"}
    )

    assert delivered == 0
    assert entry.closed
    assert registry.is_user_connected("user-a") is False


@pytest.mark.asyncio
async def test_close_from_worker_thread_ends_stream(registry):
    entry = registry.open("user-a", "student")
    stream = entry.frames()
    await stream.__anext__()

    reader = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)
    await asyncio.to_thread(registry.close, "user-a", entry)

    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(reader, timeout=1)
    assert registry.count_connections() == 0
