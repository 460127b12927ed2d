"""Middleware tests: security headers, request IDs, CORS.

Learn: the middleware is pure ASGI, so an open event stream must come
through it untouched: headers on the response start, frames flushed as
they are produced, and cleanup when the client goes away. The last test
drives the app at the ASGI level to check exactly that, since httpx
would wait for a body that never ends.
"""

import asyncio

import pytest

from placement.main import app
from placement.realtime.registry import get_registry


@pytest.mark.asyncio
async def test_security_headers_on_health(client):
    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["X-XSS-Protection"] == "1; mode=block"
    assert r.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"


@pytest.mark.asyncio
async def test_security_headers_on_errors(client):
    """Rejected subscribe attempts carry the headers too."""
    r = await client.get("/api/student/notifications/subscribe")
    assert r.status_code == 403
    assert r.headers["X-Frame-Options"] == "DENY"


@pytest.mark.asyncio
async def test_request_id_generated_per_request(client):
    r1 = await client.get("/api/health")
    r2 = await client.get("/api/health")
    assert r1.headers["X-Request-ID"]
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    r = await client.get("/api/health", headers={"X-Request-ID": "trace-12345"})
    assert r.headers["X-Request-ID"] == "trace-12345"


@pytest.mark.asyncio
async def test_no_hsts_on_http(client):
    r = await client.get("/api/health")
    assert "Strict-Transport-Security" not in r.headers


@pytest.mark.asyncio
async def test_cors_allows_credentials_for_frontend(client):
    r = await client.get("/api/health", headers={"Origin": "http://localhost:4200"})
    assert r.headers["access-control-allow-origin"] == "http://localhost:4200"
    assert r.headers["access-control-allow-credentials"] == "true"


@pytest.mark.asyncio
async def test_event_stream_passes_through_middleware(registry, headers):
    app.dependency_overrides[get_registry] = lambda: registry
    auth = headers("student-1", "student")["Authorization"]
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/api/student/notifications/subscribe",
        "raw_path": b"/api/student/notifications/subscribe",
        "query_string": b"",
        "root_path": "",
        "headers": [
            (b"host", b"test"),
            (b"accept", b"text/event-stream"),
            (b"authorization", auth.encode()),
            (b"x-request-id", b"stream-1"),
        ],
        "client": ("127.0.0.1", 50000),
        "server": ("test", 80),
    }
    sent = []
    gone = asyncio.Event()

    async def receive():
        await gone.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)
        if message["type"] == "http.response.body" and message.get("body"):
            assert registry.count_connections() == 1
            gone.set()  # client closes the tab after the first frame

    try:
        await asyncio.wait_for(app(scope, receive, send), timeout=5)
    finally:
        app.dependency_overrides.clear()

    start = sent[0]
    assert start["type"] == "http.response.start"
    assert start["status"] == 200
    response_headers = dict(start["headers"])
    assert response_headers[b"content-type"].startswith(b"text/event-stream")
    assert response_headers[b"x-request-id"] == b"stream-1"
    assert response_headers[b"x-frame-options"] == b"DENY"
    assert sent[1]["body"] == b":ok\n\n"
    assert registry.count_connections() == 0
