#!/usr/bin/env python3
"""
Placement notifications — one user, two tabs, one push.

Opens two event-stream subscriptions for the same student, has an admin
create a notification, and prints what each "tab" receives. Then it
checks the inbox and marks everything read.

Run with: python examples/two_tabs.py

Requires: pip install -e .
Backend must be running: http://localhost:8080
(same PLACEMENT_JWT_SECRET as this shell, tokens are minted locally)
"""

import asyncio
import sys
import uuid

import httpx

from placement.auth.jwt import create_access_token
from placement.realtime.client import NotificationSubscription

BASE = "http://localhost:8080"


async def main():
    student_id = f"demo-{uuid.uuid4().hex[:6]}"
    student_token = create_access_token(student_id, "student")
    admin_token = create_access_token("demo-admin", "admin")

    # ── Health check ──────────────────────────────────────────────
    print("Checking backend health...")
    try:
        resp = httpx.get(f"{BASE}/api/health", timeout=5)
    except httpx.ConnectError:
        print(f"Backend not reachable at {BASE}")
        print("Start it with:  cd packages/backend && uvicorn placement.main:app --port 8080")
        sys.exit(1)
    health = resp.json()
    print(f"  Postgres: {'✓' if health['postgres'] else '✗'}")
    print(f"  Open streams: {health['connections']}")

    # ── Two tabs subscribe ────────────────────────────────────────
    print(f"\n1. Opening two tabs for {student_id}...")
    received = {"tab-1": asyncio.Queue(), "tab-2": asyncio.Queue()}
    tabs = [
        NotificationSubscription(BASE, "student", received[name].put_nowait, token=student_token)
        for name in received
    ]
    for tab in tabs:
        tab.start()
    while not all(tab.connected for tab in tabs):
        await asyncio.sleep(0.05)
    print("   Both tabs connected")

    # ── Admin sends a notification ────────────────────────────────
    print("\n2. Admin creates a notification...")
    async with httpx.AsyncClient(base_url=BASE, cookies={"accessToken": admin_token}) as admin:
        resp = await admin.post("/api/admin/notifications", json={
            "recipient_id": student_id,
            "recipient_type": "student",
            "title": "Interview scheduled",
            "message": "ACME, Monday 10:00",
            "type": "success",
        })
        assert resp.status_code == 201, f"Failed: {resp.text}"
        print(f"   Created {resp.json()['id'][:8]}...")

    for name, queue in received.items():
        payload = await asyncio.wait_for(queue.get(), timeout=5)
        print(f"   {name} got: {payload['title']} ({payload['type']})")

    # ── Inbox ─────────────────────────────────────────────────────
    print("\n3. Inbox...")
    async with httpx.AsyncClient(base_url=BASE, cookies={"accessToken": student_token}) as me:
        resp = await me.get("/api/student/notifications/unread-count")
        print(f"   Unread: {resp.json()['count']}")
        await me.patch("/api/student/notifications/read-all")
        resp = await me.get("/api/student/notifications/unread-count")
        print(f"   After read-all: {resp.json()['count']}")

    for tab in tabs:
        await tab.close()
    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(main())
