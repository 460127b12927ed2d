"""Placement notifications CLI — listen to the live stream, read the inbox.

Usage:
    placement token 42 --role student             # Mint a dev access token
    placement listen --role student               # Print notifications as they arrive
    placement inbox --role student --limit 10     # Latest inbox entries
    placement unread --role company               # Unread count
    placement notify 42 student "New offer" -m "Backend intern at ACME"
    placement broadcast company "Forum tomorrow"  # Live announcement to a role

The token comes from --token or PLACEMENT_TOKEN.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8080"
ROLES = click.Choice(["student", "company", "admin"])


def _api_url() -> str:
    return os.environ.get("PLACEMENT_API_URL", DEFAULT_API_URL).rstrip("/")


def _token(token: Optional[str]) -> str:
    tok = token or os.environ.get("PLACEMENT_TOKEN")
    if not tok:
        click.secho(
            "Error: --token required (or set PLACEMENT_TOKEN env var)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return tok


def _client(token: str) -> httpx.AsyncClient:
    """Build an async HTTP client authenticated with the accessToken cookie."""
    return httpx.AsyncClient(
        base_url=_api_url(),
        cookies={"accessToken": token},
        timeout=30.0,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Offloads to a thread when a loop is already running (CliRunner
    inside async tests).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _level_color(level: str) -> str:
    return {"success": "green", "info": "cyan", "warning": "yellow"}.get(level, "white")


def _print_notification(n: dict) -> None:
    marker = " " if n.get("read", False) else "*"
    click.secho(
        f"{marker} [{n.get('type', 'info')}] {n.get('title', '')}",
        fg=_level_color(n.get("type", "info")),
        bold=not n.get("read", False),
    )
    if n.get("message"):
        click.echo(f"    {n['message']}")
    click.echo(f"    {n.get('createdAt') or '—'}  id={n.get('id')}")


def _fail(r: httpx.Response) -> None:
    try:
        detail = r.json().get("detail", r.text)
    except ValueError:
        detail = r.text
    click.secho(f"Error {r.status_code}: {detail}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="placement")
def main():
    """Placement platform notifications — live stream and inbox."""


# ---------------------------------------------------------------------------
# placement token
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_id")
@click.option("--role", "-r", type=ROLES, required=True)
@click.option("--minutes", default=None, type=int, help="Lifetime (default from settings)")
def token(user_id: str, role: str, minutes: Optional[int]):
    """Mint an access token for USER_ID (development only).

    Uses PLACEMENT_JWT_SECRET, so it must match the server's secret.
    """
    from placement.auth.jwt import create_access_token

    click.echo(create_access_token(user_id, role, expires_minutes=minutes))


# ---------------------------------------------------------------------------
# placement listen
# ---------------------------------------------------------------------------


@main.command()
@click.option("--role", "-r", type=ROLES, required=True)
@click.option("--token", "-t", "token_", help="Access token (or PLACEMENT_TOKEN)")
@click.option("--raw", is_flag=True, help="Print payloads as JSON lines")
def listen(role: str, token_: Optional[str], raw: bool):
    """Stay connected and print each notification as it arrives.

    Reconnects on its own (1s, 2s, 4s ... 30s). Ctrl-C to stop.
    """
    try:
        _run(_listen_impl(role, _token(token_), raw))
    except KeyboardInterrupt:
        click.echo("Stopped.")


async def _listen_impl(role: str, token: str, raw: bool):
    from placement.realtime.client import NotificationSubscription

    def on_notification(payload):
        if raw:
            click.echo(json.dumps(payload))
        else:
            _print_notification(payload)

    click.echo(f"Listening on {_api_url()} as {role}...")
    async with NotificationSubscription(
        _api_url(), role, on_notification, token=token
    ):
        await asyncio.Event().wait()


# ---------------------------------------------------------------------------
# placement inbox / unread
# ---------------------------------------------------------------------------


@main.command()
@click.option("--role", "-r", type=ROLES, required=True)
@click.option("--token", "-t", "token_", help="Access token (or PLACEMENT_TOKEN)")
@click.option("--limit", "-l", default=20, help="Max results")
def inbox(role: str, token_: Optional[str], limit: int):
    """List the latest notifications, newest first."""
    _run(_inbox_impl(role, _token(token_), limit))


async def _inbox_impl(role: str, token: str, limit: int):
    async with _client(token) as c:
        r = await c.get(f"/api/{role}/notifications", params={"limit": limit})
        if r.status_code != 200:
            _fail(r)
        rows = r.json()
    if not rows:
        click.echo("No notifications.")
        return
    for n in rows:
        _print_notification(n)


@main.command()
@click.option("--role", "-r", type=ROLES, required=True)
@click.option("--token", "-t", "token_", help="Access token (or PLACEMENT_TOKEN)")
def unread(role: str, token_: Optional[str]):
    """Show the unread notification count."""
    _run(_unread_impl(role, _token(token_)))


async def _unread_impl(role: str, token: str):
    async with _client(token) as c:
        r = await c.get(f"/api/{role}/notifications/unread-count")
        if r.status_code != 200:
            _fail(r)
        click.echo(r.json()["count"])


# ---------------------------------------------------------------------------
# placement notify / broadcast (admin)
# ---------------------------------------------------------------------------


@main.command()
@click.argument("recipient_id")
@click.argument("recipient_type", type=ROLES)
@click.argument("title")
@click.option("--message", "-m", default="", help="Body text")
@click.option("--level", default="info", type=click.Choice(["success", "info", "warning"]))
@click.option("--token", "-t", "token_", help="Admin access token (or PLACEMENT_TOKEN)")
def notify(recipient_id: str, recipient_type: str, title: str, message: str,
           level: str, token_: Optional[str]):
    """Create a notification and push it to RECIPIENT_ID (admin)."""
    _run(_notify_impl(recipient_id, recipient_type, title, message, level, _token(token_)))


async def _notify_impl(recipient_id: str, recipient_type: str, title: str,
                       message: str, level: str, token: str):
    async with _client(token) as c:
        r = await c.post("/api/admin/notifications", json={
            "recipient_id": recipient_id,
            "recipient_type": recipient_type,
            "title": title,
            "message": message,
            "type": level,
        })
        if r.status_code != 201:
            _fail(r)
        click.secho(f"Notification {r.json()['id']} sent", fg="green")


@main.command()
@click.argument("recipient_type", type=ROLES)
@click.argument("title")
@click.option("--message", "-m", default="", help="Body text")
@click.option("--level", default="info", type=click.Choice(["success", "info", "warning"]))
@click.option("--token", "-t", "token_", help="Admin access token (or PLACEMENT_TOKEN)")
def broadcast(recipient_type: str, title: str, message: str, level: str,
              token_: Optional[str]):
    """Announce TITLE to every connected RECIPIENT_TYPE user (admin)."""
    _run(_broadcast_impl(recipient_type, title, message, level, _token(token_)))


async def _broadcast_impl(recipient_type: str, title: str, message: str,
                          level: str, token: str):
    async with _client(token) as c:
        r = await c.post("/api/admin/notifications/broadcast", json={
            "recipient_type": recipient_type,
            "title": title,
            "message": message,
            "type": level,
        })
        if r.status_code != 200:
            _fail(r)
        click.echo(f"Delivered to {r.json()['delivered_to']} open connection(s)")


if __name__ == "__main__":
    main()
