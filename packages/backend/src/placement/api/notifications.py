"""Notifications API — inbox routes and the SSE subscribe endpoint.

Learn: the three roles get identical route sets, each guarded by its
own role check:
- GET    /{role}/notifications/subscribe   → live event stream
- GET    /{role}/notifications             → inbox, newest first
- GET    /{role}/notifications/unread-count
- PATCH  /{role}/notifications/read-all
- PATCH  /{role}/notifications/:id/read
- DELETE /{role}/notifications/:id

Admins can also create/push notifications:
- POST /admin/notifications            → persist + push to one user
- POST /admin/notifications/broadcast  → live announcement to a role

The subscribe route takes no DB session; a session
dependency would stay checked out for the whole life of the stream.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from placement.auth.dependencies import CurrentIdentity, require_role
from placement.db.engine import get_db
from placement.realtime.registry import USER_TYPES, ConnectionRegistry, get_registry
from placement.realtime.sse import subscribe_response
from placement.schemas.notification import (
    BroadcastCreate,
    BroadcastResult,
    MessageResponse,
    NotificationCreate,
    NotificationRead,
    UnreadCount,
)
from placement.services.notification_service import (
    NotificationNotFoundError,
    NotificationService,
    broadcast_announcement,
)


def _get_service(
    db: AsyncSession = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
) -> NotificationService:
    return NotificationService(db=db, registry=registry)


def _parse_limit(raw: Optional[str]) -> Optional[int]:
    """Positive integer or None; anything else means no limit."""
    try:
        limit = int(raw) if raw is not None else None
    except ValueError:
        return None
    return limit if limit and limit > 0 else None


def build_notifications_router(role: str) -> APIRouter:
    """Inbox + subscribe routes for one role."""
    router = APIRouter(prefix=f"/{role}/notifications")
    current_user = require_role(role)

    @router.get("/subscribe", include_in_schema=False)
    async def subscribe(
        identity: CurrentIdentity = Depends(current_user),
        registry: ConnectionRegistry = Depends(get_registry),
    ):
        """Open the live notification stream (text/event-stream)."""
        return subscribe_response(registry, identity.user_id, role)

    @router.get("", response_model=list[NotificationRead])
    async def list_notifications(
        limit: Optional[str] = Query(None),
        identity: CurrentIdentity = Depends(current_user),
        svc: NotificationService = Depends(_get_service),
    ):
        rows = await svc.list_for(role, identity.user_id, _parse_limit(limit))
        return [NotificationRead.from_model(n) for n in rows]

    @router.get("/unread-count", response_model=UnreadCount)
    async def unread_count(
        identity: CurrentIdentity = Depends(current_user),
        svc: NotificationService = Depends(_get_service),
    ):
        return UnreadCount(count=await svc.unread_count(role, identity.user_id))

    @router.patch("/read-all", response_model=MessageResponse)
    async def mark_all_read(
        identity: CurrentIdentity = Depends(current_user),
        svc: NotificationService = Depends(_get_service),
    ):
        await svc.mark_all_read(role, identity.user_id)
        return MessageResponse(message="Notifications updated.")

    @router.patch("/{notification_id}/read", response_model=MessageResponse)
    async def mark_read(
        notification_id: uuid.UUID,
        identity: CurrentIdentity = Depends(current_user),
        svc: NotificationService = Depends(_get_service),
    ):
        try:
            await svc.mark_read(notification_id, role, identity.user_id)
        except NotificationNotFoundError:
            raise HTTPException(status_code=404, detail="Notification not found.")
        return MessageResponse(message="Notification updated.")

    @router.delete("/{notification_id}", response_model=MessageResponse)
    async def delete_notification(
        notification_id: uuid.UUID,
        identity: CurrentIdentity = Depends(current_user),
        svc: NotificationService = Depends(_get_service),
    ):
        try:
            await svc.delete(notification_id, role, identity.user_id)
        except NotificationNotFoundError:
            raise HTTPException(status_code=404, detail="Notification not found.")
        return MessageResponse(message="Notification deleted.")

    return router


# ─── Admin: create + push ───────────────────────────────

admin_router = APIRouter(
    prefix="/admin/notifications",
    dependencies=[Depends(require_role("admin"))],
)


@admin_router.post("", response_model=NotificationRead, status_code=201)
async def create_notification(
    body: NotificationCreate,
    svc: NotificationService = Depends(_get_service),
):
    """Persist a notification and push it to the recipient's open streams."""
    n = await svc.create(
        recipient_id=body.recipient_id,
        recipient_type=body.recipient_type,
        title=body.title,
        message=body.message,
        type=body.type,
        extra=body.extra,
    )
    return NotificationRead.from_model(n)


@admin_router.post("/broadcast", response_model=BroadcastResult)
async def broadcast(
    body: BroadcastCreate,
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Announce to every connected user of a role (live only)."""
    delivered = broadcast_announcement(
        registry,
        recipient_type=body.recipient_type,
        title=body.title,
        message=body.message,
        type=body.type,
    )
    return BroadcastResult(delivered_to=delivered)


role_routers = [build_notifications_router(role) for role in USER_TYPES]
