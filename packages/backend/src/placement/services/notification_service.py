"""Notification service — the inbox plus live push.

Learn: every domain action that should reach a user (new offer, new
message, application accepted) ends up in create():
1. Row inserted in PostgreSQL (durable inbox)
2. Older rows pruned, keeping the newest N per recipient
3. Commit, then push an SSE `notification` frame via the registry

The push happens after commit so a client that re-fetches the inbox on
receipt always sees the new row. If the recipient is offline the push
is a silent no-op and the row waits for their next page load.
"""

import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from placement.config import settings
from placement.db.models import Notification, utcnow
from placement.events.types import ANNOUNCEMENT, LEVEL_INFO, NOTIFICATION
from placement.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


class NotificationNotFoundError(Exception):
    """Raised when a notification does not exist for the given recipient."""


def event_payload(n: Notification) -> dict[str, Any]:
    """SSE payload for one notification."""
    payload: dict[str, Any] = {
        "id": str(n.id),
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "createdAt": n.created_at.isoformat() if n.created_at else None,
    }
    if n.extra:
        payload["extra"] = n.extra
    return payload


class NotificationService:
    """Inbox queries and notification fan-out for one request."""

    def __init__(
        self,
        db: AsyncSession,
        registry: ConnectionRegistry,
        retention: int = settings.notification_retention,
    ):
        self.db = db
        self.registry = registry
        self.retention = retention

    # ─── Inbox ────────────────────────────────────────────

    async def list_for(
        self,
        recipient_type: str,
        recipient_id: str,
        limit: Optional[int] = None,
    ) -> list[Notification]:
        """Newest first. `limit` <= 0 or None means everything kept."""
        q = (
            select(Notification)
            .where(
                Notification.recipient_type == recipient_type,
                Notification.recipient_id == recipient_id,
            )
            .order_by(Notification.created_at.desc().nulls_last())
        )
        if limit and limit > 0:
            q = q.limit(limit)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def unread_count(self, recipient_type: str, recipient_id: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_type == recipient_type,
                Notification.recipient_id == recipient_id,
                Notification.read.is_(False),
            )
        )
        return result.scalar_one()

    async def mark_read(
        self, notification_id: uuid.UUID, recipient_type: str, recipient_id: str
    ) -> None:
        result = await self.db.execute(
            update(Notification)
            .where(
                Notification.id == notification_id,
                Notification.recipient_type == recipient_type,
                Notification.recipient_id == recipient_id,
            )
            .values(read=True, updated_at=utcnow())
        )
        if result.rowcount == 0:
            raise NotificationNotFoundError(str(notification_id))
        await self.db.commit()

    async def mark_all_read(self, recipient_type: str, recipient_id: str) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(
                Notification.recipient_type == recipient_type,
                Notification.recipient_id == recipient_id,
                Notification.read.is_(False),
            )
            .values(read=True, updated_at=utcnow())
        )
        await self.db.commit()
        return result.rowcount

    async def delete(
        self, notification_id: uuid.UUID, recipient_type: str, recipient_id: str
    ) -> None:
        result = await self.db.execute(
            delete(Notification).where(
                Notification.id == notification_id,
                Notification.recipient_type == recipient_type,
                Notification.recipient_id == recipient_id,
            )
        )
        if result.rowcount == 0:
            raise NotificationNotFoundError(str(notification_id))
        await self.db.commit()

    # ─── Create + push ────────────────────────────────────

    async def create(
        self,
        *,
        recipient_id: str,
        recipient_type: str,
        title: str,
        message: str = "",
        type: str = LEVEL_INFO,
        extra: Optional[dict[str, Any]] = None,
    ) -> Notification:
        """Persist a notification, prune old ones, push it live."""
        n = await self._insert(
            recipient_id=recipient_id,
            recipient_type=recipient_type,
            title=title,
            message=message,
            type=type,
            extra=extra,
        )
        await self.db.commit()
        await self.db.refresh(n)
        self._push(n)
        return n

    async def create_many(self, items: list[dict[str, Any]]) -> list[Notification]:
        """Create several notifications in one transaction, then push each."""
        if not items:
            return []
        created = [await self._insert(**item) for item in items]
        await self.db.commit()
        for n in created:
            await self.db.refresh(n)
            self._push(n)
        return created

    # ─── Internals ────────────────────────────────────────

    async def _insert(
        self,
        *,
        recipient_id: str,
        recipient_type: str,
        title: str,
        message: str = "",
        type: str = LEVEL_INFO,
        extra: Optional[dict[str, Any]] = None,
    ) -> Notification:
        n = Notification(
            recipient_id=recipient_id,
            recipient_type=recipient_type,
            title=title,
            message=message,
            type=type or LEVEL_INFO,
            read=False,
            created_at=utcnow(),
            extra=extra or {},
        )
        self.db.add(n)
        await self.db.flush()
        await self._prune(recipient_id, recipient_type)
        return n

    async def _prune(self, recipient_id: str, recipient_type: str) -> None:
        """Keep only the newest `retention` notifications for a recipient."""
        stale = (
            select(Notification.id)
            .where(
                Notification.recipient_id == recipient_id,
                Notification.recipient_type == recipient_type,
            )
            .order_by(Notification.created_at.desc().nulls_last())
            .offset(self.retention)
        )
        await self.db.execute(
            delete(Notification)
            .where(Notification.id.in_(stale))
            .execution_options(synchronize_session=False)
        )

    def _push(self, n: Notification) -> None:
        delivered = self.registry.send_to_user(
            n.recipient_id, NOTIFICATION, event_payload(n)
        )
        logger.info(
            "notifications.created",
            notification_id=str(n.id),
            recipient_id=n.recipient_id,
            recipient_type=n.recipient_type,
            delivered=delivered,
        )


def broadcast_announcement(
    registry: ConnectionRegistry,
    *,
    recipient_type: str,
    title: str,
    message: str = "",
    type: str = LEVEL_INFO,
) -> int:
    """Live announcement to every connected user of a role. Not persisted.

    Returns how many open connections accepted the frame.
    """
    delivered = registry.broadcast_to_type(
        recipient_type,
        ANNOUNCEMENT,
        {"title": title, "message": message, "type": type},
    )
    logger.info(
        "notifications.broadcast",
        recipient_type=recipient_type,
        delivered=delivered,
    )
    return delivered
