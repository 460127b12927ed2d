"""Pydantic schemas for notifications.

Learn: the JSON contract is shared with both front-ends, which predate
this service, so the read model keeps their camelCase `createdAt` and
the `_id` alias the legacy Angular client still reads.
"""

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["student", "company", "admin"]


# ─── Create (admin → platform) ──────────────────────────


class NotificationCreate(BaseModel):
    """Create and push one notification."""
    recipient_id: str = Field(..., min_length=1, description="Recipient user id")
    recipient_type: Role = Field(..., description="student, company or admin")
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field("", description="Body text")
    type: str = Field("info", description="success, info, warning, ...")
    extra: dict[str, Any] = Field(default_factory=dict)


class BroadcastCreate(BaseModel):
    """Live announcement to every connected user of a role (not persisted)."""
    recipient_type: Role
    title: str = Field(..., min_length=1, max_length=255)
    message: str = ""
    type: str = "info"


# ─── Read (platform → client) ───────────────────────────


class NotificationRead(BaseModel):
    id: uuid.UUID
    legacy_id: uuid.UUID = Field(alias="_id")
    title: str
    message: str
    type: str
    read: bool
    createdAt: Optional[datetime]
    extra: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @classmethod
    def from_model(cls, n) -> "NotificationRead":
        return cls(
            id=n.id,
            legacy_id=n.id,
            title=n.title,
            message=n.message,
            type=n.type,
            read=n.read,
            createdAt=n.created_at,
            extra=n.extra or {},
        )


class UnreadCount(BaseModel):
    count: int


class MessageResponse(BaseModel):
    message: str


class BroadcastResult(BaseModel):
    delivered_to: int
