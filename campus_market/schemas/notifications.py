from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: str
    content: str
    related_id: str | None
    read: bool
    created_at: datetime


class NotificationList(BaseModel):
    notifications: list[NotificationRead]
    unread_count: int
