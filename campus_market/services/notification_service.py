from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from campus_market.core.errors import not_found
from campus_market.models import Notification
from campus_market.schemas.notifications import NotificationRead
from campus_market.services import realtime_service

logger = logging.getLogger(__name__)

PREVIEW_MAX_LENGTH = 120


def _serialize(notification: Notification) -> dict[str, object]:
    return NotificationRead.model_validate(notification).model_dump(mode="json")


def create_notification(
    db: Session,
    *,
    user_id: str,
    type: str,
    content: str,
    related_id: str | None = None,
) -> Notification:
    """Adds a notification to the session without committing; the caller owns the transaction."""
    notification = Notification(
        user_id=user_id,
        type=type,
        content=content[:PREVIEW_MAX_LENGTH],
        related_id=related_id,
        read=False,
    )
    db.add(notification)
    db.flush()
    realtime_service.enqueue_change(
        db,
        table="notifications",
        op="INSERT",
        row=_serialize(notification),
        audience=[user_id],
        occurred_at=notification.created_at,
    )
    logger.debug("Notification staged user_id=%s type=%s related_id=%s", user_id, type, related_id)
    return notification


def list_notifications(db: Session, *, user_id: str) -> tuple[list[Notification], int]:
    rows = list(
        db.scalars(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.asc())
        ).all()
    )
    unread = db.scalar(
        select(func.count()).select_from(Notification).where(Notification.user_id == user_id, Notification.read.is_(False))
    )
    return rows, int(unread or 0)


def mark_read(db: Session, *, user_id: str, notification_id: str) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise not_found("notification_not_found", "Notification not found")
    if not notification.read:
        notification.read = True
        realtime_service.enqueue_change(
            db, table="notifications", op="UPDATE", row=_serialize(notification), audience=[user_id]
        )
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, *, user_id: str) -> int:
    unread_rows = list(
        db.scalars(select(Notification).where(Notification.user_id == user_id, Notification.read.is_(False))).all()
    )
    if not unread_rows:
        return 0
    for row in unread_rows:
        row.read = True
        realtime_service.enqueue_change(db, table="notifications", op="UPDATE", row=_serialize(row), audience=[user_id])
    db.commit()
    logger.info("Marked all notifications read user_id=%s count=%s", user_id, len(unread_rows))
    return len(unread_rows)
