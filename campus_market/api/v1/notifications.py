from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_market.api.deps import get_current_profile
from campus_market.core.errors import success_response
from campus_market.db.session import get_db
from campus_market.models import Profile
from campus_market.schemas.notifications import NotificationList, NotificationRead
from campus_market.services import notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    rows, unread_count = notification_service.list_notifications(db, user_id=current_profile.id)
    body = NotificationList(
        notifications=[NotificationRead.model_validate(row) for row in rows],
        unread_count=unread_count,
    )
    return success_response(body.model_dump(mode="json"))


@router.post("/read-all")
def mark_all_read(
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    updated = notification_service.mark_all_read(db, user_id=current_profile.id)
    return success_response({"updated": updated})


@router.post("/{notification_id}/read")
def mark_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    notification = notification_service.mark_read(db, user_id=current_profile.id, notification_id=notification_id)
    return success_response(NotificationRead.model_validate(notification).model_dump(mode="json"))
