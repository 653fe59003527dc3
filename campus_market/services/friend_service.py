from __future__ import annotations

import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from campus_market.core.errors import bad_request, conflict, not_found
from campus_market.models import Friend, Profile
from campus_market.services import notification_service, profile_service

logger = logging.getLogger(__name__)


def send_request(db: Session, *, sender: Profile, receiver_id: str) -> Friend:
    if sender.id == receiver_id:
        raise bad_request("invalid_target", "You cannot befriend yourself")
    if db.get(Profile, receiver_id) is None:
        raise not_found("profile_not_found", "Profile not found")

    existing = db.scalar(
        select(Friend).where(
            or_(
                and_(Friend.sender_id == sender.id, Friend.receiver_id == receiver_id),
                and_(Friend.sender_id == receiver_id, Friend.receiver_id == sender.id),
            ),
            Friend.status.in_(["pending", "accepted"]),
        )
    )
    if existing is not None:
        logger.debug("Duplicate friend request sender_id=%s receiver_id=%s", sender.id, receiver_id)
        raise conflict("duplicate_request", "A friend request already exists")

    request = Friend(sender_id=sender.id, receiver_id=receiver_id, status="pending")
    db.add(request)
    db.flush()
    notification_service.create_notification(
        db,
        user_id=receiver_id,
        type="friend_request",
        content=f"{sender.full_name or 'Someone'} sent you a friend request",
        related_id=request.id,
    )
    db.commit()
    db.refresh(request)
    logger.info("Friend request sent request_id=%s sender_id=%s receiver_id=%s", request.id, sender.id, receiver_id)
    return request


def respond(db: Session, *, receiver: Profile, request_id: str, accept: bool) -> Friend:
    request = db.get(Friend, request_id)
    if request is None or request.receiver_id != receiver.id:
        raise not_found("friend_request_not_found", "Friend request not found")
    if request.status != "pending":
        raise conflict("invalid_status", "Friend request was already answered")

    request.status = "accepted" if accept else "rejected"
    db.commit()
    db.refresh(request)
    logger.info("Friend request answered request_id=%s status=%s", request.id, request.status)
    return request


def overview(db: Session, *, user_id: str) -> dict[str, list[dict[str, object]]]:
    accepted = list(
        db.scalars(
            select(Friend)
            .where(or_(Friend.sender_id == user_id, Friend.receiver_id == user_id), Friend.status == "accepted")
            .order_by(Friend.created_at.asc())
        ).all()
    )
    pending = list(
        db.scalars(
            select(Friend)
            .where(Friend.receiver_id == user_id, Friend.status == "pending")
            .order_by(Friend.created_at.asc())
        ).all()
    )

    counterpart_ids = {row.receiver_id if row.sender_id == user_id else row.sender_id for row in accepted}
    counterpart_ids.update(row.sender_id for row in pending)
    profiles = {
        profile.id: profile_service.serialize_profile_public(profile)
        for profile in profile_service.fetch_profiles_by_ids(db, counterpart_ids)
    }

    def _with_profile(row: Friend, counterpart_id: str) -> dict[str, object]:
        return {
            "id": row.id,
            "sender_id": row.sender_id,
            "receiver_id": row.receiver_id,
            "status": row.status,
            "created_at": row.created_at,
            "profile": profiles.get(counterpart_id),
        }

    return {
        "friends": [
            _with_profile(row, row.receiver_id if row.sender_id == user_id else row.sender_id) for row in accepted
        ],
        "pending_requests": [_with_profile(row, row.sender_id) for row in pending],
    }
