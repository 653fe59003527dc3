from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campus_market.core.errors import bad_request, conflict, not_found
from campus_market.models import Profile, Rating
from campus_market.schemas.ratings import RatingCreateRequest
from campus_market.services import notification_service

logger = logging.getLogger(__name__)


def _existing_rating(db: Session, *, from_user_id: str, to_user_id: str, item_id: str | None) -> Rating | None:
    query = select(Rating).where(Rating.from_user_id == from_user_id, Rating.to_user_id == to_user_id)
    if item_id is None:
        query = query.where(Rating.item_id.is_(None))
    else:
        query = query.where(Rating.item_id == item_id)
    return db.scalar(query)


def create_rating(db: Session, *, rater: Profile, payload: RatingCreateRequest) -> Rating:
    if payload.to_user_id == rater.id:
        raise bad_request("invalid_target", "You cannot rate yourself")
    if db.get(Profile, payload.to_user_id) is None:
        raise not_found("profile_not_found", "Profile not found")
    if _existing_rating(db, from_user_id=rater.id, to_user_id=payload.to_user_id, item_id=payload.item_id):
        raise conflict("already_rated", "You have already rated this user for this item")

    rating = Rating(
        from_user_id=rater.id,
        to_user_id=payload.to_user_id,
        item_id=payload.item_id,
        rating=payload.rating,
        comment=payload.comment,
    )
    db.add(rating)
    db.flush()
    notification_service.create_notification(
        db,
        user_id=payload.to_user_id,
        type="rating",
        content=f"{rater.full_name or 'Someone'} rated you {payload.rating}/5",
        related_id=rating.id,
    )
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Rating conflict from_user_id=%s to_user_id=%s", rater.id, payload.to_user_id)
        raise conflict("already_rated", "You have already rated this user for this item") from exc
    db.refresh(rating)
    logger.info("Rating created rating_id=%s to_user_id=%s value=%s", rating.id, rating.to_user_id, rating.rating)
    return rating


def list_ratings_for(db: Session, profile_id: str) -> list[tuple[Rating, str | None]]:
    rows = db.execute(
        select(Rating, Profile.full_name)
        .join(Profile, Profile.id == Rating.from_user_id)
        .where(Rating.to_user_id == profile_id)
        .order_by(Rating.created_at.desc())
    ).all()
    return [(rating, full_name) for rating, full_name in rows]


def rating_summary(db: Session, profile_id: str) -> dict[str, object]:
    count, total = db.execute(
        select(func.count(Rating.id), func.coalesce(func.sum(Rating.rating), 0)).where(Rating.to_user_id == profile_id)
    ).one()
    if not count:
        return {"average": 0.0, "count": 0}
    return {"average": round(total / count, 1), "count": int(count)}


def has_rated(db: Session, *, from_user_id: str, to_user_id: str, item_id: str | None = None) -> bool:
    query = select(Rating.id).where(Rating.from_user_id == from_user_id, Rating.to_user_id == to_user_id)
    if item_id:
        query = query.where(Rating.item_id == item_id)
    return db.scalar(query.limit(1)) is not None
