from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_market.core.errors import not_found
from campus_market.models import Profile
from campus_market.schemas.profiles import ProfileUpdateRequest
from campus_market.services.realtime_service import serialize_datetime

logger = logging.getLogger(__name__)


def fetch_profiles_by_ids(db: Session, profile_ids: Iterable[str]) -> list[Profile]:
    normalized_ids = [profile_id.strip() for profile_id in profile_ids if isinstance(profile_id, str) and profile_id.strip()]
    if not normalized_ids:
        return []

    deduped_ids = list(dict.fromkeys(normalized_ids))
    rows = db.scalars(select(Profile).where(Profile.id.in_(deduped_ids)).order_by(Profile.id.asc())).all()
    logger.debug("Fetched profiles requested=%s returned=%s", len(deduped_ids), len(rows))
    return list(rows)


def get_profile(db: Session, profile_id: str) -> Profile:
    profile = db.get(Profile, profile_id)
    if profile is None:
        raise not_found("profile_not_found", "Profile not found")
    return profile


def serialize_profile_public(profile: Profile) -> dict[str, object]:
    return {
        "id": profile.id,
        "full_name": profile.full_name,
        "student_id": profile.student_id,
        "bio": profile.bio,
        "is_blocked": profile.is_blocked,
        "created_at": serialize_datetime(profile.created_at),
        "last_seen_at": serialize_datetime(profile.last_seen_at),
    }


def profile_id_by_email(db: Session, email: str) -> str | None:
    normalized = email.strip().lower()
    profile_id = db.scalar(select(Profile.id).where(Profile.email == normalized))
    logger.debug("Email lookup email=%s found=%s", normalized, profile_id is not None)
    return profile_id


def update_profile(db: Session, profile: Profile, payload: ProfileUpdateRequest) -> Profile:
    changes = payload.model_dump(exclude_unset=True)
    for field_name, value in changes.items():
        setattr(profile, field_name, value)
    db.commit()
    db.refresh(profile)
    logger.info("Profile updated profile_id=%s fields=%s", profile.id, sorted(changes))
    return profile


def touch_last_seen(db: Session, profile: Profile) -> None:
    profile.last_seen_at = datetime.now(UTC)
    db.commit()
