from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from campus_market.core.errors import forbidden, unauthorized
from campus_market.core.security import access_token_subject
from campus_market.db.session import get_db
from campus_market.models import Profile
from campus_market.services import admin_service, profile_service

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login")

LAST_SEEN_RESOLUTION = timedelta(minutes=1)


def _needs_touch(profile: Profile, now: datetime) -> bool:
    if profile.last_seen_at is None:
        return True
    last_seen = profile.last_seen_at
    if last_seen.tzinfo is None:
        last_seen = last_seen.replace(tzinfo=UTC)
    return now - last_seen >= LAST_SEEN_RESOLUTION


def get_current_profile(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Profile:
    logger.debug("Resolving current profile from access token")
    profile_id = access_token_subject(token)

    profile = db.get(Profile, profile_id)
    if profile is None:
        logger.warning("Token profile_id=%s not found", profile_id)
        raise unauthorized("invalid_token", "Token profile was not found")
    if profile.is_blocked:
        logger.warning("Blocked profile rejected profile_id=%s", profile_id)
        raise forbidden("This account has been blocked", code="account_blocked")

    if _needs_touch(profile, datetime.now(UTC)):
        profile_service.touch_last_seen(db, profile)
    logger.debug("Resolved current profile profile_id=%s", profile.id)
    return profile


def get_admin_profile(current_profile: Profile = Depends(get_current_profile)) -> Profile:
    admin_service.require_admin(current_profile)
    return current_profile
