from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_market.core.errors import APIError, conflict, forbidden, unauthorized
from campus_market.core.security import (
    create_access_token,
    hash_password,
    new_refresh_token,
    refresh_token_digest,
    verify_and_upgrade_password,
)
from campus_market.core.settings import get_settings
from campus_market.models import Profile, RefreshToken
from campus_market.schemas.auth import LoginRequest, RegisterRequest, TokenPair

logger = logging.getLogger(__name__)


def _invalid_refresh(message: str = "Refresh token is invalid or expired") -> APIError:
    return unauthorized("invalid_refresh_token", message)


def _issue_tokens(db: Session, profile: Profile) -> tuple[TokenPair, RefreshToken]:
    settings = get_settings()
    now = datetime.now(UTC)
    raw_token, digest = new_refresh_token()
    refresh_token = RefreshToken(
        profile_id=profile.id,
        token_hash=digest,
        issued_at=now,
        expires_at=now + timedelta(days=settings.refresh_token_expire_days),
    )
    db.add(refresh_token)
    db.flush()
    tokens = TokenPair(
        access_token=create_access_token(profile_id=profile.id),
        refresh_token=raw_token,
        token_type="bearer",
        expires_in=settings.access_token_expire_minutes * 60,
    )
    return tokens, refresh_token


def _ensure_not_blocked(profile: Profile) -> None:
    if profile.is_blocked:
        logger.warning("Blocked profile attempted to authenticate profile_id=%s", profile.id)
        raise forbidden("This account has been blocked", code="account_blocked")


def register_profile(db: Session, payload: RegisterRequest) -> tuple[Profile, TokenPair]:
    logger.info("Registering profile email=%s", payload.email)
    existing = db.scalar(select(Profile.id).where(Profile.email == payload.email))
    if existing is not None:
        raise conflict("email_taken", "Email is already registered")

    admin_emails = {email.lower() for email in get_settings().admin_emails}
    profile = Profile(
        email=payload.email,
        full_name=payload.full_name or payload.email.split("@", 1)[0],
        student_id=payload.student_id,
        password_hash=hash_password(payload.password),
        is_admin=payload.email in admin_emails,
    )
    db.add(profile)
    db.flush()

    tokens, _ = _issue_tokens(db, profile)
    db.commit()
    db.refresh(profile)
    logger.info("Profile registered profile_id=%s is_admin=%s", profile.id, profile.is_admin)
    return profile, tokens


def authenticate(db: Session, payload: LoginRequest) -> tuple[Profile, TokenPair]:
    profile = db.scalar(select(Profile).where(Profile.email == payload.email))
    if profile is None:
        logger.warning("Login failed, unknown email=%s", payload.email)
        raise unauthorized("invalid_credentials", "Invalid email or password")

    is_valid, upgraded_hash = verify_and_upgrade_password(payload.password, profile.password_hash)
    if not is_valid:
        logger.warning("Login failed, bad password profile_id=%s", profile.id)
        raise unauthorized("invalid_credentials", "Invalid email or password")
    _ensure_not_blocked(profile)

    if upgraded_hash is not None:
        profile.password_hash = upgraded_hash
    profile.last_seen_at = datetime.now(UTC)
    tokens, _ = _issue_tokens(db, profile)
    db.commit()
    db.refresh(profile)
    logger.info("Login succeeded profile_id=%s", profile.id)
    return profile, tokens


def rotate_refresh_token(db: Session, refresh_token_raw: str) -> tuple[Profile, TokenPair]:
    now = datetime.now(UTC)
    current_token = db.scalar(
        select(RefreshToken).where(RefreshToken.token_hash == refresh_token_digest(refresh_token_raw))
    )
    if current_token is None or not current_token.is_usable(now):
        raise _invalid_refresh()

    profile = db.get(Profile, current_token.profile_id)
    if profile is None:
        raise _invalid_refresh("Refresh token is invalid")
    _ensure_not_blocked(profile)

    tokens, new_token = _issue_tokens(db, profile)
    current_token.revoke(now, replaced_by=new_token)
    db.commit()
    db.refresh(profile)
    logger.debug("Refresh token rotated profile_id=%s token_id=%s", profile.id, new_token.id)
    return profile, tokens


def revoke_refresh_token(db: Session, refresh_token_raw: str) -> None:
    token = db.scalar(select(RefreshToken).where(RefreshToken.token_hash == refresh_token_digest(refresh_token_raw)))
    if token is None or token.revoked_at is not None:
        return
    token.revoke(datetime.now(UTC))
    db.commit()
    logger.info("Refresh token revoked profile_id=%s", token.profile_id)
