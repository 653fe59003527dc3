from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
import hashlib
import logging
import secrets

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from campus_market.core.errors import APIError, unauthorized
from campus_market.core.settings import get_settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True, slots=True)
class AccessClaims:
    profile_id: str
    issued_at: datetime
    expires_at: datetime


def _invalid_token(message: str) -> APIError:
    return unauthorized("invalid_token", message)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def verify_and_upgrade_password(plain_password: str, hashed_password: str) -> tuple[bool, str | None]:
    """Verify a login password; the second item is a replacement hash when the stored one is outdated."""
    is_valid, new_hash = pwd_context.verify_and_update(plain_password, hashed_password)
    if is_valid and new_hash is not None:
        logger.info("Password hash scheme outdated, issuing upgrade")
    return is_valid, new_hash


def create_access_token(*, profile_id: str, expires_delta: timedelta | None = None) -> str:
    settings = get_settings()
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {
        "sub": profile_id,
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    logger.debug("Issuing access token profile_id=%s expires_at=%s", profile_id, expire.isoformat())
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> AccessClaims:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        logger.debug("Access token expired")
        raise _invalid_token("Access token has expired") from exc
    except JWTError as exc:
        logger.warning("Access token rejected error=%s", exc)
        raise _invalid_token("Invalid or expired access token") from exc

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise _invalid_token("Invalid token type")

    profile_id = payload.get("sub")
    issued_at = payload.get("iat")
    expires_at = payload.get("exp")
    if not isinstance(profile_id, str) or not profile_id:
        raise _invalid_token("Token payload is invalid")
    if not isinstance(issued_at, int) or not isinstance(expires_at, int):
        raise _invalid_token("Token payload is invalid")

    return AccessClaims(
        profile_id=profile_id,
        issued_at=datetime.fromtimestamp(issued_at, UTC),
        expires_at=datetime.fromtimestamp(expires_at, UTC),
    )


def access_token_subject(token: str) -> str:
    return decode_access_token(token).profile_id


def new_refresh_token() -> tuple[str, str]:
    """Return ``(raw, digest)``; only the digest is stored."""
    raw_token = secrets.token_urlsafe(48)
    return raw_token, refresh_token_digest(raw_token)


def refresh_token_digest(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
