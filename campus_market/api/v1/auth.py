from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from campus_market.core.errors import success_response
from campus_market.core.rate_limit import enforce_auth_rate_limit
from campus_market.db.session import get_db
from campus_market.schemas.auth import AuthResponse, LoginRequest, LogoutRequest, RefreshRequest, RegisterRequest
from campus_market.schemas.profiles import ProfilePrivate
from campus_market.services import auth_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_body(profile, tokens) -> dict[str, object]:
    body = AuthResponse(profile=ProfilePrivate.model_validate(profile), tokens=tokens)
    return body.model_dump(mode="json")


@router.post("/register", dependencies=[Depends(enforce_auth_rate_limit)])
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    logger.info("Register requested email=%s", payload.email)
    profile, tokens = auth_service.register_profile(db, payload)
    return success_response(_auth_body(profile, tokens), status_code=status.HTTP_201_CREATED)


@router.post("/login", dependencies=[Depends(enforce_auth_rate_limit)])
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    logger.info("Login requested email=%s", payload.email)
    profile, tokens = auth_service.authenticate(db, payload)
    return success_response(_auth_body(profile, tokens))


@router.post("/refresh", dependencies=[Depends(enforce_auth_rate_limit)])
def refresh(payload: RefreshRequest, db: Session = Depends(get_db)):
    logger.debug("Token refresh requested")
    profile, tokens = auth_service.rotate_refresh_token(db, payload.refresh_token)
    return success_response(_auth_body(profile, tokens))


@router.post("/logout")
def logout(payload: LogoutRequest, db: Session = Depends(get_db)):
    logger.debug("Logout requested")
    auth_service.revoke_refresh_token(db, payload.refresh_token)
    return success_response({"ok": True})
