from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_market.api.deps import get_current_profile
from campus_market.core.errors import success_response
from campus_market.db.session import get_db
from campus_market.models import Profile
from campus_market.schemas.profiles import EmailLookupRequest
from campus_market.services import profile_service

router = APIRouter(prefix="/rpc", tags=["rpc"])


@router.post("/is_admin")
def is_admin(current_profile: Profile = Depends(get_current_profile)):
    return success_response(bool(current_profile.is_admin))


@router.post("/user_id_by_email")
def user_id_by_email(
    payload: EmailLookupRequest,
    db: Session = Depends(get_db),
    _: Profile = Depends(get_current_profile),
):
    return success_response(profile_service.profile_id_by_email(db, payload.email))
