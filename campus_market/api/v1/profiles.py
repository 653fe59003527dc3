from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_market.api.deps import get_current_profile
from campus_market.core.errors import success_response
from campus_market.db.session import get_db
from campus_market.models import Profile
from campus_market.schemas.profiles import (
    ProfileBatchLookupRequest,
    ProfilePrivate,
    ProfilePublic,
    ProfileUpdateRequest,
)
from campus_market.schemas.ratings import RatingRead, RatingSummary
from campus_market.services import profile_service, rating_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.get("/me")
def me(current_profile: Profile = Depends(get_current_profile)):
    return success_response(ProfilePrivate.model_validate(current_profile).model_dump(mode="json"))


@router.patch("/me")
def update_me(
    payload: ProfileUpdateRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    profile = profile_service.update_profile(db, current_profile, payload)
    return success_response(ProfilePrivate.model_validate(profile).model_dump(mode="json"))


@router.post("/batch")
def batch_lookup(
    payload: ProfileBatchLookupRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    logger.debug("Profile batch lookup requested_by=%s count=%s", current_profile.id, len(payload.ids))
    rows = profile_service.fetch_profiles_by_ids(db, payload.ids)
    profiles = [ProfilePublic.model_validate(row).model_dump(mode="json") for row in rows]
    return success_response({"profiles": profiles})


@router.get("/{profile_id}")
def get_profile(
    profile_id: str,
    db: Session = Depends(get_db),
    _: Profile = Depends(get_current_profile),
):
    profile = profile_service.get_profile(db, profile_id)
    return success_response(ProfilePublic.model_validate(profile).model_dump(mode="json"))


@router.get("/{profile_id}/ratings")
def profile_ratings(
    profile_id: str,
    db: Session = Depends(get_db),
    _: Profile = Depends(get_current_profile),
):
    rows = rating_service.list_ratings_for(db, profile_id)
    payload = [
        RatingRead.model_validate(rating).model_copy(update={"from_user_name": full_name}).model_dump(mode="json")
        for rating, full_name in rows
    ]
    return success_response({"ratings": payload})


@router.get("/{profile_id}/rating-summary")
def profile_rating_summary(
    profile_id: str,
    db: Session = Depends(get_db),
    _: Profile = Depends(get_current_profile),
):
    summary = rating_service.rating_summary(db, profile_id)
    return success_response(RatingSummary.model_validate(summary).model_dump(mode="json"))
