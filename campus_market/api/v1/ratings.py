from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from campus_market.api.deps import get_current_profile
from campus_market.core.errors import success_response
from campus_market.db.session import get_db
from campus_market.models import Profile
from campus_market.schemas.ratings import RatingCreateRequest, RatingRead
from campus_market.services import rating_service

router = APIRouter(prefix="/ratings", tags=["ratings"])


@router.post("")
def create_rating(
    payload: RatingCreateRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    rating = rating_service.create_rating(db, rater=current_profile, payload=payload)
    body = RatingRead.model_validate(rating).model_copy(update={"from_user_name": current_profile.full_name})
    return success_response(body.model_dump(mode="json"), status_code=status.HTTP_201_CREATED)


@router.get("/has-rated")
def has_rated(
    to_user_id: str = Query(min_length=1, max_length=64),
    item_id: str | None = Query(default=None, max_length=64),
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    result = rating_service.has_rated(db, from_user_id=current_profile.id, to_user_id=to_user_id, item_id=item_id)
    return success_response({"has_rated": result})
