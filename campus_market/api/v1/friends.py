from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from campus_market.api.deps import get_current_profile
from campus_market.core.errors import success_response
from campus_market.db.session import get_db
from campus_market.models import Profile
from campus_market.schemas.friends import FriendRead, FriendRequestCreate, FriendRequestResponse, FriendsOverview
from campus_market.services import friend_service

router = APIRouter(prefix="/friends", tags=["friends"])


@router.get("")
def list_friends(
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    overview = friend_service.overview(db, user_id=current_profile.id)
    return success_response(FriendsOverview.model_validate(overview).model_dump(mode="json"))


@router.post("/requests")
def send_friend_request(
    payload: FriendRequestCreate,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    request = friend_service.send_request(db, sender=current_profile, receiver_id=payload.receiver_id)
    return success_response(FriendRead.model_validate(request).model_dump(mode="json"), status_code=status.HTTP_201_CREATED)


@router.post("/requests/{request_id}/respond")
def respond_to_friend_request(
    request_id: str,
    payload: FriendRequestResponse,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    request = friend_service.respond(db, receiver=current_profile, request_id=request_id, accept=payload.accept)
    return success_response(FriendRead.model_validate(request).model_dump(mode="json"))
