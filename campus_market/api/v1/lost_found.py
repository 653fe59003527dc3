from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from campus_market.api.deps import get_current_profile
from campus_market.core.errors import success_response
from campus_market.db.session import get_db
from campus_market.models import Profile
from campus_market.schemas.lost_found import LostFoundCreateRequest, LostFoundDetail, LostFoundRead
from campus_market.schemas.profiles import ProfilePublic
from campus_market.services import lost_found_service

router = APIRouter(prefix="/lost-found", tags=["lost-found"])


def _dump(item) -> dict[str, object]:
    return LostFoundRead.model_validate(item).model_dump(mode="json")


@router.get("")
def list_items(
    status_filter: str | None = Query(default=None, alias="status", max_length=16),
    db: Session = Depends(get_db),
):
    items = lost_found_service.list_items(db, status=status_filter)
    return success_response({"items": [_dump(item) for item in items]})


@router.get("/{item_id}")
def get_item(item_id: str, db: Session = Depends(get_db)):
    item = lost_found_service.get_item(db, item_id)
    owner = db.get(Profile, item.user_id)
    detail = LostFoundDetail(
        item=LostFoundRead.model_validate(item),
        owner=ProfilePublic.model_validate(owner) if owner is not None else None,
    )
    return success_response(detail.model_dump(mode="json"))


@router.post("")
def create_item(
    payload: LostFoundCreateRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    item = lost_found_service.create_item(db, owner=current_profile, payload=payload)
    return success_response(_dump(item), status_code=status.HTTP_201_CREATED)


@router.post("/{item_id}/claim")
def claim_item(
    item_id: str,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    item = lost_found_service.claim_item(db, claimant=current_profile, item_id=item_id)
    return success_response(_dump(item))


@router.delete("/{item_id}")
def delete_item(
    item_id: str,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    lost_found_service.delete_item(db, actor=current_profile, item_id=item_id)
    return success_response({"ok": True})
