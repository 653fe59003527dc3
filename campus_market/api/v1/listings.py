from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from campus_market.api.deps import get_current_profile
from campus_market.core.errors import success_response
from campus_market.db.session import get_db
from campus_market.models import Profile
from campus_market.schemas.listings import (
    CompleteTransactionRequest,
    ListingCreateRequest,
    ListingDetail,
    ListingImageCreateRequest,
    ListingImageRead,
    ListingUpdateRequest,
    TransactionRead,
)
from campus_market.schemas.profiles import ProfilePublic
from campus_market.services import listing_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/listings", tags=["listings"])


@router.get("")
def list_listings(
    category: str | None = Query(default=None, max_length=32),
    search: str | None = Query(default=None, max_length=120),
    status_filter: str | None = Query(default=None, alias="status", max_length=16),
    user_id: str | None = Query(default=None, max_length=64),
    db: Session = Depends(get_db),
):
    rows = listing_service.list_listings(db, category=category, search=search, status=status_filter, user_id=user_id)
    return success_response({"listings": [listing_service.serialize_listing(row) for row in rows]})


@router.get("/{listing_id}")
def get_listing(listing_id: str, db: Session = Depends(get_db)):
    listing = listing_service.get_listing(db, listing_id)
    seller = db.get(Profile, listing.user_id)
    detail = ListingDetail(
        listing=listing_service.serialize_listing(listing),
        images=[ListingImageRead.model_validate(image) for image in listing.images],
        seller=ProfilePublic.model_validate(seller) if seller is not None else None,
    )
    return success_response(detail.model_dump(mode="json"))


@router.post("")
def create_listing(
    payload: ListingCreateRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    listing = listing_service.create_listing(db, owner=current_profile, payload=payload)
    return success_response(listing_service.serialize_listing(listing), status_code=status.HTTP_201_CREATED)


@router.patch("/{listing_id}")
def update_listing(
    listing_id: str,
    payload: ListingUpdateRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    listing = listing_service.update_listing(db, actor=current_profile, listing_id=listing_id, payload=payload)
    return success_response(listing_service.serialize_listing(listing))


@router.delete("/{listing_id}")
def delete_listing(
    listing_id: str,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    listing_service.delete_listing(db, actor=current_profile, listing_id=listing_id)
    return success_response({"ok": True})


@router.post("/{listing_id}/images")
def add_listing_image(
    listing_id: str,
    payload: ListingImageCreateRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    image = listing_service.add_image(db, actor=current_profile, listing_id=listing_id, url=payload.url)
    return success_response(ListingImageRead.model_validate(image).model_dump(mode="json"), status_code=status.HTTP_201_CREATED)


@router.post("/{listing_id}/complete")
def complete_transaction(
    listing_id: str,
    payload: CompleteTransactionRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    transaction = listing_service.complete_transaction(
        db,
        seller=current_profile,
        listing_id=listing_id,
        buyer_id=payload.buyer_id,
    )
    return success_response(TransactionRead.model_validate(transaction).model_dump(mode="json"))


@router.get("/{listing_id}/transaction")
def get_transaction(
    listing_id: str,
    db: Session = Depends(get_db),
    _: Profile = Depends(get_current_profile),
):
    transaction = listing_service.get_transaction(db, listing_id)
    if transaction is None:
        return success_response(None)
    return success_response(TransactionRead.model_validate(transaction).model_dump(mode="json"))
