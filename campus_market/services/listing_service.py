from __future__ import annotations

from datetime import UTC, datetime
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from campus_market.core.errors import bad_request, forbidden, not_found
from campus_market.models import Listing, ListingImage, Profile, Transaction
from campus_market.schemas.listings import (
    ListingCreateRequest,
    ListingRead,
    ListingUpdateRequest,
)
from campus_market.services import realtime_service

logger = logging.getLogger(__name__)

LISTINGS_TABLE = "listings"


def serialize_listing(listing: Listing) -> dict[str, object]:
    return ListingRead.model_validate(listing).model_dump(mode="json")


def _publish(db: Session, listing: Listing, *, op: str) -> None:
    # Listings are public rows: an empty audience reaches every subscriber.
    realtime_service.enqueue_change(db, table=LISTINGS_TABLE, op=op, row=serialize_listing(listing))


def list_listings(
    db: Session,
    *,
    category: str | None = None,
    search: str | None = None,
    status: str | None = None,
    user_id: str | None = None,
) -> list[Listing]:
    query = select(Listing)
    if category:
        query = query.where(Listing.category == category)
    if search:
        query = query.where(func.lower(Listing.title).like(f"%{search.lower()}%"))
    if status:
        query = query.where(Listing.status == status)
    if user_id:
        query = query.where(Listing.user_id == user_id)
    rows = db.scalars(query.order_by(Listing.created_at.desc(), Listing.id.asc())).all()
    logger.debug(
        "Listed listings category=%s search=%s status=%s user_id=%s count=%s",
        category,
        search,
        status,
        user_id,
        len(rows),
    )
    return list(rows)


def get_listing(db: Session, listing_id: str) -> Listing:
    listing = db.get(Listing, listing_id)
    if listing is None:
        raise not_found("listing_not_found", "Listing not found")
    return listing


def create_listing(db: Session, *, owner: Profile, payload: ListingCreateRequest) -> Listing:
    listing = Listing(
        user_id=owner.id,
        title=payload.title,
        description=payload.description,
        price=payload.price,
        category=payload.category,
        condition=payload.condition,
        status="active",
    )
    db.add(listing)
    db.flush()
    _publish(db, listing, op="INSERT")
    db.commit()
    db.refresh(listing)
    logger.info("Listing created listing_id=%s user_id=%s", listing.id, owner.id)
    return listing


def update_listing(db: Session, *, actor: Profile, listing_id: str, payload: ListingUpdateRequest) -> Listing:
    listing = get_listing(db, listing_id)
    if listing.user_id != actor.id:
        raise forbidden("Only the seller can edit this listing")

    changes = payload.model_dump(exclude_unset=True)
    for field_name, value in changes.items():
        setattr(listing, field_name, value)
    listing.updated_at = datetime.now(UTC)
    _publish(db, listing, op="UPDATE")
    db.commit()
    db.refresh(listing)
    logger.info("Listing updated listing_id=%s fields=%s", listing.id, sorted(changes))
    return listing


def add_image(db: Session, *, actor: Profile, listing_id: str, url: str) -> ListingImage:
    listing = get_listing(db, listing_id)
    if listing.user_id != actor.id:
        raise forbidden("Only the seller can add images to this listing")
    image = ListingImage(listing_id=listing.id, url=url)
    db.add(image)
    db.commit()
    db.refresh(image)
    return image


def delete_listing(db: Session, *, actor: Profile, listing_id: str) -> None:
    listing = get_listing(db, listing_id)
    if listing.user_id != actor.id and not actor.is_admin:
        raise forbidden("Only the seller or an admin can delete this listing")

    db.execute(delete(ListingImage).where(ListingImage.listing_id == listing.id))
    row = serialize_listing(listing)
    db.delete(listing)
    realtime_service.enqueue_change(db, table=LISTINGS_TABLE, op="DELETE", row=row)
    db.commit()
    logger.info("Listing deleted listing_id=%s actor_id=%s", listing_id, actor.id)


def set_status(db: Session, *, listing_id: str, status: str) -> Listing:
    listing = get_listing(db, listing_id)
    listing.status = status
    listing.updated_at = datetime.now(UTC)
    _publish(db, listing, op="UPDATE")
    db.commit()
    db.refresh(listing)
    return listing


def complete_transaction(db: Session, *, seller: Profile, listing_id: str, buyer_id: str) -> Transaction:
    listing = get_listing(db, listing_id)
    if listing.user_id != seller.id:
        raise forbidden("Only the seller can complete this transaction")
    if buyer_id == seller.id:
        raise bad_request("invalid_target", "Buyer and seller must differ")
    if db.get(Profile, buyer_id) is None:
        raise not_found("profile_not_found", "Buyer not found")

    now = datetime.now(UTC)
    transaction = db.scalar(select(Transaction).where(Transaction.listing_id == listing.id))
    if transaction is None:
        transaction = Transaction(listing_id=listing.id, buyer_id=buyer_id, seller_id=seller.id)
        db.add(transaction)
    transaction.status = "completed"
    transaction.completed_at = now

    listing.status = "sold"
    listing.updated_at = now
    _publish(db, listing, op="UPDATE")
    db.commit()
    db.refresh(transaction)
    logger.info("Transaction completed listing_id=%s buyer_id=%s seller_id=%s", listing.id, buyer_id, seller.id)
    return transaction


def get_transaction(db: Session, listing_id: str) -> Transaction | None:
    return db.scalar(select(Transaction).where(Transaction.listing_id == listing_id))
