from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from campus_market.core.errors import bad_request, forbidden
from campus_market.models import Listing, Profile, Rating, Transaction
from campus_market.services import listing_service, profile_service

logger = logging.getLogger(__name__)


def require_admin(profile: Profile) -> None:
    if not profile.is_admin:
        logger.warning("Admin access denied profile_id=%s", profile.id)
        raise forbidden("Admin privileges required")


def _count(db: Session, model: type, *criteria: object) -> int:
    query = select(func.count()).select_from(model)
    if criteria:
        query = query.where(*criteria)
    return int(db.scalar(query) or 0)


def dashboard_stats(db: Session) -> dict[str, object]:
    by_category = db.execute(
        select(Listing.category, func.count(Listing.id))
        .where(Listing.status == "active")
        .group_by(Listing.category)
        .order_by(Listing.category.asc())
    ).all()
    return {
        "profiles": _count(db, Profile),
        "listings": _count(db, Listing),
        "active_listings": _count(db, Listing, Listing.status == "active"),
        "sold_listings": _count(db, Listing, Listing.status == "sold"),
        "transactions": _count(db, Transaction),
        "ratings": _count(db, Rating),
        "active_listings_by_category": {category: int(count) for category, count in by_category},
    }


def list_profiles(db: Session) -> list[Profile]:
    return list(db.scalars(select(Profile).order_by(Profile.created_at.desc(), Profile.id.asc())).all())


def toggle_block(db: Session, *, admin: Profile, profile_id: str) -> Profile:
    target = profile_service.get_profile(db, profile_id)
    if target.id == admin.id:
        raise bad_request("invalid_target", "Admins cannot block themselves")
    target.is_blocked = not target.is_blocked
    db.commit()
    db.refresh(target)
    logger.info("Profile block toggled profile_id=%s is_blocked=%s by=%s", target.id, target.is_blocked, admin.id)
    return target


def toggle_admin(db: Session, *, admin: Profile, profile_id: str) -> Profile:
    target = profile_service.get_profile(db, profile_id)
    if target.id == admin.id:
        raise bad_request("invalid_target", "Admins cannot change their own role")
    target.is_admin = not target.is_admin
    db.commit()
    db.refresh(target)
    logger.info("Profile admin toggled profile_id=%s is_admin=%s by=%s", target.id, target.is_admin, admin.id)
    return target


def deactivate_listing(db: Session, *, listing_id: str) -> Listing:
    listing = listing_service.set_status(db, listing_id=listing_id, status="inactive")
    logger.info("Listing deactivated listing_id=%s", listing_id)
    return listing
