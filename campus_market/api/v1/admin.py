from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_market.api.deps import get_admin_profile
from campus_market.core.errors import success_response
from campus_market.db.session import get_db
from campus_market.models import Profile
from campus_market.schemas.admin import AdminStats
from campus_market.schemas.profiles import ProfilePrivate
from campus_market.services import admin_service, listing_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/stats")
def stats(
    db: Session = Depends(get_db),
    _: Profile = Depends(get_admin_profile),
):
    return success_response(AdminStats.model_validate(admin_service.dashboard_stats(db)).model_dump(mode="json"))


@router.get("/profiles")
def list_profiles(
    db: Session = Depends(get_db),
    _: Profile = Depends(get_admin_profile),
):
    rows = admin_service.list_profiles(db)
    return success_response({"profiles": [ProfilePrivate.model_validate(row).model_dump(mode="json") for row in rows]})


@router.post("/profiles/{profile_id}/block")
def toggle_block(
    profile_id: str,
    db: Session = Depends(get_db),
    admin: Profile = Depends(get_admin_profile),
):
    profile = admin_service.toggle_block(db, admin=admin, profile_id=profile_id)
    return success_response(ProfilePrivate.model_validate(profile).model_dump(mode="json"))


@router.post("/profiles/{profile_id}/admin")
def toggle_admin(
    profile_id: str,
    db: Session = Depends(get_db),
    admin: Profile = Depends(get_admin_profile),
):
    profile = admin_service.toggle_admin(db, admin=admin, profile_id=profile_id)
    return success_response(ProfilePrivate.model_validate(profile).model_dump(mode="json"))


@router.post("/listings/{listing_id}/deactivate")
def deactivate_listing(
    listing_id: str,
    db: Session = Depends(get_db),
    _: Profile = Depends(get_admin_profile),
):
    listing = admin_service.deactivate_listing(db, listing_id=listing_id)
    return success_response(listing_service.serialize_listing(listing))


@router.delete("/listings/{listing_id}")
def delete_listing(
    listing_id: str,
    db: Session = Depends(get_db),
    admin: Profile = Depends(get_admin_profile),
):
    listing_service.delete_listing(db, actor=admin, listing_id=listing_id)
    return success_response({"ok": True})
