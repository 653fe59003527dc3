from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_market.core.errors import bad_request, conflict, forbidden, not_found
from campus_market.models import LostFoundItem, Profile
from campus_market.schemas.lost_found import LostFoundCreateRequest, LostFoundRead
from campus_market.services import notification_service, realtime_service

logger = logging.getLogger(__name__)


def _publish(db: Session, item: LostFoundItem, *, op: str) -> None:
    realtime_service.enqueue_change(
        db,
        table="lost_found",
        op=op,
        row=LostFoundRead.model_validate(item).model_dump(mode="json"),
    )


def list_items(db: Session, *, status: str | None = None) -> list[LostFoundItem]:
    query = select(LostFoundItem)
    if status:
        query = query.where(LostFoundItem.status == status)
    return list(db.scalars(query.order_by(LostFoundItem.created_at.desc(), LostFoundItem.id.asc())).all())


def get_item(db: Session, item_id: str) -> LostFoundItem:
    item = db.get(LostFoundItem, item_id)
    if item is None:
        raise not_found("lost_found_not_found", "Lost and found item not found")
    return item


def create_item(db: Session, *, owner: Profile, payload: LostFoundCreateRequest) -> LostFoundItem:
    item = LostFoundItem(user_id=owner.id, **payload.model_dump())
    db.add(item)
    db.flush()
    _publish(db, item, op="INSERT")
    db.commit()
    db.refresh(item)
    logger.info("Lost and found item reported item_id=%s user_id=%s", item.id, owner.id)
    return item


def claim_item(db: Session, *, claimant: Profile, item_id: str) -> LostFoundItem:
    item = get_item(db, item_id)
    if item.user_id == claimant.id:
        raise bad_request("invalid_target", "You cannot claim your own report")
    if item.status == "claimed":
        raise conflict("invalid_status", "Item has already been claimed")

    item.status = "claimed"
    item.claimed_by = claimant.id
    notification_service.create_notification(
        db,
        user_id=item.user_id,
        type="lost_found_claim",
        content=f'{claimant.full_name or "Someone"} claimed "{item.title}"',
        related_id=item.id,
    )
    _publish(db, item, op="UPDATE")
    db.commit()
    db.refresh(item)
    logger.info("Lost and found item claimed item_id=%s claimant_id=%s", item.id, claimant.id)
    return item


def delete_item(db: Session, *, actor: Profile, item_id: str) -> None:
    item = get_item(db, item_id)
    if item.user_id != actor.id and not actor.is_admin:
        raise forbidden("Only the reporter or an admin can delete this item")
    row = LostFoundRead.model_validate(item).model_dump(mode="json")
    db.delete(item)
    realtime_service.enqueue_change(db, table="lost_found", op="DELETE", row=row)
    db.commit()
    logger.info("Lost and found item deleted item_id=%s actor_id=%s", item_id, actor.id)
