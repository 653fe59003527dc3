from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from campus_market.api.deps import get_current_profile
from campus_market.core.errors import success_response
from campus_market.db.session import get_db
from campus_market.models import Profile
from campus_market.schemas.messages import MarkConversationReadRequest, SendMessageRequest
from campus_market.services import message_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("")
def list_messages(
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    messages = message_service.list_messages_for_user(db, user_id=current_profile.id)
    payload = [message_service.serialize_message(message) for message in messages]
    return success_response({"messages": payload})


@router.post("")
def send_message(
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    message = message_service.send_message(
        db,
        sender=current_profile,
        receiver_id=payload.receiver_id,
        content=payload.content,
        listing_id=payload.listing_id,
        lost_found_id=payload.lost_found_id,
    )
    return success_response(message_service.serialize_message(message), status_code=status.HTTP_201_CREATED)


@router.post("/read")
def mark_conversation_read(
    payload: MarkConversationReadRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    updated = message_service.mark_conversation_read(db, user_id=current_profile.id, partner_id=payload.partner_id)
    return success_response({"updated": updated})


@router.post("/{message_id}/read")
def mark_message_read(
    message_id: str,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    updated = message_service.mark_message_read(db, user_id=current_profile.id, message_id=message_id)
    return success_response({"updated": updated})
