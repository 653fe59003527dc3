from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from campus_market.core.errors import bad_request, not_found
from campus_market.models import Listing, LostFoundItem, Message, Profile
from campus_market.schemas.messages import MessageRead
from campus_market.services import notification_service, realtime_service

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "messages"


def serialize_message(message: Message) -> dict[str, object]:
    return MessageRead.model_validate(message).model_dump(mode="json")


def _publish(db: Session, message: Message, *, op: str) -> None:
    realtime_service.enqueue_change(
        db,
        table=MESSAGES_TABLE,
        op=op,
        row=serialize_message(message),
        audience=[message.sender_id, message.receiver_id],
        occurred_at=message.created_at if op == "INSERT" else None,
    )


def list_messages_for_user(db: Session, *, user_id: str) -> list[Message]:
    logger.debug("Listing messages for user_id=%s", user_id)
    return list(
        db.scalars(
            select(Message)
            .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .order_by(Message.created_at.asc(), Message.id.asc())
        ).all()
    )


def send_message(
    db: Session,
    *,
    sender: Profile,
    receiver_id: str,
    content: str,
    listing_id: str | None = None,
    lost_found_id: str | None = None,
) -> Message:
    logger.info(
        "Send message attempt sender_id=%s receiver_id=%s listing_id=%s lost_found_id=%s",
        sender.id,
        receiver_id,
        listing_id,
        lost_found_id,
    )
    if sender.id == receiver_id:
        logger.warning("Rejected self-message sender_id=%s", sender.id)
        raise bad_request("invalid_target", "Cannot send a message to yourself")
    if listing_id and lost_found_id:
        raise bad_request("invalid_context", "A message may reference a listing or a lost-and-found item, not both")

    receiver = db.get(Profile, receiver_id)
    if receiver is None:
        raise not_found("profile_not_found", "Receiver not found")
    if listing_id and db.get(Listing, listing_id) is None:
        raise not_found("listing_not_found", "Listing not found")
    if lost_found_id and db.get(LostFoundItem, lost_found_id) is None:
        raise not_found("lost_found_not_found", "Lost and found item not found")

    message = Message(
        sender_id=sender.id,
        receiver_id=receiver_id,
        content=content,
        listing_id=listing_id or None,
        lost_found_id=lost_found_id or None,
        read=False,
    )
    db.add(message)
    db.flush()

    sender_name = sender.full_name or "Someone"
    notification_service.create_notification(
        db,
        user_id=receiver_id,
        type="message",
        content=f"{sender_name}: {content}",
        related_id=message.id,
    )
    _publish(db, message, op="INSERT")
    db.commit()
    db.refresh(message)
    logger.info("Message persisted message_id=%s sender_id=%s receiver_id=%s", message.id, sender.id, receiver_id)
    return message


def mark_message_read(db: Session, *, user_id: str, message_id: str) -> int:
    message = db.scalar(select(Message).where(Message.id == message_id, Message.receiver_id == user_id))
    if message is None or message.read:
        logger.debug("Mark read no-op message_id=%s user_id=%s", message_id, user_id)
        return 0

    message.read = True
    _publish(db, message, op="UPDATE")
    db.commit()
    logger.debug("Message marked read message_id=%s", message_id)
    return 1


def mark_conversation_read(db: Session, *, user_id: str, partner_id: str) -> int:
    unread = list(
        db.scalars(
            select(Message).where(
                Message.sender_id == partner_id,
                Message.receiver_id == user_id,
                Message.read.is_(False),
            )
        ).all()
    )
    if not unread:
        return 0

    for message in unread:
        message.read = True
        _publish(db, message, op="UPDATE")
    db.commit()
    logger.info("Conversation marked read user_id=%s partner_id=%s updated=%s", user_id, partner_id, len(unread))
    return len(unread)
