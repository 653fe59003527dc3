"""Pure projections from a flat message list to conversation state.

Everything here is recomputed from scratch on every call; nothing keeps incremental state.
Cost is linear in the number of messages.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Mapping

from campus_market.sync.records import ConversationPartner, MessageRecord, ProfileRecord


def partition_by_partner(messages: Iterable[MessageRecord], current_user_id: str) -> dict[str, list[MessageRecord]]:
    partitions: dict[str, list[MessageRecord]] = defaultdict(list)
    for message in messages:
        if not message.involves(current_user_id):
            continue
        partitions[message.other_party(current_user_id)].append(message)
    for partner_messages in partitions.values():
        partner_messages.sort(key=lambda message: message.created_at)
    return dict(partitions)


def count_unread(messages: Iterable[MessageRecord], current_user_id: str, *, partner_id: str | None = None) -> int:
    return sum(
        1
        for message in messages
        if message.is_unread_for(current_user_id) and (partner_id is None or message.sender_id == partner_id)
    )


def aggregate_conversations(
    messages: Iterable[MessageRecord],
    profiles: Mapping[str, ProfileRecord],
    current_user_id: str,
    *,
    extra_partner_ids: Iterable[str] = (),
) -> list[ConversationPartner]:
    partitions = partition_by_partner(messages, current_user_id)
    for partner_id in extra_partner_ids:
        if partner_id != current_user_id:
            partitions.setdefault(partner_id, [])

    partners: list[ConversationPartner] = []
    for partner_id, partner_messages in partitions.items():
        partners.append(
            ConversationPartner(
                profile=profiles.get(partner_id) or ProfileRecord.placeholder(partner_id),
                last_message=partner_messages[-1] if partner_messages else None,
                unread_count=count_unread(partner_messages, current_user_id, partner_id=partner_id),
            )
        )

    with_messages = [partner for partner in partners if partner.last_message is not None]
    without_messages = [partner for partner in partners if partner.last_message is None]
    with_messages.sort(key=lambda partner: (partner.last_message.created_at, partner.partner_id), reverse=True)
    without_messages.sort(key=lambda partner: partner.partner_id)
    return with_messages + without_messages


def thread_with(messages: Iterable[MessageRecord], current_user_id: str, partner_id: str) -> list[MessageRecord]:
    return partition_by_partner(messages, current_user_id).get(partner_id, [])


def preview_text(partner: ConversationPartner, current_user_id: str) -> str | None:
    if partner.last_message is None:
        return None
    prefix = "You: " if partner.last_message.sender_id == current_user_id else ""
    return f"{prefix}{partner.last_message.content}"
