from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Mapping


def parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


@dataclass(frozen=True, slots=True)
class MessageRecord:
    id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    read: bool = False
    listing_id: str | None = None
    lost_found_id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, object]) -> MessageRecord:
        return cls(
            id=str(row["id"]),
            sender_id=str(row["sender_id"]),
            receiver_id=str(row["receiver_id"]),
            content=str(row.get("content") or ""),
            created_at=parse_timestamp(row.get("created_at")),
            # A null read flag counts as read: only an explicit false is unread.
            read=row.get("read") is not False,
            listing_id=_optional_str(row.get("listing_id")),
            lost_found_id=_optional_str(row.get("lost_found_id")),
        )

    def involves(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.receiver_id)

    def other_party(self, user_id: str) -> str:
        return self.sender_id if self.receiver_id == user_id else self.receiver_id

    def is_unread_for(self, user_id: str) -> bool:
        return self.receiver_id == user_id and not self.read

    def marked_read(self) -> MessageRecord:
        return self if self.read else replace(self, read=True)


@dataclass(frozen=True, slots=True)
class ProfileRecord:
    id: str
    full_name: str | None = None
    student_id: str | None = None
    bio: str | None = None
    is_blocked: bool = False
    last_seen_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, object]) -> ProfileRecord:
        last_seen = row.get("last_seen_at")
        return cls(
            id=str(row["id"]),
            full_name=_optional_str(row.get("full_name")),
            student_id=_optional_str(row.get("student_id")),
            bio=_optional_str(row.get("bio")),
            is_blocked=bool(row.get("is_blocked", False)),
            last_seen_at=parse_timestamp(last_seen) if last_seen else None,
        )

    @classmethod
    def placeholder(cls, profile_id: str) -> ProfileRecord:
        return cls(id=profile_id)

    @property
    def display_name(self) -> str:
        return self.full_name or "Unknown user"

    @property
    def initial(self) -> str:
        return self.full_name[0].upper() if self.full_name else "?"


@dataclass(frozen=True, slots=True)
class ConversationPartner:
    profile: ProfileRecord
    last_message: MessageRecord | None
    unread_count: int

    @property
    def partner_id(self) -> str:
        return self.profile.id


class SendState(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ThreadEntry:
    """One row in the active thread.

    ``temp_id`` is the locally generated identifier assigned at send time; it stays set after
    confirmation so the entry can be traced back to the optimistic insert.
    """

    message: MessageRecord
    state: SendState
    temp_id: str | None = None
    error: str | None = None

    @classmethod
    def confirmed(cls, message: MessageRecord, *, temp_id: str | None = None) -> ThreadEntry:
        return cls(message=message, state=SendState.CONFIRMED, temp_id=temp_id)

    @property
    def key(self) -> str:
        return self.message.id if self.state is SendState.CONFIRMED else (self.temp_id or self.message.id)

    @property
    def is_pending(self) -> bool:
        return self.state is SendState.PENDING

    @property
    def is_failed(self) -> bool:
        return self.state is SendState.FAILED
