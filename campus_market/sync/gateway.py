from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Mapping, Protocol

from campus_market.sync.records import MessageRecord, ProfileRecord

MESSAGES_TABLE = "messages"


class GatewayError(Exception):
    def __init__(self, code: str, message: str, *, status: int | None = None) -> None:
        self.code = code
        self.message = message
        self.status = status
        super().__init__(f"{code}: {message}")


@dataclass(frozen=True, slots=True)
class MessageDraft:
    sender_id: str
    receiver_id: str
    content: str
    listing_id: str | None = None
    lost_found_id: str | None = None

    def __post_init__(self) -> None:
        if self.listing_id and self.lost_found_id:
            raise ValueError("A message may reference a listing or a lost-and-found item, not both")


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    table: str
    op: str
    row: Mapping[str, object] = field(default_factory=dict)

    def touches_user(self, user_id: str) -> bool:
        return user_id in (self.row.get("sender_id"), self.row.get("receiver_id"))


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class Subscription(Protocol):
    async def close(self) -> None: ...


class RemoteGateway(Protocol):
    """Query, mutation and change-feed surface of the hosted backend used by the sync layer."""

    async def fetch_messages(self, user_id: str) -> list[MessageRecord]: ...

    async def fetch_profiles(self, profile_ids: Iterable[str]) -> list[ProfileRecord]: ...

    async def insert_message(self, draft: MessageDraft) -> MessageRecord: ...

    async def mark_message_read(self, message_id: str, receiver_id: str) -> int: ...

    async def mark_conversation_read(self, partner_id: str, receiver_id: str) -> int: ...

    async def subscribe(self, table: str, user_id: str, handler: ChangeHandler) -> Subscription: ...
