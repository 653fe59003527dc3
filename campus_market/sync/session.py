from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from campus_market.sync.aggregator import aggregate_conversations, count_unread, thread_with
from campus_market.sync.gateway import GatewayError, RemoteGateway
from campus_market.sync.records import ConversationPartner, MessageRecord, ProfileRecord
from campus_market.sync.unread import RetryPolicy, Sleeper, UnreadTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Snapshot:
    messages: tuple[MessageRecord, ...] = ()
    profiles: Mapping[str, ProfileRecord] = field(default_factory=lambda: MappingProxyType({}))
    partners: tuple[ConversationPartner, ...] = ()
    unread_total: int = 0

    def message(self, message_id: str) -> MessageRecord | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


SnapshotObserver = Callable[[Snapshot], None]


class MessagingSync:
    """Owns the message snapshot for one signed-in user.

    Each refresh fetches the full message list, resolves the partner profiles and recomputes every
    derived value. Results are tagged with a generation number; a result is only applied if no
    newer refresh has started and the session has not been closed in the meantime.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        current_user_id: str,
        *,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._user_id = current_user_id
        self._snapshot = Snapshot()
        self._generation = 0
        self._closed = False
        self._pinned_partners: set[str] = set()
        self._latest_refresh: asyncio.Future[Snapshot | None] | None = None
        # Local writes kept on top of fetched rows until the server reflects them.
        self._confirmed: dict[str, MessageRecord] = {}
        self._read_locally: set[str] = set()
        self._observers: list[SnapshotObserver] = []
        self.loading = False
        self.last_error: str | None = None
        self.unread = UnreadTracker(gateway, current_user_id, self, policy=retry_policy, sleep=sleep)

    @property
    def current_user_id(self) -> str:
        return self._user_id

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def partners(self) -> tuple[ConversationPartner, ...]:
        return self._snapshot.partners

    @property
    def closed(self) -> bool:
        return self._closed

    def add_observer(self, observer: SnapshotObserver) -> None:
        self._observers.append(observer)

    def pin_partner(self, partner_id: str) -> None:
        if partner_id == self._user_id or partner_id in self._pinned_partners:
            return
        self._pinned_partners.add(partner_id)
        self._apply(self._rebuild(self._snapshot.messages, self._snapshot.profiles))

    def thread(self, partner_id: str) -> list[MessageRecord]:
        return thread_with(self._snapshot.messages, self._user_id, partner_id)

    def has_conversation_with(self, partner_id: str) -> bool:
        return any(message.involves(partner_id) for message in self._snapshot.messages)

    def partner(self, partner_id: str) -> ConversationPartner | None:
        for partner in self._snapshot.partners:
            if partner.partner_id == partner_id:
                return partner
        return None

    async def refresh(self) -> Snapshot | None:
        """Refetch and reaggregate; ``None`` when the fetch failed or the session is closed.

        A refresh overtaken by a newer one waits for that one and returns its result.
        """
        if self._closed:
            return None
        self._generation += 1
        outcome: asyncio.Future[Snapshot | None] = asyncio.get_running_loop().create_future()
        self._latest_refresh = outcome
        result: Snapshot | None = None
        try:
            result = await self._refresh(self._generation, outcome)
            return result
        finally:
            if not outcome.done():
                outcome.set_result(result)

    async def _refresh(self, generation: int, outcome: asyncio.Future[Snapshot | None]) -> Snapshot | None:
        self.loading = True
        try:
            messages = await self._gateway.fetch_messages(self._user_id)
            partner_ids = {message.other_party(self._user_id) for message in messages if message.involves(self._user_id)}
            partner_ids |= {message.receiver_id for message in self._confirmed.values()}
            partner_ids |= self._pinned_partners
            profiles = await self._gateway.fetch_profiles(sorted(partner_ids)) if partner_ids else []
        except GatewayError as exc:
            if generation == self._generation:
                self.loading = False
                self.last_error = exc.message
            logger.warning(
                "Message refresh failed user_id=%s code=%s error=%s",
                self._user_id,
                exc.code,
                exc.message,
            )
            if self._closed or generation == self._generation:
                return None
            return await self._follow_latest(outcome)

        if self._closed:
            return None
        if generation != self._generation:
            logger.debug("Refresh overtaken user_id=%s generation=%s", self._user_id, generation)
            return await self._follow_latest(outcome)

        self.loading = False
        self.last_error = None
        known = dict(self._snapshot.profiles)
        known.update((profile.id, profile) for profile in profiles)
        snapshot = self._rebuild(self._reconcile(messages), known)
        self._apply(snapshot)
        return snapshot

    async def _follow_latest(self, own: asyncio.Future[Snapshot | None]) -> Snapshot | None:
        latest = self._latest_refresh
        if latest is None or latest is own:
            return None
        return await asyncio.shield(latest)

    def _reconcile(self, fetched: list[MessageRecord]) -> list[MessageRecord]:
        """Overlay local confirmations and reads that the fetched rows do not show yet."""
        fetched_ids = {message.id for message in fetched}
        for message_id in fetched_ids & self._confirmed.keys():
            del self._confirmed[message_id]
        merged = [*fetched, *self._confirmed.values()]

        self._read_locally -= {message.id for message in fetched if message.read}
        return [message.marked_read() if message.id in self._read_locally else message for message in merged]

    async def resync(self) -> Snapshot | None:
        return await self.refresh()

    def close(self) -> None:
        self._closed = True
        self._confirmed.clear()
        self._read_locally.clear()
        self._generation += 1
        self._observers.clear()
        self.loading = False

    def is_unread(self, message_id: str) -> bool:
        message = self._snapshot.message(message_id)
        return message is not None and message.is_unread_for(self._user_id)

    def apply_read(self, message_ids: Iterable[str]) -> None:
        targets = set(message_ids)
        if not targets or self._closed:
            return
        self._read_locally |= targets
        messages = [message.marked_read() if message.id in targets else message for message in self._snapshot.messages]
        self._apply(self._rebuild(messages, self._snapshot.profiles), reset_counter=False)

    def apply_confirmed(self, message: MessageRecord) -> None:
        if self._closed or self._snapshot.message(message.id) is not None:
            return
        self._confirmed[message.id] = message
        messages = [*self._snapshot.messages, message]
        self._apply(self._rebuild(messages, self._snapshot.profiles))

    def _rebuild(self, messages: Iterable[MessageRecord], profiles: Mapping[str, ProfileRecord]) -> Snapshot:
        ordered = tuple(sorted(messages, key=lambda message: message.created_at))
        partners = aggregate_conversations(
            ordered,
            profiles,
            self._user_id,
            extra_partner_ids=self._pinned_partners,
        )
        return Snapshot(
            messages=ordered,
            profiles=MappingProxyType(dict(profiles)),
            partners=tuple(partners),
            unread_total=count_unread(ordered, self._user_id),
        )

    def _apply(self, snapshot: Snapshot, *, reset_counter: bool = True) -> None:
        self._snapshot = snapshot
        if reset_counter:
            self.unread.reset(snapshot.unread_total)
        for observer in list(self._observers):
            observer(snapshot)
