from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import UTC, datetime
import logging
from typing import Callable
from uuid import uuid4

from campus_market.sync.aggregator import preview_text
from campus_market.sync.gateway import ChangeEvent, GatewayError, MessageDraft, RemoteGateway
from campus_market.sync.listener import LiveUpdateListener
from campus_market.sync.records import ConversationPartner, MessageRecord, SendState, ThreadEntry
from campus_market.sync.session import MessagingSync, Snapshot
from campus_market.sync.unread import RetryPolicy, Sleeper

logger = logging.getLogger(__name__)

EMPTY_STATE_TEXT = "No conversations yet"
NO_SELECTION_TEXT = "Select a conversation to start messaging"
LISTING_CONTEXT_TEMPLATE = 'Hi, I\'m interested in your listing "{title}".'
LOST_FOUND_CONTEXT_TEMPLATE = 'Hello, I\'m writing about "{title}" that you found.'


@dataclass(frozen=True, slots=True)
class Toast:
    title: str
    description: str
    variant: str = "default"


@dataclass(frozen=True, slots=True)
class ContextRef:
    id: str
    title: str


Notifier = Callable[[Toast], None]


def _log_toast(toast: Toast) -> None:
    logger.info("Notification title=%s variant=%s description=%s", toast.title, toast.variant, toast.description)


def context_message(*, listing: ContextRef | None = None, lost_found: ContextRef | None = None) -> str:
    if listing is not None and lost_found is not None:
        raise ValueError("Context must reference a listing or a lost-and-found item, not both")
    if listing is not None:
        return LISTING_CONTEXT_TEMPLATE.format(title=listing.title)
    if lost_found is not None:
        return LOST_FOUND_CONTEXT_TEMPLATE.format(title=lost_found.title)
    raise ValueError("A context reference is required")


class ConversationView:
    """Controller behind the messaging screen: partner list, active thread and composer.

    Sends are optimistic. The pending entry is shown immediately, replaced in place by the
    confirmed row on success, and kept visible as failed (with a single notification) on error.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        current_user_id: str,
        *,
        notifier: Notifier | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._gateway = gateway
        self._user_id = current_user_id
        self._notify = notifier or _log_toast
        self._clock = clock or (lambda: datetime.now(UTC))
        self._retry_policy = retry_policy
        self._sleep = sleep
        self.sync = self._open_session()
        self._listener = LiveUpdateListener(gateway, current_user_id, self._on_change)
        self._local: dict[str, ThreadEntry] = {}
        # Message ids already known when each pending send went out.
        self._seen_before: dict[str, frozenset[str]] = {}
        self._thread: list[ThreadEntry] = []
        self._greeted: set[str] = set()
        self._lifetime = 0
        self.mounted = False
        self.selected_partner_id: str | None = None
        self.compose = ""

    async def __aenter__(self) -> ConversationView:
        await self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unmount()

    async def mount(self) -> None:
        """Subscribe to live changes and load the conversation list.

        A view that was unmounted before starts over with a fresh session. If loading raises
        anything other than a gateway error, the subscription is released before re-raising.
        """
        if self.mounted:
            return
        if self.sync.closed:
            self.sync = self._open_session()
            self._local.clear()
            self._seen_before.clear()
            self._thread = []
        self.mounted = True
        try:
            await self._listener.start()
            await self.sync.refresh()
        except Exception:
            logger.exception("Messaging view failed to mount user_id=%s", self._user_id)
            await self.unmount()
            raise

    def _open_session(self) -> MessagingSync:
        sync = MessagingSync(self._gateway, self._user_id, retry_policy=self._retry_policy, sleep=self._sleep)
        sync.add_observer(self._on_snapshot)
        return sync

    async def unmount(self) -> None:
        if not self.mounted:
            return
        self.mounted = False
        self._lifetime += 1
        try:
            await self._listener.stop()
        finally:
            self.sync.close()

    @property
    def partners(self) -> tuple[ConversationPartner, ...]:
        return self.sync.partners

    @property
    def unread_count(self) -> int:
        return self.sync.unread.count

    @property
    def sync_pending(self) -> bool:
        return self.sync.unread.sync_pending

    @property
    def loading(self) -> bool:
        return self.sync.loading

    @property
    def live(self) -> bool:
        return self._listener.active

    @property
    def empty_state(self) -> str | None:
        return EMPTY_STATE_TEXT if not self.sync.partners else None

    @property
    def placeholder(self) -> str | None:
        return NO_SELECTION_TEXT if self.selected_partner_id is None else None

    @property
    def thread(self) -> tuple[ThreadEntry, ...]:
        return tuple(self._thread)

    @property
    def selected_partner(self) -> ConversationPartner | None:
        if self.selected_partner_id is None:
            return None
        return self.sync.partner(self.selected_partner_id)

    def preview(self, partner: ConversationPartner) -> str | None:
        return preview_text(partner, self._user_id)

    async def refresh(self) -> Snapshot | None:
        return await self.sync.refresh()

    async def select(self, partner_id: str) -> None:
        self.selected_partner_id = partner_id
        self._rebuild_thread()
        partner = self.sync.partner(partner_id)
        if partner is not None and partner.unread_count > 0:
            await self.sync.unread.mark_conversation_as_read(partner_id)

    async def send(self, content: str | None = None) -> ThreadEntry | None:
        text = (self.compose if content is None else content).strip()
        if not text or self.selected_partner_id is None:
            return None
        if content is None:
            self.compose = ""
        return await self._send_text(self.selected_partner_id, text)

    async def retry_send(self, temp_id: str) -> ThreadEntry | None:
        entry = self._local.get(temp_id)
        if entry is None or not entry.is_failed:
            return None
        pending = replace(entry, state=SendState.PENDING, error=None)
        self._local[temp_id] = pending
        self._replace_entry(temp_id, pending)
        return await self._deliver(temp_id)

    def discard_failed(self, temp_id: str) -> bool:
        entry = self._local.get(temp_id)
        if entry is None or not entry.is_failed:
            return False
        del self._local[temp_id]
        self._seen_before.pop(temp_id, None)
        self._thread = [item for item in self._thread if item.temp_id != temp_id]
        return True

    async def open_with_context(
        self,
        partner_id: str,
        *,
        listing: ContextRef | None = None,
        lost_found: ContextRef | None = None,
    ) -> ThreadEntry | None:
        """Open the thread with ``partner_id`` and, on first contact, send one context message.

        The conversation list is refreshed before checking for prior messages, and the partner is
        recorded before the send is awaited, so repeated calls within this view send at most once.
        Two views open at the same time can still both send.
        """
        if partner_id == self._user_id:
            raise ValueError("Cannot open a conversation with yourself")
        text = context_message(listing=listing, lost_found=lost_found) if (listing or lost_found) else None

        self.sync.pin_partner(partner_id)
        refreshed = await self.sync.refresh()
        await self.select(partner_id)
        if text is None:
            return None
        if refreshed is None:
            logger.warning("Skipping context message, refresh failed partner_id=%s", partner_id)
            return None
        if partner_id in self._greeted or any(message.involves(partner_id) for message in refreshed.messages):
            return None

        self._greeted.add(partner_id)
        return await self._send_text(
            partner_id,
            text,
            listing_id=listing.id if listing else None,
            lost_found_id=lost_found.id if lost_found else None,
        )

    async def _send_text(
        self,
        partner_id: str,
        text: str,
        *,
        listing_id: str | None = None,
        lost_found_id: str | None = None,
    ) -> ThreadEntry | None:
        temp_id = f"temp-{uuid4()}"
        entry = ThreadEntry(
            message=MessageRecord(
                id=temp_id,
                sender_id=self._user_id,
                receiver_id=partner_id,
                content=text,
                created_at=self._clock(),
                read=False,
                listing_id=listing_id,
                lost_found_id=lost_found_id,
            ),
            state=SendState.PENDING,
            temp_id=temp_id,
        )
        self._local[temp_id] = entry
        if partner_id == self.selected_partner_id:
            self._thread.append(entry)
        return await self._deliver(temp_id)

    async def _deliver(self, temp_id: str) -> ThreadEntry | None:
        entry = self._local[temp_id]
        lifetime = self._lifetime
        draft = MessageDraft(
            sender_id=entry.message.sender_id,
            receiver_id=entry.message.receiver_id,
            content=entry.message.content,
            listing_id=entry.message.listing_id,
            lost_found_id=entry.message.lost_found_id,
        )
        self._seen_before[temp_id] = frozenset(message.id for message in self.sync.snapshot.messages)
        try:
            confirmed = await self._gateway.insert_message(draft)
        except GatewayError as exc:
            if lifetime != self._lifetime:
                return None
            failed = replace(entry, state=SendState.FAILED, error=exc.message)
            self._local[temp_id] = failed
            self._replace_entry(temp_id, failed)
            logger.warning(
                "Message send failed receiver_id=%s temp_id=%s code=%s error=%s",
                draft.receiver_id,
                temp_id,
                exc.code,
                exc.message,
            )
            self._notify(Toast(title="Error", description="Failed to send message", variant="destructive"))
            return failed

        if lifetime != self._lifetime:
            return None
        self._local.pop(temp_id, None)
        self._seen_before.pop(temp_id, None)
        result = ThreadEntry.confirmed(confirmed, temp_id=temp_id)
        if any(item.state is SendState.CONFIRMED and item.message.id == confirmed.id for item in self._thread):
            self._thread = [item for item in self._thread if item.temp_id != temp_id or item.state is SendState.CONFIRMED]
        else:
            self._replace_entry(temp_id, result)
        self.sync.apply_confirmed(confirmed)
        return result

    def _replace_entry(self, temp_id: str, entry: ThreadEntry) -> None:
        for index, item in enumerate(self._thread):
            if item.temp_id == temp_id and item.state is not SendState.CONFIRMED:
                self._thread[index] = entry
                return

    async def _on_change(self, event: ChangeEvent) -> None:
        logger.debug("Message change received user_id=%s op=%s", self._user_id, event.op)
        await self.sync.refresh()

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        self._rebuild_thread()

    def _rebuild_thread(self) -> None:
        if self.selected_partner_id is None:
            self._thread = []
            return
        partner_id = self.selected_partner_id
        by_temp_id = {item.message.id: item.temp_id for item in self._thread if item.state is SendState.CONFIRMED and item.temp_id}
        confirmed = self.sync.thread(partner_id)
        local = [entry for entry in self._local.values() if entry.message.receiver_id == partner_id]

        # A live echo can deliver the row before the insert call returns; show it once.
        for entry in local:
            if entry.state is not SendState.PENDING or entry.temp_id in by_temp_id.values():
                continue
            echo = self._find_echo(entry, confirmed, by_temp_id)
            if echo is not None:
                by_temp_id[echo.id] = entry.temp_id

        claimed = set(by_temp_id.values())
        entries = [ThreadEntry.confirmed(message, temp_id=by_temp_id.get(message.id)) for message in confirmed]
        entries.extend(entry for entry in local if entry.temp_id not in claimed)
        entries.sort(key=lambda item: item.message.created_at)
        self._thread = entries

    def _find_echo(
        self,
        entry: ThreadEntry,
        candidates: list[MessageRecord],
        by_temp_id: dict[str, str | None],
    ) -> MessageRecord | None:
        seen_before = self._seen_before.get(entry.temp_id or "")
        if seen_before is None:
            return None
        for message in candidates:
            if message.id in seen_before or message.id in by_temp_id:
                continue
            if (message.sender_id, message.receiver_id, message.content) == (
                entry.message.sender_id,
                entry.message.receiver_id,
                entry.message.content,
            ):
                return message
        return None
