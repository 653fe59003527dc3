from __future__ import annotations

import asyncio

import pytest
from fake_gateway import FakeGateway

from campus_market.sync.records import ProfileRecord, SendState
from campus_market.sync.unread import RetryPolicy
from campus_market.sync.view import EMPTY_STATE_TEXT, ContextRef, ConversationView, Toast

POLICY = RetryPolicy(max_attempts=2, base_delay_sec=0.0, max_delay_sec=0.0)


async def _no_sleep(_: float) -> None:
    return None


def _gateway() -> FakeGateway:
    return FakeGateway(
        profiles=[
            ProfileRecord(id="bob", full_name="Bob"),
            ProfileRecord(id="carol", full_name="Carol"),
        ]
    )


def _view(gateway: FakeGateway, toasts: list[Toast] | None = None) -> ConversationView:
    return ConversationView(
        gateway,
        "me",
        notifier=toasts.append if toasts is not None else None,
        retry_policy=POLICY,
        sleep=_no_sleep,
    )


def test_empty_state_when_no_conversations():
    gateway = _gateway()

    async def scenario() -> ConversationView:
        async with _view(gateway) as view:
            assert view.empty_state == EMPTY_STATE_TEXT
            assert view.placeholder is not None
            assert view.live
            return view

    view = asyncio.run(scenario())
    assert not view.live
    assert gateway.active_subscriptions() == []


def test_selecting_conversation_marks_it_read():
    gateway = _gateway()
    gateway.seed("bob", "me", "one", minutes=1)
    gateway.seed("bob", "me", "two", minutes=2)
    gateway.seed("carol", "me", "three", minutes=3)

    async def scenario() -> ConversationView:
        async with _view(gateway) as view:
            assert view.unread_count == 3
            await view.select("bob")
            return view

    view = asyncio.run(scenario())
    assert view.unread_count == 1
    assert [entry.message.content for entry in view.thread] == ["one", "two"]
    assert view.selected_partner is not None
    assert view.selected_partner.partner_id == "bob"
    assert view.preview(view.selected_partner) == "two"
    assert all(message.read for message in gateway.messages if message.sender_id == "bob")
    assert gateway.count("mark_conversation_read") == 1


def test_optimistic_send_is_replaced_in_place():
    gateway = _gateway()
    gateway.seed("bob", "me", "hi there", minutes=1, read=True)

    async def scenario() -> ConversationView:
        async with _view(gateway) as view:
            await view.select("bob")
            gateway.insert_gate = asyncio.Event()
            view.compose = "  is it still for sale?  "
            task = asyncio.create_task(view.send())
            await asyncio.sleep(0)

            pending = view.thread[-1]
            assert pending.state is SendState.PENDING
            assert pending.message.content == "is it still for sale?"
            assert view.compose == ""
            assert len(view.thread) == 2

            gateway.insert_gate.set()
            confirmed = await task
            assert confirmed.state is SendState.CONFIRMED
            assert confirmed.temp_id == pending.temp_id
            return view

    view = asyncio.run(scenario())
    assert [entry.state for entry in view.thread] == [SendState.CONFIRMED, SendState.CONFIRMED]
    assert view.thread[-1].message.id == gateway.messages[-1].id
    assert view.partners[0].last_message.content == "is it still for sale?"


def test_live_echo_before_confirmation_does_not_duplicate():
    gateway = _gateway()
    gateway.seed("bob", "me", "hi", minutes=1, read=True)

    async def scenario() -> ConversationView:
        async with _view(gateway) as view:
            await view.select("bob")
            gateway.insert_gate = asyncio.Event()
            task = asyncio.create_task(view.send("deal"))
            await asyncio.sleep(0)
            pending = view.thread[-1]

            # The backend commits and echoes the row before the insert call returns.
            await gateway.emit("INSERT", gateway.messages[-1])
            assert len(view.thread) == 2
            echoed = view.thread[-1]
            assert echoed.state is SendState.CONFIRMED
            assert echoed.temp_id == pending.temp_id
            gateway.insert_gate.set()
            await task
            return view

    view = asyncio.run(scenario())
    contents = [entry.message.content for entry in view.thread]
    assert contents == ["hi", "deal"]
    assert len({entry.message.id for entry in view.thread}) == 2


def test_failed_send_stays_visible_and_notifies_once():
    gateway = _gateway()
    gateway.seed("bob", "me", "hi", minutes=1, read=True)
    gateway.fail("insert_message", times=1)
    toasts: list[Toast] = []

    async def scenario() -> ConversationView:
        async with _view(gateway, toasts) as view:
            await view.select("bob")
            failed = await view.send("anyone home?")
            assert failed.state is SendState.FAILED
            assert view.thread[-1].is_failed
            assert view.thread[-1].message.content == "anyone home?"
            assert len(toasts) == 1

            retried = await view.retry_send(failed.temp_id)
            assert retried.state is SendState.CONFIRMED
            return view

    view = asyncio.run(scenario())
    assert len(toasts) == 1
    assert toasts[0].variant == "destructive"
    assert [entry.state for entry in view.thread] == [SendState.CONFIRMED, SendState.CONFIRMED]
    assert gateway.count("insert_message") == 2


def test_failed_send_can_be_discarded():
    gateway = _gateway()
    gateway.seed("bob", "me", "hi", minutes=1, read=True)
    gateway.fail("insert_message", times=1)

    async def scenario() -> ConversationView:
        async with _view(gateway, []) as view:
            await view.select("bob")
            failed = await view.send("oops")
            assert view.discard_failed(failed.temp_id)
            assert not view.discard_failed(failed.temp_id)
            return view

    view = asyncio.run(scenario())
    assert [entry.message.content for entry in view.thread] == ["hi"]


def test_empty_message_is_not_sent():
    gateway = _gateway()

    async def scenario() -> None:
        async with _view(gateway) as view:
            await view.select("bob")
            view.compose = "   "
            assert await view.send() is None

    asyncio.run(scenario())
    assert gateway.count("insert_message") == 0


def test_live_inbound_message_updates_partners_and_counter():
    gateway = _gateway()

    async def scenario() -> ConversationView:
        async with _view(gateway) as view:
            assert view.partners == ()
            inbound = gateway.seed("carol", "me", "found your wallet", minutes=5)
            await gateway.emit("INSERT", inbound)
            return view

    view = asyncio.run(scenario())
    assert [partner.partner_id for partner in view.partners] == ["carol"]
    assert view.unread_count == 1


def test_first_contact_sends_context_message_once():
    gateway = _gateway()
    listing = ContextRef(id="listing-1", title="Desk Lamp")

    async def scenario() -> ConversationView:
        async with _view(gateway) as view:
            first = await view.open_with_context("bob", listing=listing)
            second = await view.open_with_context("bob", listing=listing)
            assert first is not None
            assert second is None
            return view

    view = asyncio.run(scenario())
    inserts = [draft for name, draft in gateway.calls if name == "insert_message"]
    assert len(inserts) == 1
    assert inserts[0].content == 'Hi, I\'m interested in your listing "Desk Lamp".'
    assert inserts[0].listing_id == "listing-1"
    assert view.selected_partner_id == "bob"


def test_lost_found_context_uses_found_item_wording():
    gateway = _gateway()

    async def scenario() -> None:
        async with _view(gateway) as view:
            await view.open_with_context("carol", lost_found=ContextRef(id="lf-1", title="Blue Umbrella"))

    asyncio.run(scenario())
    [draft] = [draft for name, draft in gateway.calls if name == "insert_message"]
    assert draft.content == 'Hello, I\'m writing about "Blue Umbrella" that you found.'
    assert draft.lost_found_id == "lf-1"
    assert draft.listing_id is None


def test_existing_conversation_skips_context_message():
    gateway = _gateway()
    gateway.seed("me", "bob", "earlier chat", minutes=1)

    async def scenario() -> None:
        async with _view(gateway) as view:
            # The other tab's message only shows up on the refresh done by open_with_context.
            gateway.seed("bob", "me", "already talking", minutes=2)
            assert await view.open_with_context("bob", listing=ContextRef(id="l-1", title="Chair")) is None

    asyncio.run(scenario())
    assert gateway.count("insert_message") == 0


def test_context_message_skipped_when_refresh_fails():
    gateway = _gateway()

    async def scenario() -> None:
        async with _view(gateway) as view:
            gateway.fail("fetch_messages", times=1)
            assert await view.open_with_context("bob", listing=ContextRef(id="l-1", title="Chair")) is None

    asyncio.run(scenario())
    assert gateway.count("insert_message") == 0


def test_open_with_context_argument_validation():
    gateway = _gateway()

    async def scenario() -> None:
        async with _view(gateway) as view:
            with pytest.raises(ValueError):
                await view.open_with_context("bob", listing=ContextRef("l", "A"), lost_found=ContextRef("f", "B"))
            with pytest.raises(ValueError):
                await view.open_with_context("me")

    asyncio.run(scenario())


def test_send_completing_after_unmount_is_ignored():
    gateway = _gateway()
    toasts: list[Toast] = []

    async def scenario() -> ConversationView:
        view = _view(gateway, toasts)
        await view.mount()
        await view.select("bob")
        gateway.insert_gate = asyncio.Event()
        gateway.fail("insert_message", times=1)
        task = asyncio.create_task(view.send("late"))
        await asyncio.sleep(0)
        await view.unmount()
        gateway.insert_gate.set()
        assert await task is None
        return view

    view = asyncio.run(scenario())
    assert toasts == []
    assert gateway.active_subscriptions() == []
    assert view.sync.closed


def test_identical_earlier_message_is_not_taken_for_an_echo():
    gateway = _gateway()
    gateway.seed("bob", "me", "hi", minutes=1, read=True)
    gateway.seed("me", "bob", "ok", minutes=2)

    async def scenario() -> ConversationView:
        async with _view(gateway) as view:
            await view.select("bob")
            gateway.insert_gate = asyncio.Event()
            task = asyncio.create_task(view.send("ok"))
            await asyncio.sleep(0)
            pending = view.thread[-1]
            await view.refresh()
            assert all(entry.state is SendState.CONFIRMED for entry in view.thread)
            assert [entry.temp_id for entry in view.thread] == [None, None, pending.temp_id]
            gateway.insert_gate.set()
            await task
            return view

    view = asyncio.run(scenario())
    assert [entry.message.content for entry in view.thread] == ["hi", "ok", "ok"]
    assert len({entry.message.id for entry in view.thread}) == 3


def test_context_message_sent_when_refresh_is_overtaken():
    gateway = _gateway()
    listing = ContextRef(id="listing-1", title="Desk Lamp")

    async def scenario() -> None:
        async with _view(gateway) as view:
            gate = asyncio.Event()
            gateway.fetch_gates.append(gate)
            opening = asyncio.create_task(view.open_with_context("bob", listing=listing))
            await asyncio.sleep(0)
            # An unrelated refresh, e.g. from a live event, finishes first.
            assert await view.refresh() is not None
            gate.set()
            assert await opening is not None

    asyncio.run(scenario())
    assert gateway.count("insert_message") == 1


def test_send_survives_older_refresh_finishing_late():
    gateway = _gateway()
    gateway.seed("bob", "me", "hi", minutes=1, read=True)

    async def scenario() -> ConversationView:
        async with _view(gateway) as view:
            await view.select("bob")
            gate = asyncio.Event()
            gateway.fetch_gates.append(gate)
            older = asyncio.create_task(view.refresh())
            await asyncio.sleep(0)
            await view.send("deal")
            gate.set()
            await older
            return view

    view = asyncio.run(scenario())
    assert [entry.message.content for entry in view.thread] == ["hi", "deal"]
    assert view.preview(view.partners[0]) == "You: deal"


def test_read_state_survives_older_refresh_finishing_late():
    gateway = _gateway()
    gateway.seed("bob", "me", "one", minutes=1)

    async def scenario() -> ConversationView:
        async with _view(gateway) as view:
            gate = asyncio.Event()
            gateway.fetch_gates.append(gate)
            older = asyncio.create_task(view.refresh())
            await asyncio.sleep(0)
            await view.select("bob")
            gate.set()
            await older
            return view

    view = asyncio.run(scenario())
    assert view.unread_count == 0
    assert view.partners[0].unread_count == 0


def test_remounted_view_loads_again():
    gateway = _gateway()
    gateway.seed("bob", "me", "hi", minutes=1)

    async def scenario() -> ConversationView:
        view = _view(gateway)
        await view.mount()
        first = view.sync
        await view.unmount()

        gateway.seed("carol", "me", "while away", minutes=2)
        await view.mount()
        assert view.sync is not first
        assert view.live
        inbound = gateway.seed("carol", "me", "you there?", minutes=3)
        await gateway.emit("INSERT", inbound)
        await view.unmount()
        return view

    view = asyncio.run(scenario())
    assert [partner.partner_id for partner in view.partners] == ["carol", "bob"]
    assert view.partners[0].last_message.content == "you there?"
    assert gateway.active_subscriptions() == []


class _BrokenGateway(FakeGateway):
    async def fetch_messages(self, user_id: str):
        raise RuntimeError("decoder blew up")


def test_mount_releases_subscription_when_loading_raises():
    gateway = _BrokenGateway()

    async def scenario() -> ConversationView:
        view = _view(gateway)
        with pytest.raises(RuntimeError):
            await view.mount()
        return view

    view = asyncio.run(scenario())
    assert not view.mounted
    assert not view.live
    assert gateway.count("subscribe") == 1
    assert gateway.active_subscriptions() == []
