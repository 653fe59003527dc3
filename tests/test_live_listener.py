from __future__ import annotations

import asyncio

import pytest
from fake_gateway import FakeGateway

from campus_market.sync.gateway import ChangeEvent
from campus_market.sync.listener import LiveUpdateListener


class _Recorder:
    def __init__(self) -> None:
        self.events: list[ChangeEvent] = []

    async def __call__(self, event: ChangeEvent) -> None:
        self.events.append(event)


def test_subscription_is_scoped_to_context():
    gateway = FakeGateway()
    recorder = _Recorder()

    async def scenario() -> None:
        async with LiveUpdateListener(gateway, "me", recorder) as listener:
            assert listener.active
            assert len(gateway.active_subscriptions()) == 1
        assert not listener.active

    asyncio.run(scenario())
    assert gateway.active_subscriptions() == []
    assert gateway.subscriptions[0].table == "messages"


def test_subscription_is_released_when_body_raises():
    gateway = FakeGateway()

    async def scenario() -> None:
        async with LiveUpdateListener(gateway, "me", _Recorder()):
            raise RuntimeError("view crashed")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())
    assert gateway.subscriptions[0].closed


def test_inserts_and_updates_for_user_are_forwarded():
    gateway = FakeGateway()
    inbound = gateway.seed("bob", "me", "hi", minutes=1)
    unrelated = gateway.seed("bob", "carol", "psst", minutes=2)
    recorder = _Recorder()

    async def scenario() -> None:
        async with LiveUpdateListener(gateway, "me", recorder):
            await gateway.emit("INSERT", inbound)
            await gateway.emit("UPDATE", inbound.marked_read())
            await gateway.emit("DELETE", inbound)
            await gateway.emit("INSERT", unrelated)
        await gateway.emit("INSERT", inbound)

    asyncio.run(scenario())
    assert [event.op for event in recorder.events] == ["INSERT", "UPDATE"]
    assert recorder.events[1].row["read"] is True


def test_handler_errors_do_not_break_the_feed(caplog):
    gateway = FakeGateway()
    message = gateway.seed("bob", "me", "hi", minutes=1)
    calls: list[str] = []

    async def flaky(event: ChangeEvent) -> None:
        calls.append(event.op)
        if len(calls) == 1:
            raise RuntimeError("refresh exploded")

    async def scenario() -> int:
        async with LiveUpdateListener(gateway, "me", flaky) as listener:
            await gateway.emit("INSERT", message)
            await gateway.emit("UPDATE", message)
            return listener.events_handled

    assert asyncio.run(scenario()) == 2
    assert calls == ["INSERT", "UPDATE"]
    assert "Live update handler failed" in caplog.text


def test_subscribe_failure_leaves_listener_inactive():
    gateway = FakeGateway()
    gateway.fail("subscribe", times=1)

    async def scenario() -> tuple[bool, bool]:
        listener = LiveUpdateListener(gateway, "me", _Recorder())
        started = await listener.start()
        active = listener.active
        await listener.stop()
        return started, active

    assert asyncio.run(scenario()) == (False, False)
