import asyncio
import logging

import pytest

from realtime_client.event_handler import RealtimeEventHandler


def test_listeners_fire_in_registration_order():
    bus = RealtimeEventHandler()
    calls = []
    bus.on("x", lambda e: calls.append(("a", e)))
    bus.on("x", lambda e: calls.append(("b", e)))
    bus.on("x", lambda e: calls.append(("c", e)))

    assert bus.dispatch("x", 1) is True
    assert calls == [("a", 1), ("b", 1), ("c", 1)]


def test_persistent_listeners_run_before_one_shot():
    bus = RealtimeEventHandler()
    calls = []
    bus.on_next("x", lambda e: calls.append("next"))
    bus.on("x", lambda e: calls.append("persistent"))

    bus.dispatch("x", None)
    assert calls == ["persistent", "next"]


def test_one_shot_listener_fires_once():
    bus = RealtimeEventHandler()
    calls = []
    bus.on_next("x", calls.append)

    bus.dispatch("x", 1)
    bus.dispatch("x", 2)
    assert calls == [1]
    assert "x" not in bus.next_event_handlers


def test_one_shot_added_during_dispatch_waits_for_next_dispatch():
    bus = RealtimeEventHandler()
    calls = []

    def add_more(e):
        bus.on_next("x", lambda e2: calls.append(("late", e2)))

    bus.on("x", add_more)
    bus.dispatch("x", 1)
    # listeners added during a dispatch are not part of its snapshot
    assert calls == []
    assert len(bus.next_event_handlers["x"]) == 1

    bus.off("x", add_more)
    bus.dispatch("x", 2)
    assert calls == [("late", 2)]
    assert "x" not in bus.next_event_handlers


def test_one_shot_listener_can_re_register_itself():
    bus = RealtimeEventHandler()
    calls = []

    def again(e):
        calls.append(e)
        bus.on_next("x", again)

    bus.on_next("x", again)
    bus.dispatch("x", 1)
    bus.dispatch("x", 2)
    assert calls == [1, 2]


def test_on_returns_callback():
    bus = RealtimeEventHandler()

    def handler(e):
        pass

    assert bus.on("x", handler) is handler
    assert bus.on_next("x", handler) is handler


@pytest.mark.parametrize("name", ["", None, 42])
def test_on_rejects_bad_event_names(name):
    bus = RealtimeEventHandler()
    with pytest.raises(ValueError):
        bus.on(name, lambda e: None)


def test_off_removes_specific_listener():
    bus = RealtimeEventHandler()
    calls = []

    def a(e):
        calls.append("a")

    def b(e):
        calls.append("b")

    bus.on("x", a)
    bus.on("x", b)
    bus.off("x", a)
    bus.dispatch("x", None)
    assert calls == ["b"]


def test_off_without_callback_removes_all():
    bus = RealtimeEventHandler()
    calls = []
    bus.on("x", calls.append)
    bus.on("x", calls.append)
    bus.off("x")
    bus.dispatch("x", 1)
    assert calls == []


def test_off_unknown_callback_is_a_no_op():
    bus = RealtimeEventHandler()
    bus.on("x", lambda e: None)
    assert bus.off("x", lambda e: None) is True
    assert bus.off("never-registered", lambda e: None) is True
    assert bus.off_next("x", lambda e: None) is True
    assert len(bus.event_handlers["x"]) == 1


def test_off_next():
    bus = RealtimeEventHandler()
    calls = []
    bus.on_next("x", calls.append)
    bus.off_next("x", calls.append)
    bus.dispatch("x", 1)
    assert calls == []


def test_failing_listener_does_not_stop_siblings(caplog):
    bus = RealtimeEventHandler()
    calls = []

    def boom(e):
        raise RuntimeError("boom")

    bus.on("x", boom)
    bus.on("x", calls.append)
    bus.on_next("x", calls.append)

    with caplog.at_level(logging.ERROR, logger="realtime_client.event_handler"):
        assert bus.dispatch("x", 1) is True
    assert calls == [1, 1]
    assert "Error in handler" in caplog.text


def test_clear_event_handlers():
    bus = RealtimeEventHandler()
    calls = []
    bus.on("x", calls.append)
    bus.on_next("y", calls.append)
    bus.clear_event_handlers()
    bus.dispatch("x", 1)
    bus.dispatch("y", 2)
    assert calls == []


@pytest.mark.asyncio
async def test_async_listeners_are_scheduled_not_awaited():
    bus = RealtimeEventHandler()
    started = asyncio.Event()
    release = asyncio.Event()
    finished = []

    async def slow(e):
        started.set()
        await release.wait()
        finished.append(e)

    bus.on("x", slow)
    bus.dispatch("x", 1)
    assert finished == []

    await asyncio.wait_for(started.wait(), 1)
    release.set()
    await asyncio.sleep(0.01)
    assert finished == [1]


@pytest.mark.asyncio
async def test_async_listener_failure_is_logged(caplog):
    bus = RealtimeEventHandler()
    calls = []

    async def boom(e):
        raise RuntimeError("async boom")

    bus.on("x", boom)
    bus.on("x", calls.append)
    with caplog.at_level(logging.ERROR):
        bus.dispatch("x", 1)
        await asyncio.sleep(0.01)
    assert calls == [1]
    assert "async boom" in caplog.text


@pytest.mark.asyncio
async def test_wait_for_next_resolves_with_payload():
    bus = RealtimeEventHandler()

    async def later():
        await asyncio.sleep(0.01)
        bus.dispatch("x", {"hello": "world"})

    task = asyncio.create_task(later())
    result = await bus.wait_for_next("x", timeout=1)
    await task
    assert result == {"hello": "world"}
    assert "x" not in bus.next_event_handlers


@pytest.mark.asyncio
async def test_wait_for_next_times_out_to_none():
    bus = RealtimeEventHandler()
    result = await bus.wait_for_next("x", timeout=0.05)
    assert result is None
    # the transient listener is gone, and a late dispatch does nothing
    assert "x" not in bus.next_event_handlers
    bus.dispatch("x", 1)


@pytest.mark.asyncio
async def test_wait_for_next_keeps_other_one_shot_listeners_on_timeout():
    bus = RealtimeEventHandler()
    calls = []
    bus.on_next("x", calls.append)
    assert await bus.wait_for_next("x", timeout=0.01) is None
    bus.dispatch("x", 1)
    assert calls == [1]
