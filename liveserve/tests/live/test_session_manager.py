"""Tests for live sessions and the push stream they feed."""

import pytest

from liveserve.live.change_bus import ChangeBus, ChangeEvent
from liveserve.live.session_manager import (
    PREAMBLE,
    RELOAD_FRAME,
    LiveSession,
    LiveSessionManager,
)


def test_frame_format():
    assert PREAMBLE == b"retry: 5000\n\n"
    assert RELOAD_FRAME == b'data: {"reload":true}\n\n'


@pytest.mark.asyncio
async def test_stream_writes_preamble_then_reload_frames():
    bus = ChangeBus()
    mgr = LiveSessionManager(bus)
    session = mgr.connect()
    stream = mgr.stream(session)

    try:
        assert await anext(stream) == PREAMBLE

        bus.publish(ChangeEvent())
        assert await anext(stream) == RELOAD_FRAME

        bus.publish(ChangeEvent())
        assert await anext(stream) == RELOAD_FRAME
    finally:
        await stream.aclose()

    assert mgr.get_stats()["frames_sent"] == 2
    assert session.frames_sent == 2


@pytest.mark.asyncio
async def test_fan_out_one_frame_per_session():
    bus = ChangeBus()
    mgr = LiveSessionManager(bus)
    sessions = [mgr.connect() for _ in range(4)]

    delivered = bus.publish(ChangeEvent())

    assert delivered == 4
    for session in sessions:
        assert session.pending == 1
        assert await session.next_frame() == RELOAD_FRAME
        assert session.pending == 0


@pytest.mark.asyncio
async def test_closing_stream_unsubscribes():
    bus = ChangeBus()
    mgr = LiveSessionManager(bus)
    session = mgr.connect()
    stream = mgr.stream(session)

    assert await anext(stream) == PREAMBLE
    assert bus.is_subscribed(session.send_reload)

    # Client going away closes the generator
    await stream.aclose()

    assert not bus.is_subscribed(session.send_reload)
    assert session.closed
    assert mgr.get_session_count() == 0

    bus.publish(ChangeEvent())
    assert session.frames_sent == 0
    # Only the end-of-stream marker is left
    assert await session.next_frame() == b""
    assert session.pending == 0


@pytest.mark.asyncio
async def test_disconnected_session_gets_no_frames_others_do():
    bus = ChangeBus()
    mgr = LiveSessionManager(bus)
    gone = mgr.connect()
    staying = mgr.connect()

    mgr.disconnect(gone)
    mgr.disconnect(gone)
    bus.publish(ChangeEvent())

    assert await gone.next_frame() == b""
    assert gone.pending == 0
    assert await staying.next_frame() == RELOAD_FRAME
    assert mgr.get_stats()["current_sessions"] == 1


@pytest.mark.asyncio
async def test_close_all_ends_streams():
    bus = ChangeBus()
    mgr = LiveSessionManager(bus)
    session = mgr.connect()
    stream = mgr.stream(session)
    assert await anext(stream) == PREAMBLE

    mgr.close_all()

    with pytest.raises(StopAsyncIteration):
        await anext(stream)
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_trigger_reload_reaches_every_session():
    bus = ChangeBus()
    mgr = LiveSessionManager(bus)
    sessions = [mgr.connect(), mgr.connect()]

    assert mgr.trigger_reload() == 2

    for session in sessions:
        assert await session.next_frame() == RELOAD_FRAME
    assert mgr.get_stats()["manual_triggers"] == 1


@pytest.mark.asyncio
async def test_open_stream_response_headers():
    bus = ChangeBus()
    mgr = LiveSessionManager(bus)

    response = mgr.open_stream()
    try:
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["access-control-allow-origin"] == "*"
        assert bus.subscriber_count == 1
        assert await anext(response.body_iterator) == PREAMBLE
    finally:
        await response.body_iterator.aclose()

    assert bus.subscriber_count == 0


def test_slow_session_drops_oldest_frame():
    session = LiveSession(1, max_pending=2)

    for _ in range(5):
        session.send_reload(ChangeEvent())

    assert session.pending == 2


def test_stats_track_sessions():
    mgr = LiveSessionManager(ChangeBus())
    first = mgr.connect()
    mgr.connect()
    mgr.disconnect(first)

    stats = mgr.get_stats()
    assert stats["total_sessions"] == 2
    assert stats["current_sessions"] == 1
