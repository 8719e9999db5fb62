import asyncio
import logging

import pytest

from voice_chat.audio.recording import Recording
from voice_chat.conversation.events import (
    CaptureCompleted,
    ConversationEventBus,
    PlaybackFinished,
)


def _completed(session_id: int) -> CaptureCompleted:
    return CaptureCompleted(session_id, Recording(data=b"\x00\x00", sample_rate=16000))


@pytest.mark.asyncio
async def test_event_bus_delivers_events_in_order():
    bus = ConversationEventBus()
    delivered: list[int] = []
    done = asyncio.Event()

    async def _handler(event: CaptureCompleted) -> None:
        delivered.append(event.session_id)
        if event.session_id == 2:
            done.set()

    bus.subscribe(CaptureCompleted, _handler)
    runner = asyncio.create_task(bus.run())

    try:
        await bus.publish(_completed(1))
        await bus.publish(_completed(2))
        await asyncio.wait_for(done.wait(), timeout=0.5)
    finally:
        await bus.shutdown()
        await runner

    assert delivered == [1, 2]


@pytest.mark.asyncio
async def test_event_bus_routes_by_event_type():
    bus = ConversationEventBus()
    captures: list[int] = []
    playbacks: list[int] = []

    async def _on_capture(event: CaptureCompleted) -> None:
        captures.append(event.session_id)

    async def _on_playback(event: PlaybackFinished) -> None:
        playbacks.append(event.playback_id)

    bus.subscribe(CaptureCompleted, _on_capture)
    bus.subscribe(PlaybackFinished, _on_playback)

    await bus.publish(PlaybackFinished(7))
    await bus.publish(_completed(3))
    await bus.shutdown()
    await bus.run()

    assert captures == [3]
    assert playbacks == [7]


@pytest.mark.asyncio
async def test_event_bus_shutdown_prevents_further_publication():
    bus = ConversationEventBus()
    delivered: list[int] = []
    done = asyncio.Event()

    async def _handler(event: CaptureCompleted) -> None:
        delivered.append(event.session_id)
        done.set()

    bus.subscribe(CaptureCompleted, _handler)
    runner = asyncio.create_task(bus.run())

    try:
        await bus.publish(_completed(1))
        await asyncio.wait_for(done.wait(), timeout=0.5)
        await bus.shutdown()
        await bus.publish(_completed(2))
    finally:
        await runner

    assert delivered == [1]
    assert bus.closed


@pytest.mark.asyncio
async def test_event_bus_logs_and_continues_after_handler_exception(
    caplog: pytest.LogCaptureFixture,
):
    bus = ConversationEventBus()
    delivered: list[int] = []
    done = asyncio.Event()

    async def _handler_raise(event: CaptureCompleted) -> None:
        raise RuntimeError("boom")

    async def _handler_continue(event: CaptureCompleted) -> None:
        delivered.append(event.session_id)
        done.set()

    bus.subscribe(CaptureCompleted, _handler_raise)
    bus.subscribe(CaptureCompleted, _handler_continue)
    runner = asyncio.create_task(bus.run())

    try:
        with caplog.at_level(logging.ERROR):
            await bus.publish(_completed(1))
            await asyncio.wait_for(done.wait(), timeout=0.5)
    finally:
        await bus.shutdown()
        await runner

    assert delivered == [1]
    assert any("ConversationEventBus handler" in record.message for record in caplog.records)


@pytest.mark.asyncio
async def test_event_bus_supports_reentrant_publication():
    bus = ConversationEventBus()
    delivered: list[int] = []
    done = asyncio.Event()

    async def _handler(event: CaptureCompleted) -> None:
        delivered.append(event.session_id)
        if event.session_id == 1:
            await bus.publish(_completed(2))
        else:
            done.set()

    bus.subscribe(CaptureCompleted, _handler)
    runner = asyncio.create_task(bus.run())

    try:
        await bus.publish(_completed(1))
        await asyncio.wait_for(done.wait(), timeout=0.5)
    finally:
        await bus.shutdown()
        await runner

    assert delivered == [1, 2]


@pytest.mark.asyncio
async def test_event_bus_finishes_inflight_handler_after_shutdown():
    bus = ConversationEventBus()
    started = asyncio.Event()
    release_handler = asyncio.Event()
    delivered: list[int] = []

    async def _slow_handler(event: CaptureCompleted) -> None:
        started.set()
        await release_handler.wait()
        delivered.append(event.session_id)

    bus.subscribe(CaptureCompleted, _slow_handler)
    runner = asyncio.create_task(bus.run())

    await bus.publish(_completed(1))
    await asyncio.wait_for(started.wait(), timeout=0.5)
    await bus.shutdown()
    assert delivered == []

    release_handler.set()
    await asyncio.wait_for(runner, timeout=0.5)

    assert delivered == [1]

