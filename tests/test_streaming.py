from __future__ import annotations

import asyncio
import json

import pytest

from deepdive.models.events import EventType
from deepdive.services import streaming
from deepdive.services.streaming import ProgressBus, StreamEmitter


async def _events(*events, fail_with=None):
    for event in events:
        yield event
    if fail_with is not None:
        raise fail_with


async def _collect(stream):
    return [event async for event in stream]


@pytest.mark.asyncio
async def test_wrap_passes_through_completed_stream():
    source = _events(
        streaming.stage_update("planning"),
        streaming.token("hi"),
        streaming.completed("hi", [], session_id="s1"),
    )

    events = await _collect(StreamEmitter().wrap(source, "s1"))

    assert [e.event for e in events] == [EventType.STAGE_UPDATE, EventType.TOKEN, EventType.COMPLETED]
    assert events[-1].data["partial"] is False


@pytest.mark.asyncio
async def test_wrap_synthesizes_completion_after_failure():
    source = _events(
        streaming.stage_update("synthesizing"),
        streaming.token("Metformin "),
        streaming.token("lowers glucose"),
        fail_with=RuntimeError("connection reset"),
    )

    events = await _collect(StreamEmitter().wrap(source, "s1"))

    assert events[-2].event == EventType.ERROR
    assert events[-2].data == {"message": "connection reset", "stage": "synthesizing"}
    final = events[-1]
    assert final.event == EventType.COMPLETED
    assert final.data["answer"] == "Metformin lowers glucose"
    assert final.data["partial"] is True
    assert final.data["last_stage"] == "synthesizing"


@pytest.mark.asyncio
async def test_wrap_completes_stream_that_ends_silently():
    events = await _collect(StreamEmitter().wrap(_events(streaming.stage_update("ranking")), "s1"))

    assert [e.event for e in events] == [EventType.STAGE_UPDATE, EventType.COMPLETED]
    assert events[-1].data["partial"] is True


@pytest.mark.asyncio
async def test_wrap_publishes_to_bus_using_selected_session():
    bus = ProgressBus()
    queue = bus.subscribe("new-session")
    source = _events(
        streaming.tier_selected("deep", "explicit", "new-session"),
        streaming.completed("done", [], session_id="new-session"),
    )

    await _collect(StreamEmitter(bus).wrap(source))

    assert queue.qsize() == 2
    assert (await queue.get()).event == EventType.TIER_SELECTED


@pytest.mark.asyncio
async def test_bus_fans_out_and_unsubscribes():
    bus = ProgressBus()
    first = bus.subscribe("s1")
    second = bus.subscribe("s1")
    bus.subscribe("other")

    delivered = bus.publish("s1", streaming.token("x"))

    assert delivered == 2
    assert first.qsize() == second.qsize() == 1
    bus.unsubscribe("s1", first)
    bus.unsubscribe("s1", second)
    assert bus.subscriber_count("s1") == 0
    assert bus.publish("s1", streaming.token("y")) == 0


@pytest.mark.asyncio
async def test_bus_drops_events_for_full_queue():
    bus = ProgressBus(maxsize=1)
    queue = bus.subscribe("s1")

    assert bus.publish("s1", streaming.token("a")) == 1
    assert bus.publish("s1", streaming.token("b")) == 0
    assert queue.qsize() == 1


@pytest.mark.asyncio
async def test_subscriber_receives_events_as_they_happen():
    bus = ProgressBus()
    queue = bus.subscribe("s1")

    async def produce():
        await asyncio.sleep(0.01)
        bus.publish("s1", streaming.stage_update("fetching"))

    producer = asyncio.create_task(produce())
    event = await asyncio.wait_for(queue.get(), timeout=1.0)
    await producer

    assert event.data["stage"] == "fetching"


def test_sse_serialization():
    event = streaming.error("boom", stage="fetching")

    assert event.to_sse() == {"event": "error", "data": json.dumps({"message": "boom", "stage": "fetching"})}
    assert event.format().startswith("event: error\ndata: ")
