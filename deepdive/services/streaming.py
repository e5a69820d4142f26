from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, AsyncIterator

from loguru import logger

from deepdive.models.events import EventType, SSEEvent


def stage_update(stage: str, **kwargs: Any) -> SSEEvent:
    return SSEEvent(event=EventType.STAGE_UPDATE, data={"stage": stage, **kwargs})


def token(text: str) -> SSEEvent:
    return SSEEvent(event=EventType.TOKEN, data={"text": text})


def tier_selected(tier: str, reason: str, session_id: str | None = None) -> SSEEvent:
    data: dict[str, Any] = {"tier": tier, "reason": reason}
    if session_id:
        data["session_id"] = session_id
    return SSEEvent(event=EventType.TIER_SELECTED, data=data)


def completed(
    answer: str,
    sources: list[dict],
    *,
    session_id: str | None = None,
    partial: bool = False,
    degraded: bool = False,
    rounds: int | None = None,
    runtime_ms: int | None = None,
) -> SSEEvent:
    """Terminal event carrying the final (or best partial) answer."""
    data: dict[str, Any] = {
        "answer": answer,
        "sources": sources,
        "partial": partial,
        "degraded": degraded,
    }
    if session_id:
        data["session_id"] = session_id
    if rounds is not None:
        data["rounds"] = rounds
    if runtime_ms is not None:
        data["runtime_ms"] = runtime_ms
    return SSEEvent(event=EventType.COMPLETED, data=data)


def error(message: str, stage: str | None = None) -> SSEEvent:
    data: dict[str, Any] = {"message": message}
    if stage:
        data["stage"] = stage
    return SSEEvent(event=EventType.ERROR, data=data)


class ProgressBus:
    """Push-based fan-out of events to any number of subscribers per session."""

    def __init__(self, maxsize: int = 256):
        self.maxsize = maxsize
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, session_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers[session_id].add(queue)
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(session_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            self._subscribers.pop(session_id, None)

    def publish(self, session_id: str, event: SSEEvent) -> int:
        delivered = 0
        for queue in list(self._subscribers.get(session_id, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event.event.value} event for slow subscriber on {session_id}")
        return delivered

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))


class StreamEmitter:
    """Wraps an event stream so every consumer sees exactly one terminal `completed`."""

    def __init__(self, bus: ProgressBus | None = None):
        self.bus = bus

    async def wrap(
        self,
        events: AsyncIterator[SSEEvent],
        session_id: str | None = None,
    ) -> AsyncIterator[SSEEvent]:
        answer_parts: list[str] = []
        last_stage: str | None = None
        sid = session_id
        saw_completed = False
        failure: Exception | None = None

        try:
            async for event in events:
                if event.event == EventType.TOKEN:
                    answer_parts.append(str(event.data.get("text", "")))
                elif event.event == EventType.STAGE_UPDATE:
                    last_stage = event.data.get("stage") or last_stage
                elif event.event == EventType.TIER_SELECTED:
                    sid = event.data.get("session_id") or sid
                elif event.event == EventType.COMPLETED:
                    saw_completed = True
                self._publish(sid, event)
                yield event
        except Exception as exc:
            failure = exc
            logger.exception(f"Event stream for session {sid} failed: {exc}")

        if saw_completed:
            return

        if failure is not None:
            err = error(str(failure) or type(failure).__name__, stage=last_stage)
            self._publish(sid, err)
            yield err

        logger.warning(f"Stream for session {sid} closed without completion; synthesizing one")
        fallback = completed(
            "".join(answer_parts),
            [],
            session_id=sid,
            partial=True,
        )
        fallback.data["last_stage"] = last_stage
        self._publish(sid, fallback)
        yield fallback

    def _publish(self, session_id: str | None, event: SSEEvent) -> None:
        if self.bus is not None and session_id:
            self.bus.publish(session_id, event)
