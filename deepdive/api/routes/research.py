from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from deepdive.api.deps import get_engine
from deepdive.errors import RoutingError
from deepdive.models.events import EventType
from deepdive.models.research import Query
from deepdive.models.schemas import CancelResponse, ResearchRequest
from deepdive.services import logger as log_service
from deepdive.services.container import Engine

router = APIRouter(prefix="/api/research", tags=["research"])


@router.post("")
async def research(request: ResearchRequest, engine: Engine = Depends(get_engine)):
    """Route a query and stream its progress, tokens and completion as SSE."""
    query = Query(text=request.query, locale=request.locale, user_id=request.user_id)
    try:
        decision = await engine.conversation.route(query)
    except RoutingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if request.session_id and await engine.store.get(request.session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")

    async def event_generator():
        log_service.log_event(
            event_type="research_started",
            message="Research request accepted",
            session_id=request.session_id,
            tier=decision.tier.value,
            query=request.query[:100],
        )
        events = engine.conversation.dispatch(query, decision, request.session_id)
        async for event in engine.emitter.wrap(events, request.session_id):
            yield event.to_sse()

    return EventSourceResponse(event_generator())


@router.post("/{session_id}/cancel", response_model=CancelResponse)
async def cancel_research(session_id: str, engine: Engine = Depends(get_engine)):
    cancelled = engine.registry.cancel(session_id)
    return CancelResponse(session_id=session_id, cancelled=cancelled)


@router.get("/{session_id}/events")
async def follow_research(session_id: str, engine: Engine = Depends(get_engine)):
    """Subscribe to a session's live events from another client."""
    queue = engine.bus.subscribe(session_id)

    async def event_generator():
        try:
            while True:
                event = await queue.get()
                yield event.to_sse()
                if event.event == EventType.COMPLETED:
                    break
        finally:
            engine.bus.unsubscribe(session_id, queue)

    return EventSourceResponse(event_generator())
