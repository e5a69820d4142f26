from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from deepdive.api.deps import get_engine
from deepdive.errors import SessionNotFound
from deepdive.models.research import SessionStatus
from deepdive.models.schemas import (
    BackgroundResponse,
    CompleteResponse,
    RecallMatchResponse,
    RecallResponse,
    SessionListResponse,
    SessionSummary,
)
from deepdive.services.container import Engine

router = APIRouter(prefix="/api", tags=["sessions"])


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(status: SessionStatus | None = None, engine: Engine = Depends(get_engine)):
    sessions = await engine.store.list_sessions(status)
    return SessionListResponse(sessions=[SessionSummary.from_session(s) for s in sessions])


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, engine: Engine = Depends(get_engine)):
    session = await engine.store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.model_dump(mode="json")


@router.post("/sessions/{session_id}/complete", response_model=CompleteResponse)
async def complete_session(session_id: str, engine: Engine = Depends(get_engine)):
    try:
        completed = await engine.lifecycle.complete(session_id, "manual")
        session = await engine.store.require(session_id)
    except SessionNotFound as exc:
        raise HTTPException(status_code=404, detail="Session not found") from exc
    return CompleteResponse(session_id=session_id, completed=completed, status=session.status)


@router.post("/lifecycle/background", response_model=BackgroundResponse)
async def background(engine: Engine = Depends(get_engine)):
    """Host is going to the background or shutting down."""
    completed = await engine.lifecycle.on_background()
    return BackgroundResponse(completed=completed)


@router.get("/recall", response_model=RecallResponse)
async def recall(q: str, limit: int | None = None, engine: Engine = Depends(get_engine)):
    matches = await engine.recall_search.search(q, limit)
    return RecallResponse(
        query=q,
        matches=[
            RecallMatchResponse(
                session_id=m.session_id,
                relevance_score=m.relevance_score,
                matched_fields=m.matched_fields,
                title=m.title,
                created_at=m.created_at,
            )
            for m in matches
        ],
    )
