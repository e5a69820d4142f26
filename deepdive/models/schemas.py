from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from deepdive.models.research import ResearchSession, SessionStatus


# --- Requests ---


class ResearchRequest(BaseModel):
    query: str
    session_id: str | None = None
    locale: str = "en"
    user_id: str = "anonymous"


# --- Responses ---


class CancelResponse(BaseModel):
    session_id: str
    cancelled: bool


class SessionSummary(BaseModel):
    session_id: str
    user_id: str
    status: SessionStatus
    title: str | None
    summary: str | None
    rounds: int
    sources: int
    degraded: bool
    created_at: datetime
    last_updated: datetime
    completion_reason: str | None

    @classmethod
    def from_session(cls, session: ResearchSession) -> "SessionSummary":
        return cls(
            session_id=session.session_id,
            user_id=session.user_id,
            status=session.status,
            title=session.title,
            summary=session.summary,
            rounds=len(session.rounds),
            sources=session.unique_source_count,
            degraded=session.degraded,
            created_at=session.created_at,
            last_updated=session.last_updated,
            completion_reason=session.completion_reason,
        )


class SessionListResponse(BaseModel):
    sessions: list[SessionSummary]


class CompleteResponse(BaseModel):
    session_id: str
    completed: bool
    status: SessionStatus


class BackgroundResponse(BaseModel):
    completed: list[str] = Field(default_factory=list)


class RecallMatchResponse(BaseModel):
    session_id: str
    relevance_score: float
    matched_fields: list[str]
    title: str | None
    created_at: datetime | None


class RecallResponse(BaseModel):
    query: str
    matches: list[RecallMatchResponse]
