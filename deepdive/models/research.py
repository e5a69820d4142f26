from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from deepdive.errors import SessionClosedError
from deepdive.tools.text_utils import extract_keywords


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceType(str, Enum):
    WEB = "web"
    LITERATURE = "literature"
    PREPRINT = "preprint"
    TRIALS = "trials"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETE = "complete"


class Tier(str, Enum):
    RECALL = "recall"
    DIRECT = "direct"
    SEARCH = "search"
    DEEP = "deep"


@dataclass(frozen=True, slots=True)
class Query:
    text: str
    locale: str = "en"
    user_id: str = "anonymous"
    timestamp: datetime = field(default_factory=utcnow)


class SourceCandidate(BaseModel):
    """A single retrieved result from one external knowledge source."""

    id: str
    source_type: SourceType
    title: str
    snippet: str = ""
    published_date: Optional[date] = None
    url: str = ""
    raw_score: Optional[float] = None
    boosted_score: Optional[float] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_type.value, self.id)

    @property
    def citation_id(self) -> str:
        return f"{self.source_type.value}:{self.id}"


@dataclass(slots=True)
class RoundConfig:
    round_number: int
    query_text: str
    counts: dict[SourceType, int]
    total: int
    time_budget_s: float

    @property
    def requested_total(self) -> int:
        return sum(self.counts.values())


@dataclass(slots=True)
class FetchResult:
    candidates: dict[SourceType, list[SourceCandidate]] = field(default_factory=dict)
    failures: dict[SourceType, str] = field(default_factory=dict)
    timings_ms: dict[SourceType, int] = field(default_factory=dict)

    def all_candidates(self) -> list[SourceCandidate]:
        # Stable order: source type declaration order, then provider order.
        merged: list[SourceCandidate] = []
        for source_type in SourceType:
            merged.extend(self.candidates.get(source_type, []))
        return merged

    @property
    def total(self) -> int:
        return sum(len(items) for items in self.candidates.values())

    @property
    def is_total_outage(self) -> bool:
        return self.total == 0

    def counts(self) -> dict[str, int]:
        return {t.value: len(items) for t, items in self.candidates.items()}


class ReflectorVerdict(BaseModel):
    sufficient: bool = False
    gaps: list[str] = Field(default_factory=list)
    evidence_quality: Optional[str] = None
    reasoning: str = ""


class ResearchRound(BaseModel):
    """One fetch->rank->reflect iteration. Holds no reference to its session."""

    round_number: int
    run: int = 1
    query_text: str = ""
    requested_counts: dict[str, int] = Field(default_factory=dict)
    fetched_counts: dict[str, int] = Field(default_factory=dict)
    new_source_ids: list[str] = Field(default_factory=list)
    ranked_top_n: list[SourceCandidate] = Field(default_factory=list)
    reflector_verdict: Optional[ReflectorVerdict] = None
    failures: dict[str, str] = Field(default_factory=dict)
    duration_ms: int = 0


class Message(BaseModel):
    role: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)
    tier: Optional[Tier] = None


class ResearchSession(BaseModel):
    session_id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str = "anonymous"
    status: SessionStatus = SessionStatus.ACTIVE
    rounds: list[ResearchRound] = Field(default_factory=list)
    full_conversation: list[Message] = Field(default_factory=list)
    corpus: list[SourceCandidate] = Field(default_factory=list)
    citations: list[str] = Field(default_factory=list)
    title: Optional[str] = None
    summary: Optional[str] = None
    topic_keyphrases: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    completion_reason: Optional[str] = None
    degraded: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def unique_source_count(self) -> int:
        return len(self.corpus)

    @property
    def current_run(self) -> int:
        return self.rounds[-1].run if self.rounds else 0

    def current_run_rounds(self) -> list[ResearchRound]:
        run = self.current_run
        return [r for r in self.rounds if r.run == run]

    def corpus_keys(self) -> set[tuple[str, str]]:
        return {c.key for c in self.corpus}

    def _ensure_active(self) -> None:
        if not self.is_active:
            raise SessionClosedError(f"Session {self.session_id} is complete")

    def _touch(self) -> None:
        self.last_updated = utcnow()

    def append_round(self, research_round: ResearchRound) -> None:
        self._ensure_active()
        expected = len(self.rounds) + 1
        if research_round.round_number != expected:
            raise ValueError(
                f"Round number must be {expected}, got {research_round.round_number}"
            )
        self.rounds.append(research_round)
        self._touch()

    def append_message(self, role: str, content: str, tier: Tier | None = None) -> Message:
        self._ensure_active()
        message = Message(role=role, content=content, tier=tier)
        self.full_conversation.append(message)
        self._touch()
        return message

    def merge_corpus(self, candidates: list[SourceCandidate]) -> list[SourceCandidate]:
        """Add candidates whose (source_type, id) is new; return the ones added."""
        self._ensure_active()
        keys = self.corpus_keys()
        added: list[SourceCandidate] = []
        for candidate in candidates:
            if candidate.key in keys:
                continue
            keys.add(candidate.key)
            self.corpus.append(candidate)
            added.append(candidate)
        if added:
            self._touch()
        return added

    def record_citations(self, citation_ids: list[str]) -> None:
        self._ensure_active()
        for citation in citation_ids:
            if citation not in self.citations:
                self.citations.append(citation)

    def complete(
        self,
        reason: str,
        *,
        title: str | None = None,
        summary: str | None = None,
        topic_keyphrases: list[str] | None = None,
    ) -> None:
        """One-way active->complete transition; metadata is written only here."""
        self._ensure_active()
        self.title = title or None
        self.summary = summary or None
        self.topic_keyphrases = list(topic_keyphrases or [])
        self.status = SessionStatus.COMPLETE
        self.completion_reason = reason
        self.completed_at = utcnow()
        self._touch()

    def user_messages(self) -> list[Message]:
        return [m for m in self.full_conversation if m.role == "user"]

    def topic_terms(self) -> set[str]:
        terms: set[str] = set()
        for message in self.user_messages():
            terms.update(extract_keywords(message.content, min_len=5))
        return terms

    def conversation_text(self, max_chars: int | None = None) -> str:
        lines = [f"{m.role}: {m.content}" for m in self.full_conversation]
        text = "\n".join(lines)
        if max_chars is not None and len(text) > max_chars:
            text = text[-max_chars:]
        return text


@dataclass(frozen=True, slots=True)
class StoppingDecision:
    should_continue: bool
    reason: str


@dataclass(slots=True)
class RecallMatch:
    session_id: str
    relevance_score: float
    matched_fields: list[str] = field(default_factory=list)
    title: str | None = None
    created_at: datetime | None = None
