"""Embedding-similarity ranking with deterministic credibility and recency boosts."""
from __future__ import annotations

import asyncio
import math
from datetime import date
from typing import Callable, Sequence

from loguru import logger

from deepdive.config import settings
from deepdive.models.research import SourceCandidate, SourceType
from deepdive.services.cancellation import CancellationToken
from deepdive.services.embeddings import EmbeddingService

CREDIBILITY = {
    SourceType.LITERATURE: 1.15,
    SourceType.TRIALS: 1.15,
    SourceType.PREPRINT: 1.05,
    SourceType.WEB: 1.0,
}


def credibility_multiplier(source_type: SourceType) -> float:
    return CREDIBILITY.get(source_type, 1.0)


def recency_multiplier(published: date | None, today: date) -> float:
    if published is None:
        return 1.0
    age_days = (today - published).days
    if age_days < 365:
        return 1.10
    if age_days < 3 * 365:
        return 1.05
    return 1.0


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def sort_key(candidate: SourceCandidate) -> tuple:
    boosted = candidate.boosted_score if candidate.boosted_score is not None else 0.0
    if candidate.published_date is not None:
        recency = (0, -candidate.published_date.toordinal())
    else:
        recency = (1, 0)
    return (
        -boosted,
        recency,
        -credibility_multiplier(candidate.source_type),
        candidate.source_type.value,
        candidate.id,
    )


class RelevanceRanker:
    def __init__(
        self,
        embedder: EmbeddingService,
        *,
        top_n: int | None = None,
        max_considered: int | None = None,
        snippet_chars: int | None = None,
        clock: Callable[[], date] = date.today,
    ):
        self.embedder = embedder
        self.top_n = top_n or settings.rank_top_n
        self.max_considered = max_considered or settings.rank_max_considered
        self.snippet_chars = snippet_chars or settings.rank_snippet_chars
        self.clock = clock

    def candidate_text(self, candidate: SourceCandidate) -> str:
        return f"{candidate.title}\n{candidate.snippet[: self.snippet_chars]}".strip()

    async def _embed_or_zero(self, text: str, label: str) -> list[float] | None:
        try:
            return await self.embedder.embed(text)
        except Exception as exc:
            logger.warning(f"Embedding failed for {label}, scoring as zero vector: {exc}")
            return None

    async def score(
        self,
        query_text: str,
        candidates: list[SourceCandidate],
        token: CancellationToken | None = None,
    ) -> list[SourceCandidate]:
        """Return copies of `candidates` with raw and boosted scores filled in."""
        if not candidates:
            return []

        async def embed_all() -> list[list[float] | None]:
            return await asyncio.gather(
                self._embed_or_zero(query_text, "query"),
                *(self._embed_or_zero(self.candidate_text(c), c.citation_id) for c in candidates),
            )

        vectors = await (token.run(embed_all()) if token is not None else embed_all())
        query_vec, candidate_vecs = vectors[0] or [], vectors[1:]
        today = self.clock()

        scored: list[SourceCandidate] = []
        for candidate, vec in zip(candidates, candidate_vecs):
            raw = max(0.0, cosine(query_vec, vec or []))
            boosted = (
                raw
                * credibility_multiplier(candidate.source_type)
                * recency_multiplier(candidate.published_date, today)
            )
            scored.append(candidate.model_copy(update={"raw_score": raw, "boosted_score": boosted}))
        return scored

    def select(self, candidates: list[SourceCandidate], top_n: int | None = None) -> list[SourceCandidate]:
        limit = self.top_n if top_n is None else top_n
        return sorted(candidates, key=sort_key)[:limit]

    async def merge(
        self,
        query_text: str,
        new_candidates: list[SourceCandidate],
        previously_seen: list[SourceCandidate] | None = None,
        token: CancellationToken | None = None,
    ) -> list[SourceCandidate]:
        """Score the unseen candidates and return them appended to `previously_seen`."""
        previously_seen = previously_seen or []
        seen = {c.key for c in previously_seen}
        fresh: list[SourceCandidate] = []
        for candidate in new_candidates:
            if candidate.key in seen:
                continue
            seen.add(candidate.key)
            fresh.append(candidate)

        if len(fresh) > self.max_considered:
            logger.info(f"Ranking first {self.max_considered} of {len(fresh)} new candidates")
            fresh = fresh[: self.max_considered]

        scored = await self.score(query_text, fresh, token)
        return [*previously_seen, *scored]

    async def rank(
        self,
        query_text: str,
        new_candidates: list[SourceCandidate],
        previously_seen: list[SourceCandidate] | None = None,
        token: CancellationToken | None = None,
        top_n: int | None = None,
    ) -> list[SourceCandidate]:
        merged = await self.merge(query_text, new_candidates, previously_seen, token)
        return self.select(merged, top_n)
