from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, AsyncIterator, Callable, Protocol

from loguru import logger

from deepdive.agents.planner import RoundPlanner
from deepdive.agents.reflector import RoundReflector
from deepdive.agents.stopping import StoppingEvaluator
from deepdive.agents.synthesizer import Synthesizer, extract_citations
from deepdive.config import settings
from deepdive.errors import ResearchCancelled, SessionClosedError, TotalSourceOutage
from deepdive.models.events import SSEEvent
from deepdive.models.research import (
    FetchResult,
    ReflectorVerdict,
    ResearchRound,
    ResearchSession,
    RoundConfig,
    SourceCandidate,
    Tier,
)
from deepdive.services import logger as log_service
from deepdive.services import streaming
from deepdive.services.cancellation import CancellationRegistry, CancellationToken
from deepdive.services.fetcher import ParallelFetcher
from deepdive.services.ranker import RelevanceRanker


class Stage(str, Enum):
    PLANNING = "planning"
    FETCHING = "fetching"
    RANKING = "ranking"
    REFLECTING = "reflecting"
    DECIDING = "deciding"
    SYNTHESIZING = "synthesizing"
    DONE = "done"


class SessionSaver(Protocol):
    async def save(self, session: ResearchSession) -> None: ...


def source_to_dict(source: SourceCandidate) -> dict[str, Any]:
    return {
        "id": source.citation_id,
        "type": source.source_type.value,
        "title": source.title,
        "url": source.url,
        "published_date": source.published_date.isoformat() if source.published_date else None,
        "score": round(source.boosted_score or 0.0, 4),
    }


class ResearchOrchestrator:
    """Drives plan -> fetch -> rank -> reflect -> decide rounds, then streams synthesis.

    Every event is yielded as it happens. A round is appended to the session
    only after fetching and ranking finish; reflection is attached to the
    round it judged. All external awaits go through the session's
    cancellation token.
    """

    def __init__(
        self,
        *,
        fetcher: ParallelFetcher,
        ranker: RelevanceRanker,
        planner: RoundPlanner,
        reflector: RoundReflector,
        stopping: StoppingEvaluator,
        synthesizer: Synthesizer,
        registry: CancellationRegistry,
        store: SessionSaver | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetcher = fetcher
        self.ranker = ranker
        self.planner = planner
        self.reflector = reflector
        self.stopping = stopping
        self.synthesizer = synthesizer
        self.registry = registry
        self.store = store
        self.clock = clock

    async def research(
        self,
        session: ResearchSession,
        query: str,
        *,
        tier: Tier = Tier.DEEP,
    ) -> AsyncIterator[SSEEvent]:
        token = self.registry.create(session.session_id)
        started = self.clock()
        run = session.current_run + 1
        stage = Stage.PLANNING
        pool: list[SourceCandidate] = []
        ranked: list[SourceCandidate] = []
        gaps: list[str] = []
        answer_parts: list[str] = []
        round_in_run = 0
        log_service.log_research_step(session.session_id, "research", "started", {"tier": tier.value, "query": query})

        try:
            while True:
                round_in_run += 1
                round_started = self.clock()

                stage = Stage.PLANNING
                yield streaming.stage_update(stage.value, round=round_in_run)
                config = self._plan(session, round_in_run, gaps, query, tier)

                stage = Stage.FETCHING
                yield streaming.stage_update(
                    stage.value,
                    round=round_in_run,
                    query=config.query_text,
                    counts={t.value: c for t, c in config.counts.items()},
                )
                outcome: dict[str, FetchResult] = {}
                outage: TotalSourceOutage | None = None
                try:
                    async for event in self._fetch_live(config, token, outcome):
                        yield event
                except TotalSourceOutage as exc:
                    outage = exc

                if outage is not None:
                    logger.error(f"Session {session.session_id}: {outage} {outage.failures}")
                    session.degraded = True
                    session.append_round(ResearchRound(
                        round_number=len(session.rounds) + 1,
                        run=run,
                        query_text=config.query_text,
                        requested_counts={t.value: c for t, c in config.counts.items()},
                        fetched_counts={},
                        failures=outage.failures,
                        duration_ms=int((self.clock() - round_started) * 1000),
                    ))
                    await self._persist(session)
                    yield streaming.stage_update(
                        stage.value, round=round_in_run, status="outage", failures=outage.failures
                    )
                    break

                fetched = outcome["result"]
                failures = {t.value: reason for t, reason in fetched.failures.items()}

                stage = Stage.RANKING
                yield streaming.stage_update(stage.value, round=round_in_run, candidates=fetched.total)
                before = {c.key for c in pool}
                pool = await self.ranker.merge(config.query_text, fetched.all_candidates(), pool, token)
                added = session.merge_corpus([c for c in pool if c.key not in before])
                ranked = self.ranker.select(pool)

                research_round = ResearchRound(
                    round_number=len(session.rounds) + 1,
                    run=run,
                    query_text=config.query_text,
                    requested_counts={t.value: c for t, c in config.counts.items()},
                    fetched_counts=fetched.counts(),
                    new_source_ids=[c.citation_id for c in added],
                    ranked_top_n=ranked,
                    failures=failures,
                    duration_ms=int((self.clock() - round_started) * 1000),
                )
                session.append_round(research_round)
                await self._persist(session)
                log_service.log_research_step(
                    session.session_id,
                    "round",
                    "completed",
                    {"round": research_round.round_number, "new_sources": len(added), "failures": failures},
                )

                if tier == Tier.SEARCH:
                    break

                stage = Stage.REFLECTING
                yield streaming.stage_update(stage.value, round=round_in_run)
                verdict: ReflectorVerdict = await self.reflector.reflect(session, query, token)
                research_round.reflector_verdict = verdict

                stage = Stage.DECIDING
                decision = self.stopping.should_continue(session, verdict, self.clock() - started)
                logger.info(f"Session {session.session_id} round {round_in_run}: {decision.reason}")
                yield streaming.stage_update(
                    stage.value,
                    round=round_in_run,
                    should_continue=decision.should_continue,
                    reason=decision.reason,
                    unique_sources=session.unique_source_count,
                )
                if not decision.should_continue:
                    break
                gaps = verdict.gaps

            stage = Stage.SYNTHESIZING
            yield streaming.stage_update(stage.value, sources=len(ranked), degraded=session.degraded)
            async for chunk in self.synthesizer.stream(
                query,
                ranked,
                rounds_completed=round_in_run,
                degraded=session.degraded,
                token=token,
            ):
                answer_parts.append(chunk)
                yield streaming.token(chunk)

            answer = "".join(answer_parts)
            cited, unknown = extract_citations(answer, {c.citation_id for c in session.corpus})
            if unknown:
                logger.error(f"Session {session.session_id}: answer cited unknown sources {unknown}")
            session.record_citations(cited)
            session.append_message("assistant", answer, tier)
            await self._persist(session)

            by_id = {c.citation_id: c for c in session.corpus}
            sources = [source_to_dict(by_id[c]) for c in cited] or [source_to_dict(c) for c in ranked]
            stage = Stage.DONE
            yield streaming.stage_update(stage.value)
            yield streaming.completed(
                answer,
                sources,
                session_id=session.session_id,
                degraded=session.degraded,
                rounds=round_in_run,
                runtime_ms=int((self.clock() - started) * 1000),
            )
            log_service.log_research_step(
                session.session_id, "research", "completed", {"rounds": round_in_run, "citations": len(cited)}
            )
        except (ResearchCancelled, SessionClosedError) as exc:
            logger.info(f"Research for session {session.session_id} stopped during {stage.value}: {exc}")
            log_service.log_research_step(session.session_id, "research", "cancelled", {"stage": stage.value})
            yield streaming.error(str(exc), stage=stage.value)
            yield streaming.completed(
                "".join(answer_parts),
                [source_to_dict(c) for c in ranked],
                session_id=session.session_id,
                partial=True,
                degraded=session.degraded,
                rounds=round_in_run,
            )
        finally:
            self.registry.remove(session.session_id, token)

    async def _fetch_live(
        self,
        config: RoundConfig,
        token: CancellationToken,
        outcome: dict[str, FetchResult],
    ) -> AsyncIterator[SSEEvent]:
        """Run one fetch, yielding per-source progress as each source reports.

        The result lands in `outcome["result"]`; fetch errors propagate after
        the queued progress has been yielded.
        """
        queue: asyncio.Queue[SSEEvent] = asyncio.Queue()
        task = asyncio.create_task(self.fetcher.fetch(config, token, on_progress=queue.put_nowait))
        getter: asyncio.Task | None = None
        try:
            while True:
                getter = asyncio.create_task(queue.get())
                await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if not getter.done():
                    break
                yield getter.result()
            while not queue.empty():
                yield queue.get_nowait()
            outcome["result"] = task.result()
        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            if not task.done():
                task.cancel()

    def _plan(self, session: ResearchSession, round_in_run: int, gaps: list[str], query: str, tier: Tier):
        if tier == Tier.SEARCH:
            return self.planner.plan(
                session,
                round_in_run,
                gaps,
                query=query,
                total=settings.search_tier_total,
                web_count=settings.search_tier_web_count,
            )
        return self.planner.plan(session, round_in_run, gaps, query=query)

    async def _persist(self, session: ResearchSession) -> None:
        if self.store is None:
            return
        try:
            await self.store.save(session)
        except Exception as exc:
            logger.error(f"Failed to persist session {session.session_id}: {exc}")
