"""Entry point that routes a query and dispatches it to the right tier."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, AsyncIterator

from loguru import logger

from deepdive.agents.orchestrator import ResearchOrchestrator
from deepdive.agents.router import RoutingDecision, TierRouter
from deepdive.errors import GenerationError
from deepdive.llm_client import TextGenerator
from deepdive.models.events import SSEEvent
from deepdive.models.research import Query, ResearchSession, Tier
from deepdive.services import streaming
from deepdive.services.lifecycle import LifecycleMonitor, Trigger
from deepdive.services.prompt_store import render_prompt
from deepdive.services.recall import RecallResponder
from deepdive.services.session_store import SessionStore

DIRECT_CONTEXT_CHARS = 6000

ACKNOWLEDGEMENTS = {
    "en": "Glad I could help. I've saved this research so you can ask about it later.",
    "tr": "Yardımcı olabildiğime sevindim. Bu araştırmayı kaydettim, daha sonra sorabilirsin.",
}


def _lang(locale: str) -> str:
    lang = (locale or "en").split("-")[0].split("_")[0].lower()
    return lang if lang in ACKNOWLEDGEMENTS else "en"


def _match_to_dict(match: Any) -> dict[str, Any]:
    data = asdict(match)
    if data.get("created_at") is not None:
        data["created_at"] = data["created_at"].isoformat()
    return data


class ConversationService:
    def __init__(
        self,
        *,
        router: TierRouter,
        orchestrator: ResearchOrchestrator,
        lifecycle: LifecycleMonitor,
        recall: RecallResponder,
        store: SessionStore,
        generator: TextGenerator,
    ):
        self.router = router
        self.orchestrator = orchestrator
        self.lifecycle = lifecycle
        self.recall = recall
        self.store = store
        self.generator = generator

    async def route(self, query: Query) -> RoutingDecision:
        """Classify the query; raises RoutingError for an unroutable query."""
        completed = await self.store.list_completed()
        return self.router.route(query, has_completed_sessions=bool(completed))

    async def handle(self, query: Query, session_id: str | None = None) -> AsyncIterator[SSEEvent]:
        decision = await self.route(query)
        async for event in self.dispatch(query, decision, session_id):
            yield event

    async def dispatch(
        self,
        query: Query,
        decision: RoutingDecision,
        session_id: str | None = None,
    ) -> AsyncIterator[SSEEvent]:
        if decision.tier == Tier.RECALL:
            async for event in self._recall(query, decision):
                yield event
            return

        session = await self.store.get(session_id) if session_id else None
        if session is not None and session.is_active:
            trigger = await self.lifecycle.on_user_message(session.session_id, query.text)
            if trigger == Trigger.SATISFACTION:
                ack = ACKNOWLEDGEMENTS[_lang(query.locale)]
                yield streaming.stage_update("session_completed", reason=trigger, session_id=session.session_id)
                yield streaming.token(ack)
                yield streaming.completed(ack, [], session_id=session.session_id)
                return
            if trigger is not None:
                logger.info(f"Session {session.session_id} closed by {trigger}; starting a new one")
                session = None

        if session is None or not session.is_active:
            session = ResearchSession(user_id=query.user_id)
            logger.info(f"Created session {session.session_id} for user {query.user_id}")

        yield streaming.tier_selected(decision.tier.value, decision.reason, session.session_id)
        session.append_message("user", query.text, decision.tier)
        await self.store.save(session)
        self.lifecycle.touch(session.session_id)

        if decision.tier == Tier.DIRECT:
            async for event in self._direct(session, query):
                yield event
            return

        async for event in self.orchestrator.research(session, query.text, tier=decision.tier):
            yield event

    async def _recall(self, query: Query, decision: RoutingDecision) -> AsyncIterator[SSEEvent]:
        yield streaming.tier_selected(Tier.RECALL.value, decision.reason)
        yield streaming.stage_update("recalling", search_terms=decision.search_terms)
        outcome = await self.recall.respond(
            query.text,
            search_terms=decision.search_terms,
            locale=query.locale,
        )
        matches = [_match_to_dict(m) for m in outcome.matches]
        yield streaming.stage_update("recalling", kind=outcome.kind, matches=matches)
        yield streaming.token(outcome.answer)
        event = streaming.completed(outcome.answer, matches, session_id=outcome.session_id)
        event.data["recall"] = outcome.kind
        yield event

    async def _direct(self, session: ResearchSession, query: Query) -> AsyncIterator[SSEEvent]:
        parts: list[str] = []
        try:
            async for chunk in self.generator.stream(
                session.conversation_text(DIRECT_CONTEXT_CHARS),
                temperature=0.3,
                max_tokens=2048,
                system=render_prompt("direct.system", locale=query.locale),
                caller="direct_answer",
            ):
                parts.append(chunk)
                yield streaming.token(chunk)
        except GenerationError as exc:
            logger.warning(f"Direct answer failed for session {session.session_id}: {exc}")
            yield streaming.error(str(exc), stage="answering")
            yield streaming.completed("".join(parts), [], session_id=session.session_id, partial=True)
            return

        answer = "".join(parts)
        if session.is_active:
            session.append_message("assistant", answer, Tier.DIRECT)
            await self.store.save(session)
        yield streaming.completed(answer, [], session_id=session.session_id)
