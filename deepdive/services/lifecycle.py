"""Active -> complete transitions for research sessions.

Any one trigger completes a session: a satisfaction phrase, a new-topic
phrase, a topic shift, the conversation growing past the token ceiling, the
inactivity timer firing, or the host going to the background. Completion runs
metadata generation once, best-effort, and is serialized per session so
concurrent triggers complete it exactly once.
"""
from __future__ import annotations

import asyncio
from collections import defaultdict

from loguru import logger

from deepdive.config import settings
from deepdive.models.research import ResearchSession
from deepdive.services import logger as log_service
from deepdive.services.cancellation import CancellationRegistry
from deepdive.services.metadata import MetadataGenerator
from deepdive.services.session_store import SessionStore
from deepdive.tools.text_utils import extract_keywords

SATISFACTION_PHRASES = (
    # English
    "thank you", "thanks", "that's all", "that is all", "that's enough",
    "got it", "all good", "perfect, thanks",
    # Turkish
    "teşekkürler", "teşekkür ederim", "sağ ol", "tamam anladım", "tamam yeter",
    "yeter", "anladım",
)

NEW_TOPIC_PHRASES = (
    "new topic", "something else", "different question", "change the subject",
    "switch topics", "another topic",
    "yeni konu", "başka bir şey", "şimdi başka", "yeni bir araştırma",
)

SATISFACTION_MAX_WORDS = 8
TOPIC_SHIFT_MIN_KEYWORDS = 2


class Trigger:
    SATISFACTION = "satisfaction"
    NEW_TOPIC = "new_topic"
    TOPIC_SHIFT = "topic_shift"
    TOKEN_CEILING = "token_ceiling"
    INACTIVITY = "inactivity"
    BACKGROUND = "background"
    MANUAL = "manual"


def _normalize(text: str) -> str:
    return " ".join(text.lower().replace("’", "'").split())


def is_satisfaction(text: str) -> bool:
    normalized = _normalize(text)
    if len(normalized.split()) > SATISFACTION_MAX_WORDS:
        return False
    return any(phrase in normalized for phrase in SATISFACTION_PHRASES)


def is_new_topic(text: str) -> bool:
    normalized = _normalize(text)
    return any(phrase in normalized for phrase in NEW_TOPIC_PHRASES)


def topic_overlap(text: str, topic_terms: set[str]) -> float | None:
    """Share of the message's keywords already in the session topic set."""
    keywords = set(extract_keywords(text, min_len=5))
    if len(keywords) < TOPIC_SHIFT_MIN_KEYWORDS or not topic_terms:
        return None
    return len(keywords & topic_terms) / len(keywords)


def estimated_tokens(session: ResearchSession, incoming: str = "") -> int:
    chars = sum(len(m.content) for m in session.full_conversation) + len(incoming)
    return chars // 4


class LifecycleMonitor:
    def __init__(
        self,
        store: SessionStore,
        metadata: MetadataGenerator,
        registry: CancellationRegistry,
        *,
        inactivity_timeout_s: float | None = None,
        topic_shift_threshold: float | None = None,
        token_ceiling: int | None = None,
    ):
        self.store = store
        self.metadata = metadata
        self.registry = registry
        self.inactivity_timeout_s = (
            settings.inactivity_timeout_seconds if inactivity_timeout_s is None else inactivity_timeout_s
        )
        self.topic_shift_threshold = (
            settings.topic_shift_threshold if topic_shift_threshold is None else topic_shift_threshold
        )
        self.token_ceiling = settings.session_token_ceiling if token_ceiling is None else token_ceiling
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._timers: dict[str, asyncio.Task] = {}

    def detect_trigger(self, session: ResearchSession, text: str) -> str | None:
        """Return the trigger an incoming user message fires, if any."""
        if not session.user_messages():
            return None
        if is_new_topic(text):
            return Trigger.NEW_TOPIC
        if is_satisfaction(text):
            return Trigger.SATISFACTION
        overlap = topic_overlap(text, session.topic_terms())
        if overlap is not None and overlap < self.topic_shift_threshold:
            logger.info(f"Topic shift in session {session.session_id}: overlap={overlap:.2f}")
            return Trigger.TOPIC_SHIFT
        if estimated_tokens(session, text) > self.token_ceiling:
            return Trigger.TOKEN_CEILING
        return None

    async def on_user_message(self, session_id: str, text: str) -> str | None:
        """Check triggers for an incoming message; complete the session if one fires.

        Returns the trigger that completed the session, or None when the
        session stays active (its inactivity timer is reset in that case).
        """
        session = await self.store.require(session_id)
        if not session.is_active:
            return None
        trigger = self.detect_trigger(session, text)
        if trigger is not None:
            await self.complete(session_id, trigger)
            return trigger
        self.touch(session_id)
        return None

    def touch(self, session_id: str) -> None:
        """(Re)start the inactivity timer for a session."""
        self._cancel_timer(session_id)
        if self.inactivity_timeout_s <= 0:
            return
        self._timers[session_id] = asyncio.create_task(self._expire(session_id, self.inactivity_timeout_s))

    async def _expire(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._timers.get(session_id) is asyncio.current_task():
            del self._timers[session_id]
        logger.info(f"Session {session_id} inactive for {delay:g}s")
        try:
            await self.complete(session_id, Trigger.INACTIVITY)
        except Exception as exc:
            logger.error(f"Inactivity completion failed for {session_id}: {exc}")

    def _cancel_timer(self, session_id: str) -> None:
        timer = self._timers.pop(session_id, None)
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def complete(self, session_id: str, reason: str = Trigger.MANUAL) -> bool:
        """Transition a session to complete. Returns False if it already was."""
        async with self._locks[session_id]:
            session = await self.store.require(session_id)
            if not session.is_active:
                self._locks.pop(session_id, None)
                return False

            self._cancel_timer(session_id)
            self.registry.cancel(session_id)

            title = summary = None
            topics: list[str] = []
            try:
                meta = await self.metadata.generate(session)
                title, summary, topics = meta.title, meta.summary, meta.key_topics
            except Exception as exc:
                logger.warning(f"Metadata generation failed for session {session_id}; completing without it: {exc}")

            session.complete(reason, title=title, summary=summary, topic_keyphrases=topics)
            await self.store.save(session)
            log_service.log_session_transition(
                session_id, "active", "completed", reason, has_metadata=bool(title or summary)
            )
            # Completed sessions never reopen; queued callers keep their own reference.
            self._locks.pop(session_id, None)
            return True

    async def on_background(self) -> list[str]:
        """Host is backgrounding or terminating: complete every active session."""
        active = await self.store.list_sessions()
        completed: list[str] = []
        for session in active:
            if not session.is_active:
                continue
            if await self.complete(session.session_id, Trigger.BACKGROUND):
                completed.append(session.session_id)
        return completed

    async def shutdown(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
