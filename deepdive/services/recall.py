"""Recall over completed sessions: weighted keyword search plus re-answering."""
from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from deepdive.config import settings
from deepdive.errors import GenerationError
from deepdive.llm_client import TextGenerator
from deepdive.models.research import RecallMatch, ResearchSession
from deepdive.services.prompt_store import render_prompt
from deepdive.services.session_store import SessionStore
from deepdive.tools.text_utils import clip, extract_keywords, tokenize

FIELD_WEIGHTS = {
    "title": 3.0,
    "summary": 2.0,
    "topic_keyphrases": 2.5,
    "conversation": 1.0,
}

CONVERSATION_CHAR_LIMIT = 12000


def _term_matches(term: str, tokens: set[str]) -> bool:
    # Prefix match both ways so inflected forms ("insülinin", "studies") still hit.
    for token in tokens:
        if token.startswith(term):
            return True
        if len(token) >= 4 and term.startswith(token):
            return True
    return False


def session_fields(session: ResearchSession) -> dict[str, str]:
    return {
        "title": session.title or "",
        "summary": session.summary or "",
        "topic_keyphrases": " ".join(session.topic_keyphrases),
        "conversation": session.conversation_text(),
    }


def score_session(terms: list[str], session: ResearchSession) -> tuple[float, list[str]]:
    """Weighted fraction of query terms found per field, normalized over the fields present."""
    if not terms:
        return 0.0, []
    weighted = 0.0
    weight_sum = 0.0
    matched: list[str] = []
    for name, text in session_fields(session).items():
        if not text.strip():
            continue
        weight = FIELD_WEIGHTS[name]
        weight_sum += weight
        tokens = set(tokenize(text))
        hits = sum(1 for term in terms if _term_matches(term, tokens))
        if hits:
            matched.append(name)
            weighted += weight * hits / len(terms)
    if weight_sum == 0:
        return 0.0, []
    return weighted / weight_sum, matched


class RecallSearch:
    def __init__(self, store: SessionStore, *, min_score: float | None = None, limit: int | None = None):
        self.store = store
        self.min_score = settings.recall_min_score if min_score is None else min_score
        self.limit = limit or settings.recall_limit

    async def search(self, query: str, limit: int | None = None) -> list[RecallMatch]:
        terms = extract_keywords(query)
        if not terms:
            return []
        sessions = await self.store.list_completed()
        matches: list[RecallMatch] = []
        for session in sessions:
            if session.is_active:
                continue
            score, fields = score_session(terms, session)
            if score < self.min_score:
                continue
            matches.append(RecallMatch(
                session_id=session.session_id,
                relevance_score=round(score, 4),
                matched_fields=fields,
                title=session.title,
                created_at=session.created_at,
            ))
        matches.sort(key=lambda m: (m.relevance_score, m.created_at), reverse=True)
        logger.info(f"Recall search for {terms} matched {len(matches)} of {len(sessions)} completed sessions")
        return matches[: limit or self.limit]


@dataclass(slots=True)
class RecallOutcome:
    kind: str  # single | disambiguation | no_match
    matches: list[RecallMatch] = field(default_factory=list)
    answer: str = ""
    session_id: str | None = None


NO_MATCH_MESSAGES = {
    "en": "I couldn't find earlier research about that. Would you like me to research it now?",
    "tr": "Bununla ilgili daha önce yapılmış bir araştırma bulamadım. Şimdi araştırmamı ister misin?",
}

DISAMBIGUATION_HEADERS = {
    "en": "I found several earlier research sessions that could match. Which one do you mean?",
    "tr": "Eşleşebilecek birkaç önceki araştırma buldum. Hangisini kastediyorsun?",
}


def _lang(locale: str) -> str:
    lang = (locale or "en").split("-")[0].split("_")[0].lower()
    return lang if lang in NO_MATCH_MESSAGES else "en"


class RecallResponder:
    def __init__(
        self,
        search: RecallSearch,
        store: SessionStore,
        generator: TextGenerator,
        *,
        strong_margin: float | None = None,
    ):
        self.search = search
        self.store = store
        self.generator = generator
        self.strong_margin = settings.recall_strong_margin if strong_margin is None else strong_margin

    async def respond(self, query: str, *, search_terms: str | None = None, locale: str = "en") -> RecallOutcome:
        matches = await self.search.search(search_terms or query)
        lang = _lang(locale)
        if not matches:
            return RecallOutcome(kind="no_match", answer=NO_MATCH_MESSAGES[lang])

        strong = len(matches) == 1 or (
            matches[0].relevance_score - matches[1].relevance_score >= self.strong_margin
        )
        if not strong:
            lines = [DISAMBIGUATION_HEADERS[lang]]
            for idx, match in enumerate(matches, start=1):
                when = match.created_at.date().isoformat() if match.created_at else "?"
                lines.append(f"{idx}. {match.title or 'Untitled research'} ({when})")
            return RecallOutcome(kind="disambiguation", matches=matches, answer="\n".join(lines))

        top = matches[0]
        session = await self.store.require(top.session_id)
        answer = await self._answer(query, session, locale)
        return RecallOutcome(kind="single", matches=[top], answer=answer, session_id=session.session_id)

    async def _answer(self, query: str, session: ResearchSession, locale: str = "en") -> str:
        when = session.created_at.date().isoformat()
        title = session.title or "Untitled research"
        try:
            return await self.generator.generate(
                render_prompt(
                    "recall.user",
                    title=title,
                    date=when,
                    conversation=session.conversation_text(CONVERSATION_CHAR_LIMIT),
                    query=query,
                ),
                temperature=0.2,
                max_tokens=1024,
                system=render_prompt("recall.system", locale=locale, date=when),
                caller="recall",
            )
        except GenerationError as exc:
            logger.warning(f"Recall answer generation failed for {session.session_id}: {exc}")
            summary = session.summary or clip(session.conversation_text(), 400)
            return f"On {when} you researched \"{title}\".\n\n{summary}"
