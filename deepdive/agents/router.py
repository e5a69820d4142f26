"""Query classification into recall / direct / search / deep tiers.

Recall detection runs first: a recall question needs prior session content
that none of the other tiers can see.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from loguru import logger

from deepdive.errors import RoutingError
from deepdive.models.research import Query, Tier


def _compile(patterns: list[str]) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


RECALL_PATTERNS: dict[str, dict[str, list[re.Pattern]]] = {
    "en": {
        "past_tense": _compile([
            r"\bwhat (did|was it) (we|i) (find|found|learn|learned|discuss|discussed|research|researched)\b",
            r"\bwhat did you (say|tell me|find)\b",
            r"\bwhat was (that|the) (answer|result|conclusion)\b",
            r"\bhow did (it|that) (go|turn out)\b",
        ]),
        "memory_phrases": _compile([
            r"\bdo you remember\b",
            r"\bremind me\b",
            r"\bi (can't|cannot|don't) remember\b",
            # Time words only count next to a conversational subject.
            r"\b(we|you|i)\s+(\w+ed|said|told me|found|saw|read|had|did)\b[^.?!]{0,40}"
            r"\b(last time|previously|earlier|the other day)\b",
            r"\b(last time|previously|earlier|the other day),?\s+(we|you|i)\b",
            r"\bwe (talked|spoke) about\b",
        ]),
        "reference_phrases": _compile([
            r"\bthat (thing|research|topic|study|info(rmation)?) (we|you|i)\b",
            r"\bthe one about\b",
        ]),
    },
    "tr": {
        "past_tense": _compile([
            r"neydi", r"ne\s+konuşmuştuk", r"ne\s+araştırmıştık", r"ne\s+bulmuştuk",
            r"ne\s+öğrenmiştik", r"ne\s+demiştik", r"ne\s+çıkmıştı", r"nasıldı",
        ]),
        "memory_phrases": _compile([
            r"hatırlıyor\s+musun", r"hatırla", r"hatırlat\s+bana", r"hatırlamıyorum",
            r"daha\s+önce", r"geçen\s+sefer", r"o\s+zaman", r"geçenlerde",
        ]),
        "reference_phrases": _compile([
            r"o\s+şey", r"şu\s+konu", r"o\s+araştırma", r"o\s+bilgi",
            r"şu\s+.*\s+ile\s+ilgili\s+olan",
        ]),
    },
}

FILLER_PHRASES: dict[str, list[str]] = {
    "en": [
        "do you remember", "remind me", "what did we find", "what did we learn",
        "what did we discuss", "what did you say", "last time", "previously",
        "earlier", "the other day", "we talked about", "that thing", "about",
    ],
    "tr": [
        "hatırlıyor musun", "hatırlat", "hatırla", "daha önce", "o zaman",
        "o şey", "neydi", "nasıldı", "geçen", "şu",
    ],
}

DEEP_TRIGGERS = _compile([
    r"\bdeep\s+research\b", r"\bdeep\s+dive\b", r"\bin-depth\s+research\b",
    r"\bcomprehensive(ly)?\b", r"\bthoroughly\s+research\b",
    r"derinlemesine", r"kapsamlı\s+araştır", r"detaylı\s+araştır", r"dikkatlice\s+araştır",
])

SEARCH_TRIGGERS = _compile([
    r"\bresearch\b", r"\blatest\b", r"\brecent\b", r"\bis it safe\b", r"\bshould i\b",
    r"\bside effects?\b", r"\binteractions?\b", r"\bclinical trials?\b", r"\bstud(y|ies)\b",
    r"\bguidelines?\b", r"\b202[4-9]\b",
    r"araştır", r"güncel", r"son gelişme", r"güvenli mi", r"yan etki", r"klinik deneme",
    r"internetten.*bak",
])


@dataclass(slots=True)
class RoutingDecision:
    tier: Tier
    reason: str
    search_terms: str | None = None


def _pattern_sets(locale: str) -> list[dict[str, list[re.Pattern]]]:
    lang = (locale or "").split("-")[0].split("_")[0].lower()
    if lang in RECALL_PATTERNS:
        return [RECALL_PATTERNS[lang]]
    return list(RECALL_PATTERNS.values())


def detect_recall(text: str, locale: str = "en") -> str | None:
    """Return the name of the first matching recall pattern group, if any."""
    for pattern_set in _pattern_sets(locale):
        for group, patterns in pattern_set.items():
            if any(p.search(text) for p in patterns):
                return group
    return None


def extract_search_terms(text: str, locale: str = "en") -> str:
    lang = (locale or "").split("-")[0].lower()
    fillers = FILLER_PHRASES.get(lang) or [f for group in FILLER_PHRASES.values() for f in group]
    cleaned = text
    for filler in sorted(fillers, key=len, reverse=True):
        cleaned = re.sub(rf"\b{re.escape(filler)}\b", " ", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"[?!.,]+", " ", cleaned)
    cleaned = " ".join(cleaned.split())
    return cleaned or text.strip()


class TierRouter:
    def route(self, query: Query, has_completed_sessions: bool = True) -> RoutingDecision:
        text = (query.text or "").strip()
        if not text:
            raise RoutingError("Query is empty")

        recall_group = detect_recall(text, query.locale)
        if recall_group and has_completed_sessions:
            terms = extract_search_terms(text, query.locale)
            logger.info(f"Recall detected ({recall_group}); search terms: {terms!r}")
            return RoutingDecision(Tier.RECALL, f"recall phrasing ({recall_group})", terms)
        if recall_group:
            logger.info("Recall phrasing detected but no completed sessions exist; routing normally")

        if any(p.search(text) for p in DEEP_TRIGGERS):
            return RoutingDecision(Tier.DEEP, "explicit deep research request")
        if any(p.search(text) for p in SEARCH_TRIGGERS):
            return RoutingDecision(Tier.SEARCH, "needs current or sourced evidence")
        return RoutingDecision(Tier.DIRECT, "answerable directly")
