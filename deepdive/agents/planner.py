"""Per-round source budgets.

Web gets a fixed share of every round; the remainder is split across
literature, preprint and trials by the query's topical category, then
clamped with the largest-remainder method so the counts always sum to the
round total.
"""
from __future__ import annotations

from loguru import logger

from deepdive.config import settings
from deepdive.models.research import ResearchSession, RoundConfig, SourceType
from deepdive.services.allocation import largest_remainder
from deepdive.tools.text_utils import clip, extract_keywords

REFLECTION_UNAVAILABLE = "reflection unavailable"

# literature / preprint / trials
CATEGORY_RATIOS: dict[str, tuple[float, float, float]] = {
    "drug_safety": (0.70, 0.10, 0.20),
    "new_research": (0.50, 0.30, 0.20),
    "nutrition": (0.80, 0.15, 0.05),
    "treatment": (0.65, 0.10, 0.25),
    "general": (0.55, 0.20, 0.25),
}

CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "drug_safety": (
        "side effect", "adverse", "interaction", "dose", "dosage", "safety", "safe",
        "toxicity", "contraindicat", "overdose",
        "yan etki", "etkileşim", "doz", "güvenli", "zararlı",
    ),
    "new_research": (
        "latest", "new study", "new research", "recent", "breakthrough", "emerging",
        "2024", "2025", "2026", "trial results",
        "son araştırma", "yeni çalışma", "en son", "güncel",
    ),
    "nutrition": (
        "diet", "food", "eat", "meal", "carb", "sugar", "nutrition", "recipe",
        "fasting", "protein", "fiber",
        "beslenme", "yemek", "diyet", "karbonhidrat", "şeker", "un ",
    ),
    "treatment": (
        "treatment", "therapy", "guideline", "protocol", "manage", "insulin",
        "medication", "target", "cure",
        "tedavi", "terapi", "kılavuz", "hedef", "ilaç",
    ),
}


def categorize(query: str) -> str:
    text = f" {query.lower()} "
    best, best_hits = "general", 0
    # Dict order breaks ties, so drug safety wins over treatment.
    for category, keywords in CATEGORY_KEYWORDS.items():
        hits = sum(1 for kw in keywords if kw in text)
        if hits > best_hits:
            best, best_hits = category, hits
    return best


def refine_query(query: str, gaps: list[str]) -> str:
    """Append the terms of the most important open gap to the original query."""
    usable = [g for g in gaps if g and g.strip().lower() != REFLECTION_UNAVAILABLE]
    if not usable:
        return query
    base_terms = set(extract_keywords(query))
    extra = [kw for kw in extract_keywords(clip(usable[0], 140)) if kw not in base_terms][:8]
    if not extra:
        return query
    return f"{query} {' '.join(extra)}"


class RoundPlanner:
    def __init__(
        self,
        *,
        initial_total: int | None = None,
        follow_up_total: int | None = None,
        initial_web: int | None = None,
        follow_up_web: int | None = None,
        time_budget_s: float | None = None,
    ):
        self.initial_total = initial_total if initial_total is not None else settings.initial_round_total
        self.follow_up_total = follow_up_total if follow_up_total is not None else settings.follow_up_round_total
        self.initial_web = initial_web if initial_web is not None else settings.initial_round_web_count
        self.follow_up_web = follow_up_web if follow_up_web is not None else settings.follow_up_round_web_count
        self.time_budget_s = time_budget_s if time_budget_s is not None else settings.round_time_budget_seconds

    def plan(
        self,
        session: ResearchSession,
        round_number: int,
        gaps: list[str] | None = None,
        *,
        query: str | None = None,
        total: int | None = None,
        web_count: int | None = None,
    ) -> RoundConfig:
        """Build the config for `round_number` (1-based within the current research run)."""
        if query is None:
            messages = session.user_messages()
            query = messages[-1].content if messages else ""
        first = round_number <= 1
        if total is None:
            total = self.initial_total if first else self.follow_up_total
        if web_count is None:
            web_count = self.initial_web if first else self.follow_up_web
        web_count = max(0, min(web_count, total))

        category = categorize(query)
        lit, pre, trials = CATEGORY_RATIOS[category]
        academic = largest_remainder(
            {SourceType.LITERATURE: lit, SourceType.PREPRINT: pre, SourceType.TRIALS: trials},
            total - web_count,
        )
        counts = {SourceType.WEB: web_count, **academic}

        if sum(counts.values()) != total:
            logger.error(f"Planner produced {counts} for total {total}; rescaling")
            counts = largest_remainder(counts, total)

        query_text = query if first else refine_query(query, gaps or [])
        logger.info(
            f"Round {round_number} plan: category={category} total={total} "
            f"counts={ {t.value: c for t, c in counts.items()} }"
        )
        return RoundConfig(
            round_number=round_number,
            query_text=query_text,
            counts=counts,
            total=total,
            time_budget_s=self.time_budget_s,
        )
