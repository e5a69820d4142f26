from __future__ import annotations

import json
from typing import Any

from loguru import logger

from deepdive.agents.planner import REFLECTION_UNAVAILABLE
from deepdive.config import settings
from deepdive.errors import GenerationError
from deepdive.llm_client import TextGenerator
from deepdive.models.research import ReflectorVerdict, ResearchSession
from deepdive.services.cancellation import CancellationToken
from deepdive.services.prompt_store import render_prompt
from deepdive.tools.text_utils import clip, extract_json_object

SOURCE_SAMPLE_SIZE = 15


def unavailable_verdict(reason: str) -> ReflectorVerdict:
    return ReflectorVerdict(
        sufficient=False,
        gaps=[REFLECTION_UNAVAILABLE],
        evidence_quality=None,
        reasoning=reason,
    )


def parse_verdict(raw_text: str) -> ReflectorVerdict:
    """Lenient parse of the judge's JSON; accepts camelCase and snake_case keys."""
    payload = extract_json_object(raw_text)

    sufficient: Any = payload.get("sufficient")
    if sufficient is None and "shouldContinue" in payload:
        sufficient = not bool(payload["shouldContinue"])
    if isinstance(sufficient, str):
        sufficient = sufficient.strip().lower() in {"true", "yes", "1"}

    gaps = payload.get("gaps", payload.get("gapsIdentified", [])) or []
    if isinstance(gaps, str):
        gaps = [gaps]

    quality = payload.get("evidence_quality", payload.get("evidenceQuality"))
    if isinstance(quality, str):
        quality = quality.strip().lower() or None
    else:
        quality = None

    return ReflectorVerdict(
        sufficient=bool(sufficient),
        gaps=[str(g).strip() for g in gaps if str(g).strip()],
        evidence_quality=quality,
        reasoning=str(payload.get("reasoning", "") or ""),
    )


class RoundReflector:
    def __init__(self, generator: TextGenerator, *, temperature: float | None = None, max_rounds: int | None = None):
        self.generator = generator
        self.temperature = settings.reflector_temperature if temperature is None else temperature
        self.max_rounds = max_rounds or settings.max_rounds

    def build_prompt(self, session: ResearchSession, query: str) -> str:
        rounds = session.current_run_rounds()
        summary_lines = []
        for r in rounds:
            counts = ", ".join(f"{k}: {v}" for k, v in sorted(r.fetched_counts.items())) or "none"
            failed = f" (failed: {', '.join(sorted(r.failures))})" if r.failures else ""
            summary_lines.append(f"Round {len(summary_lines) + 1}: {counts}{failed}")

        latest = rounds[-1].ranked_top_n if rounds else []
        sample_lines = [
            f"{c.source_type.value}: \"{clip(c.title, 160)}\" [{c.citation_id}]"
            + (f" ({c.published_date.isoformat()})" if c.published_date else "")
            for c in latest[:SOURCE_SAMPLE_SIZE]
        ]
        return render_prompt(
            "reflector.user",
            round_number=len(rounds),
            max_rounds=self.max_rounds,
            query=query,
            rounds_summary="\n".join(summary_lines) or "No rounds yet.",
            source_sample="\n".join(sample_lines) or "No sources found.",
            total_sources=session.unique_source_count,
        )

    async def reflect(
        self,
        session: ResearchSession,
        query: str,
        token: CancellationToken | None = None,
    ) -> ReflectorVerdict:
        prompt = self.build_prompt(session, query)
        call = self.generator.generate(
            prompt,
            temperature=self.temperature,
            max_tokens=1024,
            system=render_prompt("reflector.system"),
            caller="reflector",
        )
        try:
            raw = await (token.run(call) if token is not None else call)
        except GenerationError as exc:
            logger.warning(f"Reflection failed for session {session.session_id}: {exc}")
            return unavailable_verdict(str(exc))

        try:
            verdict = parse_verdict(raw)
        except (json.JSONDecodeError, ValueError) as exc:
            logger.warning(f"Reflection returned unparseable output: {exc}")
            return unavailable_verdict(f"unparseable reflection: {exc}")

        logger.info(
            f"Reflection: sufficient={verdict.sufficient} quality={verdict.evidence_quality} "
            f"gaps={len(verdict.gaps)}"
        )
        return verdict
