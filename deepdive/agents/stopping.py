from __future__ import annotations

from deepdive.config import settings
from deepdive.models.research import ReflectorVerdict, ResearchSession, StoppingDecision


class StoppingEvaluator:
    """Continue only while every ceiling is still open and the reflector wants more."""

    def __init__(
        self,
        *,
        max_rounds: int | None = None,
        comprehensive_threshold: int | None = None,
        time_budget_s: float | None = None,
    ):
        self.max_rounds = max_rounds or settings.max_rounds
        self.comprehensive_threshold = comprehensive_threshold or settings.comprehensive_threshold
        self.time_budget_s = time_budget_s or settings.session_time_budget_seconds

    def should_continue(
        self,
        session: ResearchSession,
        verdict: ReflectorVerdict | None,
        elapsed_s: float,
    ) -> StoppingDecision:
        rounds_done = len(session.current_run_rounds())
        sources = session.unique_source_count

        if rounds_done >= self.max_rounds:
            return StoppingDecision(False, f"round cap reached ({rounds_done}/{self.max_rounds})")
        if sources >= self.comprehensive_threshold:
            return StoppingDecision(False, f"source cap reached ({sources} unique sources)")
        if elapsed_s >= self.time_budget_s:
            return StoppingDecision(False, f"time budget exhausted ({elapsed_s:.0f}s)")
        if verdict is not None and verdict.sufficient:
            return StoppingDecision(False, "reflector judged evidence sufficient")
        return StoppingDecision(True, f"continuing after round {rounds_done}")
