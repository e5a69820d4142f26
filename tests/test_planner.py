from __future__ import annotations

import pytest

from deepdive.agents.planner import REFLECTION_UNAVAILABLE, RoundPlanner, categorize, refine_query
from deepdive.models.research import ResearchSession, SourceType
from deepdive.services.allocation import largest_remainder


def _session(text="How does metformin affect kidney function?"):
    session = ResearchSession()
    session.append_message("user", text)
    return session


def _planner():
    return RoundPlanner(
        initial_total=25,
        follow_up_total=15,
        initial_web=10,
        follow_up_web=6,
        time_budget_s=20.0,
    )


def test_first_round_general_query_matches_default_split():
    config = _planner().plan(_session(), 1)

    assert config.counts == {
        SourceType.WEB: 10,
        SourceType.LITERATURE: 8,
        SourceType.PREPRINT: 3,
        SourceType.TRIALS: 4,
    }
    assert config.total == 25
    assert config.query_text == "How does metformin affect kidney function?"


@pytest.mark.parametrize(
    "query",
    [
        "What are the side effects of high dose metformin?",
        "Latest 2026 breakthrough in islet transplantation",
        "Is a low carb diet good for diabetes?",
        "Insulin treatment guideline for type 1",
        "Tell me about kidneys",
        "Metformin yan etki ve doz",
    ],
)
@pytest.mark.parametrize("round_number", [1, 2, 3])
def test_counts_always_sum_to_round_total(query, round_number):
    config = _planner().plan(_session(query), round_number, ["kidney outcomes in elderly"])

    assert sum(config.counts.values()) == config.total
    assert all(count >= 0 for count in config.counts.values())
    assert config.total == (25 if round_number == 1 else 15)


def test_follow_up_round_refines_query_with_first_gap():
    config = _planner().plan(
        _session("metformin kidney function"),
        2,
        ["long-term dialysis outcomes", "pediatric dosing"],
    )

    assert config.query_text.startswith("metformin kidney function")
    assert "dialysis" in config.query_text
    assert "pediatric" not in config.query_text
    assert config.counts[SourceType.WEB] == 6


def test_explicit_overrides_for_search_tier():
    config = _planner().plan(_session(), 1, query="metformin kidney", total=10, web_count=5)

    assert config.total == 10
    assert config.counts[SourceType.WEB] == 5
    assert sum(config.counts.values()) == 10


def test_refine_query_ignores_unavailable_reflection():
    assert refine_query("metformin", [REFLECTION_UNAVAILABLE]) == "metformin"
    assert refine_query("metformin", []) == "metformin"


def test_refine_query_does_not_repeat_terms():
    refined = refine_query("metformin kidney", ["metformin kidney dialysis"])

    assert refined == "metformin kidney dialysis"


def test_categorize_detects_turkish_and_english():
    assert categorize("Metformin yan etki nedir") == "drug_safety"
    assert categorize("best diet for prediabetes") == "nutrition"
    assert categorize("what is a kidney") == "general"


def test_largest_remainder_sums_exactly():
    counts = largest_remainder({"a": 1, "b": 1, "c": 1}, 10)

    assert sum(counts.values()) == 10
    assert counts == {"a": 4, "b": 3, "c": 3}


def test_largest_remainder_zero_weights_split_evenly():
    assert largest_remainder({"a": 0, "b": 0}, 3) == {"a": 2, "b": 1}
