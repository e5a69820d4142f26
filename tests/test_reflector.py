from __future__ import annotations

import pytest

from conftest import StubGenerator, make_candidates
from deepdive.agents.planner import REFLECTION_UNAVAILABLE
from deepdive.agents.reflector import RoundReflector, parse_verdict
from deepdive.models.research import ResearchRound, ResearchSession, SourceType


def _session_with_round() -> ResearchSession:
    session = ResearchSession()
    session.append_message("user", "metformin kidney")
    ranked = make_candidates(SourceType.LITERATURE, 3)
    session.merge_corpus(ranked)
    session.append_round(ResearchRound(
        round_number=1,
        fetched_counts={"literature": 3},
        ranked_top_n=ranked,
        failures={"web": "timed out"},
    ))
    return session


def test_parse_verdict_snake_case():
    verdict = parse_verdict(
        '{"sufficient": true, "evidence_quality": "High", "gaps": [], "reasoning": "ok"}'
    )

    assert verdict.sufficient is True
    assert verdict.evidence_quality == "high"
    assert verdict.gaps == []


def test_parse_verdict_camel_case_in_code_fence():
    raw = '```json\n{"shouldContinue": true, "gapsIdentified": ["dosing", " "], "evidenceQuality": "low"}\n```'

    verdict = parse_verdict(raw)

    assert verdict.sufficient is False
    assert verdict.gaps == ["dosing"]
    assert verdict.evidence_quality == "low"


def test_parse_verdict_rejects_non_json():
    with pytest.raises(ValueError):
        parse_verdict("I think we need more sources.")


@pytest.mark.asyncio
async def test_reflect_returns_parsed_verdict_and_builds_prompt():
    generator = StubGenerator(responses=['{"sufficient": false, "gaps": ["pediatric data"]}'])
    reflector = RoundReflector(generator, temperature=0.1, max_rounds=4)

    verdict = await reflector.reflect(_session_with_round(), "metformin kidney")

    assert verdict.gaps == ["pediatric data"]
    prompt = generator.calls[0]["prompt"]
    assert "round 1 of 4" in prompt
    assert "failed: web" in prompt
    assert "[literature:lit0]" in prompt


@pytest.mark.asyncio
async def test_generation_failure_yields_unavailable_verdict():
    reflector = RoundReflector(StubGenerator(fail=True), max_rounds=4)

    verdict = await reflector.reflect(_session_with_round(), "metformin kidney")

    assert verdict.sufficient is False
    assert verdict.gaps == [REFLECTION_UNAVAILABLE]
    assert verdict.evidence_quality is None


@pytest.mark.asyncio
async def test_unparseable_output_yields_unavailable_verdict():
    reflector = RoundReflector(StubGenerator(responses=["not json at all"]), max_rounds=4)

    verdict = await reflector.reflect(_session_with_round(), "metformin kidney")

    assert verdict.gaps == [REFLECTION_UNAVAILABLE]
    assert "unparseable" in verdict.reasoning
