from __future__ import annotations

import pytest

from deepdive.agents.router import TierRouter, detect_recall, extract_search_terms
from deepdive.errors import RoutingError
from deepdive.models.research import Query, Tier


@pytest.fixture
def router():
    return TierRouter()


@pytest.mark.parametrize(
    "text",
    [
        "What did we find about metformin last time?",
        "Do you remember the insulin pump research?",
        "Remind me what you said about fasting",
    ],
)
def test_english_recall_phrases(router, text):
    decision = router.route(Query(text=text))

    assert decision.tier == Tier.RECALL
    assert decision.search_terms


@pytest.mark.parametrize(
    "text",
    [
        "Metformin hakkında ne araştırmıştık?",
        "Geçen sefer insülin pompası konusu neydi?",
        "Hatırlıyor musun, o araştırma oruç ile ilgiliydi",
    ],
)
def test_turkish_recall_phrases(router, text):
    assert router.route(Query(text=text, locale="tr")).tier == Tier.RECALL


@pytest.mark.parametrize(
    "text",
    [
        "What was the dose you mentioned earlier?",
        "Earlier we looked at SGLT2 inhibitors, what was the verdict",
        "The trial we discussed the other day",
    ],
)
def test_time_words_with_conversational_subject_are_recall(router, text):
    assert router.route(Query(text=text)).tier == Tier.RECALL


@pytest.mark.parametrize(
    "text",
    [
        "Is metformin safer than earlier sulfonylureas?",
        "Were statins previously linked to diabetes risk?",
    ],
)
def test_time_words_alone_are_not_recall(router, text):
    assert detect_recall(text) is None
    assert router.route(Query(text=text)).tier != Tier.RECALL


def test_recall_wins_over_research_keywords(router):
    decision = router.route(Query(text="Do you remember the deep research on the latest insulin studies?"))

    assert decision.tier == Tier.RECALL


def test_recall_without_completed_sessions_routes_normally(router):
    decision = router.route(
        Query(text="Do you remember the latest research on insulin?"),
        has_completed_sessions=False,
    )

    assert decision.tier == Tier.SEARCH


def test_deep_trigger(router):
    decision = router.route(Query(text="Please do a deep dive into GLP-1 agonists and kidney outcomes"))

    assert decision.tier == Tier.DEEP


def test_turkish_deep_trigger(router):
    decision = router.route(Query(text="Metformin ve böbrek hakkında derinlemesine araştır", locale="tr"))

    assert decision.tier == Tier.DEEP


def test_search_trigger(router):
    assert router.route(Query(text="Is it safe to take metformin with ibuprofen?")).tier == Tier.SEARCH


def test_plain_question_goes_direct(router):
    decision = router.route(Query(text="What is HbA1c?"))

    assert decision.tier == Tier.DIRECT
    assert decision.search_terms is None


@pytest.mark.parametrize("text", ["", "   "])
def test_empty_query_raises(router, text):
    with pytest.raises(RoutingError):
        router.route(Query(text=text))


def test_unknown_locale_checks_every_pattern_set():
    assert detect_recall("daha önce ne konuşmuştuk", locale="de") is not None
    assert detect_recall("what did we discuss", locale="de") is not None


def test_locale_limits_pattern_set():
    assert detect_recall("hatırlıyor musun", locale="en") is None


def test_extract_search_terms_strips_recall_filler():
    terms = extract_search_terms("Do you remember what we talked about metformin and kidneys?")

    assert "remember" not in terms.lower()
    assert "metformin" in terms
    assert "kidneys" in terms
