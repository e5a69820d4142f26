from __future__ import annotations

import asyncio

import pytest

from conftest import BagOfWordsEmbedder, StaticSourceClient, failing_client, make_candidates
from deepdive.errors import ResearchCancelled, TotalSourceOutage
from deepdive.models.events import EventType
from deepdive.models.research import RoundConfig, SourceType
from deepdive.services.cancellation import CancellationToken
from deepdive.services.fetcher import ParallelFetcher, reconcile_counts
from deepdive.services.ranker import RelevanceRanker


def _config(counts, total=None, budget=5.0):
    return RoundConfig(
        round_number=1,
        query_text="metformin kidney",
        counts=counts,
        total=sum(counts.values()) if total is None else total,
        time_budget_s=budget,
    )


SCENARIO_A = {
    SourceType.WEB: 10,
    SourceType.LITERATURE: 8,
    SourceType.PREPRINT: 3,
    SourceType.TRIALS: 4,
}


@pytest.mark.asyncio
async def test_literature_timeout_leaves_other_sources_and_ranks_seventeen():
    clients = {
        SourceType.WEB: StaticSourceClient(SourceType.WEB, make_candidates(SourceType.WEB, 12)),
        SourceType.LITERATURE: StaticSourceClient(
            SourceType.LITERATURE, make_candidates(SourceType.LITERATURE, 8), delay=1.0
        ),
        SourceType.PREPRINT: StaticSourceClient(SourceType.PREPRINT, make_candidates(SourceType.PREPRINT, 3)),
        SourceType.TRIALS: StaticSourceClient(SourceType.TRIALS, make_candidates(SourceType.TRIALS, 4)),
    }
    fetcher = ParallelFetcher(clients, timeouts={SourceType.LITERATURE: 0.05})

    result = await fetcher.fetch(_config(SCENARIO_A))

    assert result.counts() == {"web": 10, "preprint": 3, "trials": 4}
    assert "timed out" in result.failures[SourceType.LITERATURE]
    assert not result.is_total_outage

    ranker = RelevanceRanker(BagOfWordsEmbedder(), top_n=30)
    ranked = await ranker.rank("metformin kidney", result.all_candidates())
    assert len(ranked) == 17


@pytest.mark.asyncio
async def test_each_source_is_asked_for_its_planned_count():
    clients = {t: StaticSourceClient(t, make_candidates(t, 20)) for t in SourceType}
    fetcher = ParallelFetcher(clients)

    await fetcher.fetch(_config(SCENARIO_A))

    assert {t: clients[t].calls[0][1] for t in SourceType} == SCENARIO_A


@pytest.mark.asyncio
async def test_failed_source_is_recorded_not_raised():
    clients = {
        SourceType.WEB: failing_client(SourceType.WEB, "quota exceeded"),
        SourceType.LITERATURE: StaticSourceClient(SourceType.LITERATURE, make_candidates(SourceType.LITERATURE, 5)),
    }
    fetcher = ParallelFetcher(clients)

    result = await fetcher.fetch(_config({SourceType.WEB: 5, SourceType.LITERATURE: 5}))

    assert result.failures == {SourceType.WEB: "quota exceeded"}
    assert len(result.candidates[SourceType.LITERATURE]) == 5


@pytest.mark.asyncio
async def test_unexpected_exception_counts_as_failure():
    clients = {
        SourceType.WEB: StaticSourceClient(SourceType.WEB, error=RuntimeError("boom")),
        SourceType.TRIALS: StaticSourceClient(SourceType.TRIALS, make_candidates(SourceType.TRIALS, 2)),
    }
    fetcher = ParallelFetcher(clients)

    result = await fetcher.fetch(_config({SourceType.WEB: 5, SourceType.TRIALS: 2}))

    assert result.failures[SourceType.WEB] == "boom"
    assert result.total == 2


@pytest.mark.asyncio
async def test_round_with_no_results_is_a_total_outage():
    clients = {
        SourceType.WEB: failing_client(SourceType.WEB, "quota exceeded"),
        SourceType.LITERATURE: StaticSourceClient(SourceType.LITERATURE, []),
    }
    fetcher = ParallelFetcher(clients)

    with pytest.raises(TotalSourceOutage) as excinfo:
        await fetcher.fetch(_config({SourceType.WEB: 5, SourceType.LITERATURE: 5}))

    assert excinfo.value.failures == {"web": "quota exceeded", "literature": "no results"}
    assert excinfo.value.round_number == 1


@pytest.mark.asyncio
async def test_over_delivering_client_is_truncated():
    clients = {SourceType.TRIALS: StaticSourceClient(SourceType.TRIALS, make_candidates(SourceType.TRIALS, 9))}
    clients[SourceType.TRIALS].fetch = _ignore_count(clients[SourceType.TRIALS])
    fetcher = ParallelFetcher(clients)

    result = await fetcher.fetch(_config({SourceType.TRIALS: 4}))

    assert len(result.candidates[SourceType.TRIALS]) == 4


def _ignore_count(client):
    async def fetch(query, count, timeout_s):
        return list(client.items)

    return fetch


def test_reconcile_counts_rescales_to_total():
    config = _config({SourceType.WEB: 10, SourceType.LITERATURE: 10}, total=10)

    counts = reconcile_counts(config)

    assert sum(counts.values()) == 10
    assert counts == {SourceType.WEB: 5, SourceType.LITERATURE: 5}


def test_reconcile_counts_keeps_consistent_config():
    assert reconcile_counts(_config(SCENARIO_A)) == SCENARIO_A


@pytest.mark.asyncio
async def test_progress_events_report_each_source():
    clients = {t: StaticSourceClient(t, make_candidates(t, 3)) for t in SourceType}
    fetcher = ParallelFetcher(clients)
    events = []

    await fetcher.fetch(_config({t: 2 for t in SourceType}), on_progress=events.append)

    assert all(e.event == EventType.STAGE_UPDATE for e in events)
    completed = [e.data for e in events if e.data["status"] == "completed"]
    assert {d["source"] for d in completed} == {t.value for t in SourceType}
    assert all(d["success"] and d["count"] == 2 for d in completed)


@pytest.mark.asyncio
async def test_cancellation_interrupts_in_flight_fetch():
    clients = {SourceType.WEB: StaticSourceClient(SourceType.WEB, make_candidates(SourceType.WEB, 3), delay=5.0)}
    fetcher = ParallelFetcher(clients, timeouts={SourceType.WEB: 10.0})
    token = CancellationToken("s1")

    task = asyncio.create_task(fetcher.fetch(_config({SourceType.WEB: 3}, budget=10.0), token))
    await asyncio.sleep(0.05)
    token.cancel()

    with pytest.raises(ResearchCancelled):
        await asyncio.wait_for(task, timeout=1.0)


@pytest.mark.asyncio
async def test_already_cancelled_token_skips_fetch():
    client = StaticSourceClient(SourceType.WEB, make_candidates(SourceType.WEB, 3))
    fetcher = ParallelFetcher({SourceType.WEB: client})
    token = CancellationToken("s1")
    token.cancel()

    with pytest.raises(ResearchCancelled):
        await fetcher.fetch(_config({SourceType.WEB: 3}), token)
    assert client.calls == []
