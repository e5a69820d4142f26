"""Concurrent fan-out to every source type for one research round.

A failing source only shows up in `FetchResult.failures`; a round where no
source returns anything raises `TotalSourceOutage`.
"""
from __future__ import annotations

import asyncio
import time
from typing import Callable

from loguru import logger

from deepdive.config import settings
from deepdive.errors import SourceUnavailable, TotalSourceOutage
from deepdive.models.events import SSEEvent
from deepdive.models.research import FetchResult, RoundConfig, SourceCandidate, SourceType
from deepdive.services import logger as log_service
from deepdive.services import streaming
from deepdive.services.allocation import largest_remainder
from deepdive.services.cancellation import CancellationToken
from deepdive.tools.base import SourceClient

ProgressCallback = Callable[[SSEEvent], None]


def default_timeouts() -> dict[SourceType, float]:
    return {
        SourceType.WEB: settings.web_timeout_seconds,
        SourceType.LITERATURE: settings.literature_timeout_seconds,
        SourceType.PREPRINT: settings.preprint_timeout_seconds,
        SourceType.TRIALS: settings.trials_timeout_seconds,
    }


def default_source_clients() -> dict[SourceType, SourceClient]:
    from deepdive.tools.clinical_trials import ClinicalTrialsClient
    from deepdive.tools.medrxiv import MedRxivClient
    from deepdive.tools.pubmed import PubMedClient
    from deepdive.tools.web_search import WebSearchClient

    return {
        SourceType.WEB: WebSearchClient(),
        SourceType.LITERATURE: PubMedClient(),
        SourceType.PREPRINT: MedRxivClient(),
        SourceType.TRIALS: ClinicalTrialsClient(),
    }


def reconcile_counts(config: RoundConfig) -> dict[SourceType, int]:
    """Return counts that sum to `config.total`, rescaling if they do not."""
    requested = config.requested_total
    if requested == config.total:
        return dict(config.counts)
    logger.error(
        f"Round {config.round_number}: source counts sum to {requested}, "
        f"expected {config.total}; rescaling"
    )
    weights = dict(config.counts) or {source_type: 1.0 for source_type in SourceType}
    return largest_remainder(weights, config.total)


class ParallelFetcher:
    def __init__(
        self,
        clients: dict[SourceType, SourceClient],
        timeouts: dict[SourceType, float] | None = None,
    ):
        self.clients = clients
        self.timeouts = {**default_timeouts(), **(timeouts or {})}

    async def fetch(
        self,
        config: RoundConfig,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> FetchResult:
        counts = reconcile_counts(config)
        result = FetchResult()

        async def fetch_one(source_type: SourceType, count: int) -> None:
            client = self.clients.get(source_type)
            if client is None:
                result.failures[source_type] = "no client configured"
                return

            timeout_s = min(self.timeouts.get(source_type, config.time_budget_s), config.time_budget_s)
            self._progress(on_progress, streaming.stage_update(
                "fetching", source=source_type.value, status="started", count=count,
            ))
            t0 = time.monotonic()
            items: list[SourceCandidate] = []
            reason: str | None = None
            try:
                items = await asyncio.wait_for(
                    client.fetch(config.query_text, count, timeout_s),
                    timeout=timeout_s,
                )
            except asyncio.TimeoutError:
                reason = f"timed out after {timeout_s:g}s"
            except SourceUnavailable as exc:
                reason = exc.reason
            except Exception as exc:
                reason = str(exc) or type(exc).__name__

            duration_ms = int((time.monotonic() - t0) * 1000)
            result.timings_ms[source_type] = duration_ms
            if reason is not None:
                result.failures[source_type] = reason
            else:
                result.candidates[source_type] = list(items)[:count]
            log_service.log_source_fetch(
                source_type.value,
                config.round_number,
                count,
                len(result.candidates.get(source_type, [])),
                duration_ms,
                error=reason,
            )
            self._progress(on_progress, streaming.stage_update(
                "fetching",
                source=source_type.value,
                status="completed",
                count=len(result.candidates.get(source_type, [])),
                duration_ms=duration_ms,
                success=reason is None,
            ))

        if token is not None:
            token.raise_if_cancelled()
        tasks = [fetch_one(source_type, count) for source_type, count in counts.items() if count > 0]
        if token is not None:
            await token.run(self._gather(tasks))
        else:
            await self._gather(tasks)

        logger.info(
            f"Round {config.round_number} fetched {result.total} candidates "
            f"{result.counts()} failures={list(f.value for f in result.failures)}"
        )
        if result.is_total_outage:
            failures = {t.value: "no results" for t in counts if counts[t] > 0}
            failures.update({t.value: reason for t, reason in result.failures.items()})
            raise TotalSourceOutage(config.round_number, failures)
        return result

    @staticmethod
    async def _gather(tasks: list) -> None:
        await asyncio.gather(*tasks)

    @staticmethod
    def _progress(on_progress: ProgressCallback | None, event: SSEEvent) -> None:
        if on_progress is not None:
            on_progress(event)
