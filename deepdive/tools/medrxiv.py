from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from deepdive.config import settings
from deepdive.errors import SourceUnavailable
from deepdive.models.research import SourceCandidate, SourceType
from deepdive.tools.base import HttpSourceClient
from deepdive.tools.text_utils import clip, extract_keywords, parse_date

DETAILS_URL = "https://api.biorxiv.org/details/medrxiv/{interval}/{cursor}/json"
PAGE_SIZE = 100


class MedRxivClient(HttpSourceClient):
    """Preprints from the medRxiv details API.

    The API has no full-text search, so recent pages are scanned and matched
    against the query's keywords locally.
    """

    source_type = SourceType.PREPRINT

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None, *, max_pages: int = 3):
        super().__init__(transport)
        self.max_pages = max_pages

    async def fetch(self, query: str, count: int, timeout_s: float) -> list[SourceCandidate]:
        if count <= 0:
            return []
        keywords = extract_keywords(query)
        if not keywords:
            return []

        interval = f"{settings.preprint_lookback_days}d"
        async with self._client(timeout_s) as client:
            pages = await asyncio.gather(
                *(self._page(client, interval, i * PAGE_SIZE) for i in range(self.max_pages)),
                return_exceptions=True,
            )

        records: list[dict[str, Any]] = []
        errors: list[str] = []
        for page in pages:
            if isinstance(page, Exception):
                errors.append(str(page))
                continue
            records.extend(page)
        if errors and not records:
            raise SourceUnavailable(SourceType.PREPRINT.value, f"medrxiv request failed: {errors[0]}")
        if errors:
            logger.warning(f"medRxiv: {len(errors)} of {self.max_pages} pages failed")

        scored: list[tuple[float, str, dict[str, Any]]] = []
        seen: set[str] = set()
        for record in records:
            doi = record.get("doi") or ""
            if not doi or doi in seen:
                continue
            seen.add(doi)
            haystack = f"{record.get('title', '')} {record.get('abstract', '')}".lower()
            hits = sum(1 for kw in keywords if kw in haystack)
            if hits == 0:
                continue
            scored.append((hits / len(keywords), record.get("date") or "", record))

        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [self._to_candidate(record) for _, _, record in scored[:count]]

    async def _page(self, client: httpx.AsyncClient, interval: str, cursor: int) -> list[dict[str, Any]]:
        try:
            response = await client.get(DETAILS_URL.format(interval=interval, cursor=cursor))
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceUnavailable(SourceType.PREPRINT.value, str(exc)) from exc
        return [r for r in payload.get("collection", []) or [] if isinstance(r, dict)]

    @staticmethod
    def _to_candidate(record: dict[str, Any]) -> SourceCandidate:
        doi = record["doi"]
        version = record.get("version") or "1"
        return SourceCandidate(
            id=doi,
            source_type=SourceType.PREPRINT,
            title=record.get("title") or "Untitled preprint",
            snippet=clip(record.get("abstract") or "", 2000),
            published_date=parse_date(record.get("date")),
            url=f"https://www.medrxiv.org/content/{doi}v{version}",
        )
