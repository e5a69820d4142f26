from __future__ import annotations

from typing import Any

import httpx

from deepdive.errors import SourceUnavailable
from deepdive.models.research import SourceCandidate, SourceType
from deepdive.tools.base import HttpSourceClient
from deepdive.tools.text_utils import clip, parse_date

STUDIES_URL = "https://clinicaltrials.gov/api/v2/studies"
MAX_PAGE_SIZE = 100


class ClinicalTrialsClient(HttpSourceClient):
    """Registered studies from the ClinicalTrials.gov v2 API."""

    source_type = SourceType.TRIALS

    async def fetch(self, query: str, count: int, timeout_s: float) -> list[SourceCandidate]:
        if count <= 0:
            return []
        params = {
            "query.term": query,
            "pageSize": min(count, MAX_PAGE_SIZE),
            "format": "json",
            "sort": "@relevance",
        }
        try:
            async with self._client(timeout_s) as client:
                response = await client.get(STUDIES_URL, params=params)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as exc:
            raise SourceUnavailable(SourceType.TRIALS.value, f"clinicaltrials request failed: {exc}") from exc
        except ValueError as exc:
            raise SourceUnavailable(SourceType.TRIALS.value, f"clinicaltrials returned invalid JSON: {exc}") from exc

        candidates: list[SourceCandidate] = []
        for study in payload.get("studies", []) or []:
            candidate = self._to_candidate(study)
            if candidate is not None:
                candidates.append(candidate)
        return candidates[:count]

    @staticmethod
    def _to_candidate(study: dict[str, Any]) -> SourceCandidate | None:
        protocol = study.get("protocolSection", {}) or {}
        ident = protocol.get("identificationModule", {}) or {}
        nct_id = ident.get("nctId")
        if not nct_id:
            return None
        status = protocol.get("statusModule", {}) or {}
        description = protocol.get("descriptionModule", {}) or {}
        overall = status.get("overallStatus") or ""
        summary = description.get("briefSummary") or ""
        snippet = f"{overall}. {summary}" if overall else summary
        date_struct = (
            status.get("lastUpdatePostDateStruct")
            or status.get("startDateStruct")
            or {}
        )
        return SourceCandidate(
            id=nct_id,
            source_type=SourceType.TRIALS,
            title=ident.get("briefTitle") or ident.get("officialTitle") or nct_id,
            snippet=clip(snippet, 2000),
            published_date=parse_date(date_struct.get("date")),
            url=f"https://clinicaltrials.gov/study/{nct_id}",
        )
