from __future__ import annotations

from typing import Any

import httpx

from deepdive.config import settings
from deepdive.errors import SourceUnavailable
from deepdive.models.research import SourceCandidate, SourceType
from deepdive.tools.base import HttpSourceClient
from deepdive.tools.text_utils import parse_date

ESEARCH_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esearch.fcgi"
ESUMMARY_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esummary.fcgi"

_ARTICLE_TYPES = {
    "Meta-Analysis": "Meta-Analysis",
    "Systematic Review": "Systematic Review",
    "Randomized Controlled Trial": "RCT",
    "Clinical Trial": "Clinical Trial",
    "Observational Study": "Observational Study",
    "Case Reports": "Case Report",
    "Review": "Review",
}


def article_type(pub_types: list[str]) -> str:
    for pub_type in pub_types:
        if pub_type in _ARTICLE_TYPES:
            return _ARTICLE_TYPES[pub_type]
    return "Research Article"


class PubMedClient(HttpSourceClient):
    """Peer-reviewed literature via NCBI E-utilities (esearch + esummary)."""

    source_type = SourceType.LITERATURE

    def _base_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"db": "pubmed", "retmode": "json"}
        if settings.ncbi_api_key:
            params["api_key"] = settings.ncbi_api_key
        if settings.ncbi_tool_email:
            params["tool"] = "deepdive"
            params["email"] = settings.ncbi_tool_email
        return params

    async def fetch(self, query: str, count: int, timeout_s: float) -> list[SourceCandidate]:
        if count <= 0:
            return []
        try:
            async with self._client(timeout_s) as client:
                search = await client.get(
                    ESEARCH_URL,
                    params={**self._base_params(), "term": query, "retmax": count, "sort": "relevance"},
                )
                search.raise_for_status()
                ids = search.json().get("esearchresult", {}).get("idlist", []) or []
                if not ids:
                    return []

                summary = await client.get(
                    ESUMMARY_URL,
                    params={**self._base_params(), "id": ",".join(ids)},
                )
                summary.raise_for_status()
                articles = summary.json().get("result", {}) or {}
        except httpx.HTTPError as exc:
            raise SourceUnavailable(SourceType.LITERATURE.value, f"pubmed request failed: {exc}") from exc
        except ValueError as exc:
            raise SourceUnavailable(SourceType.LITERATURE.value, f"pubmed returned invalid JSON: {exc}") from exc

        candidates: list[SourceCandidate] = []
        for pmid in ids[:count]:
            article = articles.get(pmid)
            if not isinstance(article, dict):
                continue
            journal = article.get("source") or ""
            kind = article_type(article.get("pubtype") or [])
            authors = [a.get("name", "") for a in article.get("authors", []) if isinstance(a, dict)]
            byline = ", ".join(authors[:3]) + (" et al." if len(authors) > 3 else "")
            snippet = ". ".join(part for part in (kind, journal, byline) if part)
            candidates.append(
                SourceCandidate(
                    id=str(pmid),
                    source_type=SourceType.LITERATURE,
                    title=article.get("title") or "Untitled",
                    snippet=snippet,
                    published_date=parse_date(article.get("sortpubdate") or article.get("pubdate")),
                    url=f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
                )
            )
        return candidates
