from __future__ import annotations

import hashlib
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from deepdive.config import settings
from deepdive.errors import SourceUnavailable
from deepdive.models.research import SourceCandidate, SourceType
from deepdive.tools.base import HttpSourceClient
from deepdive.tools.text_utils import parse_date

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_MAX_COUNT = 20

TavilySearch = Callable[[str, int], Awaitable[list[dict[str, Any]]]]


def _url_id(url: str) -> str:
    return hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]


async def tavily_search(query: str, max_results: int) -> list[dict[str, Any]]:
    """Execute a Tavily web search and return its raw result dicts."""
    from tavily import AsyncTavilyClient

    client = AsyncTavilyClient(api_key=settings.tavily_api_key)
    response = await client.search(
        query=query,
        search_depth="advanced",
        max_results=max_results,
        topic="general",
    )
    return list(response.get("results", []))


class WebSearchClient(HttpSourceClient):
    """Brave web search, falling back to Tavily on error or an empty page."""

    source_type = SourceType.WEB

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        *,
        fallback: TavilySearch | None = None,
        use_fallback: bool | None = None,
    ):
        super().__init__(transport)
        self._fallback = fallback or tavily_search
        self.use_fallback = (
            settings.search_fallback_to_tavily if use_fallback is None else use_fallback
        )

    async def fetch(self, query: str, count: int, timeout_s: float) -> list[SourceCandidate]:
        if count <= 0:
            return []
        try:
            results = await self._brave(query, count, timeout_s)
            if results or not self._can_fall_back():
                return results
            reason = "brave returned zero results"
        except SourceUnavailable as exc:
            if not self._can_fall_back():
                raise
            reason = exc.reason

        logger.warning(f"Web search falling back to Tavily: {reason}")
        try:
            raw = await self._fallback(query, count)
        except Exception as exc:
            raise SourceUnavailable(SourceType.WEB.value, f"tavily failed: {exc}") from exc
        return self._map_tavily(raw)[:count]

    def _can_fall_back(self) -> bool:
        return bool(self.use_fallback and settings.tavily_api_key)

    async def _brave(self, query: str, count: int, timeout_s: float) -> list[SourceCandidate]:
        if not settings.brave_api_key:
            raise SourceUnavailable(SourceType.WEB.value, "BRAVE_API_KEY is not configured")

        params: dict[str, Any] = {"q": query, "count": min(count, BRAVE_MAX_COUNT)}
        try:
            async with self._client(timeout_s) as client:
                response = await client.get(
                    BRAVE_SEARCH_URL,
                    params=params,
                    headers={
                        "Accept": "application/json",
                        "X-Subscription-Token": settings.brave_api_key,
                    },
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as exc:
            raise SourceUnavailable(SourceType.WEB.value, f"brave request failed: {exc}") from exc

        raw_results = payload.get("web", {}).get("results", []) or []
        mapped: list[SourceCandidate] = []
        for item in raw_results[:count]:
            url = item.get("url", "") or ""
            if not url:
                continue
            snippets = item.get("extra_snippets", []) or []
            description = item.get("description", "") or ""
            mapped.append(
                SourceCandidate(
                    id=_url_id(url),
                    source_type=SourceType.WEB,
                    title=item.get("title", "") or url,
                    snippet=description.strip() or " ".join(snippets).strip(),
                    published_date=parse_date(item.get("page_age") or item.get("age")),
                    url=url,
                )
            )
        return mapped

    @staticmethod
    def _map_tavily(raw: list[dict[str, Any]]) -> list[SourceCandidate]:
        mapped: list[SourceCandidate] = []
        for item in raw:
            url = item.get("url", "") or ""
            if not url:
                continue
            mapped.append(
                SourceCandidate(
                    id=_url_id(url),
                    source_type=SourceType.WEB,
                    title=item.get("title", "") or url,
                    snippet=item.get("content", "") or "",
                    published_date=parse_date(item.get("published_date")),
                    url=url,
                )
            )
        return mapped
