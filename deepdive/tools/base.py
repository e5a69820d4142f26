from __future__ import annotations

from typing import Any, Protocol

import httpx

from deepdive.models.research import SourceCandidate, SourceType


class SourceClient(Protocol):
    source_type: SourceType

    async def fetch(self, query: str, count: int, timeout_s: float) -> list[SourceCandidate]:
        """Return up to `count` candidates or raise `SourceUnavailable`."""
        ...


class HttpSourceClient:
    """Shared httpx plumbing for the JSON-over-HTTP source clients."""

    source_type: SourceType

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {"timeout": timeout_s}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)
