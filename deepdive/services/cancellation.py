"""Per-session cancellation handles.

A `CancellationToken` is raced against every external await through
`token.run(...)`, so a cancelled session stops at the next suspension point
instead of finishing the in-flight round. `CancellationRegistry` owns the
session id -> token mapping; the orchestrator creates an entry on start and
removes it when it finishes or is cancelled.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from loguru import logger

from deepdive.errors import ResearchCancelled

T = TypeVar("T")


class CancellationToken:
    def __init__(self, session_id: str):
        self.session_id = session_id
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ResearchCancelled(f"Session {self.session_id} was cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the token fires first; then cancel it and raise."""
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            elif isinstance(awaitable, asyncio.Future):
                awaitable.cancel()
            self.raise_if_cancelled()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            if not waiter.done():
                waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        raise ResearchCancelled(f"Session {self.session_id} was cancelled")


class CancellationRegistry:
    """Explicit owner of in-flight research handles, keyed by session id."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}

    def create(self, session_id: str) -> CancellationToken:
        previous = self._tokens.get(session_id)
        if previous is not None and not previous.cancelled:
            logger.warning(f"Replacing in-flight research handle for session {session_id}")
            previous.cancel()
        token = CancellationToken(session_id)
        self._tokens[session_id] = token
        return token

    def get(self, session_id: str) -> CancellationToken | None:
        return self._tokens.get(session_id)

    def cancel(self, session_id: str) -> bool:
        token = self._tokens.get(session_id)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Cancellation requested for session {session_id}")
        return True

    def remove(self, session_id: str, token: CancellationToken | None = None) -> None:
        current = self._tokens.get(session_id)
        if current is None:
            return
        # A newer run may have replaced this handle already.
        if token is not None and current is not token:
            return
        del self._tokens[session_id]

    def active_ids(self) -> list[str]:
        return list(self._tokens)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._tokens
