"""Session persistence keyed by session id.

Both backends keep an identity map, so the orchestrator, the lifecycle monitor
and the API all hold the same in-memory `ResearchSession` object for a given id.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Protocol

import asyncpg
from loguru import logger

from deepdive.config import settings
from deepdive.errors import SessionNotFound
from deepdive.models.research import ResearchSession, SessionStatus


class SessionStore(Protocol):
    async def get(self, session_id: str) -> ResearchSession | None: ...
    async def require(self, session_id: str) -> ResearchSession: ...
    async def save(self, session: ResearchSession) -> None: ...
    async def list_sessions(self, status: SessionStatus | None = None) -> list[ResearchSession]: ...
    async def list_completed(self) -> list[ResearchSession]: ...
    async def delete(self, session_id: str) -> None: ...
    async def close(self) -> None: ...


class _IdentityMapStore:
    def __init__(self) -> None:
        self._sessions: dict[str, ResearchSession] = {}

    def _remember(self, session: ResearchSession) -> ResearchSession:
        cached = self._sessions.get(session.session_id)
        if cached is not None:
            return cached
        self._sessions[session.session_id] = session
        return session

    async def require(self, session_id: str) -> ResearchSession:
        session = await self.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    async def get(self, session_id: str) -> ResearchSession | None:
        raise NotImplementedError

    async def list_sessions(self, status: SessionStatus | None = None) -> list[ResearchSession]:
        raise NotImplementedError

    async def list_completed(self) -> list[ResearchSession]:
        return await self.list_sessions(SessionStatus.COMPLETE)

    async def close(self) -> None:
        return None


class JsonSessionStore(_IdentityMapStore):
    """One JSON document per session under a directory."""

    def __init__(self, directory: str | Path):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, session_id: str) -> Path:
        return self.directory / f"{session_id}.json"

    def _read(self, path: Path) -> ResearchSession | None:
        try:
            return ResearchSession.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"Skipping unreadable session file {path.name}: {exc}")
            return None

    async def get(self, session_id: str) -> ResearchSession | None:
        if session_id in self._sessions:
            return self._sessions[session_id]
        path = self._path(session_id)
        if not path.exists():
            return None
        session = await asyncio.to_thread(self._read, path)
        return self._remember(session) if session is not None else None

    async def save(self, session: ResearchSession) -> None:
        self._remember(session)
        payload = session.model_dump_json(indent=2)
        path = self._path(session.session_id)

        def _write() -> None:
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(path)

        async with self._lock:
            await asyncio.to_thread(_write)

    async def list_sessions(self, status: SessionStatus | None = None) -> list[ResearchSession]:
        paths = sorted(self.directory.glob("*.json"))
        sessions: list[ResearchSession] = []
        for path in paths:
            session = await self.get(path.stem)
            if session is None:
                continue
            if status is not None and session.status != status:
                continue
            sessions.append(session)
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        path = self._path(session_id)
        async with self._lock:
            await asyncio.to_thread(path.unlink, True)


CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS research_sessions (
    session_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    status TEXT NOT NULL,
    payload JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    last_updated TIMESTAMPTZ NOT NULL
)
"""


class PostgresSessionStore(_IdentityMapStore):
    """Sessions as JSONB documents in PostgreSQL via asyncpg."""

    def __init__(self, database_url: str | None = None, pool: Any | None = None):
        super().__init__()
        self.database_url = database_url or settings.database_url
        self._pool = pool
        self._pool_lock = asyncio.Lock()
        self._schema_ready = False

    async def _get_pool(self) -> Any:
        async with self._pool_lock:
            if self._pool is None:
                if not self.database_url:
                    raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
                self._pool = await asyncpg.create_pool(self.database_url, min_size=1, max_size=10)
            if not self._schema_ready:
                async with self._pool.acquire() as conn:
                    await conn.execute(CREATE_TABLE_SQL)
                self._schema_ready = True
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @staticmethod
    def _decode(payload: Any) -> ResearchSession:
        if isinstance(payload, str):
            return ResearchSession.model_validate_json(payload)
        return ResearchSession.model_validate(payload)

    async def get(self, session_id: str) -> ResearchSession | None:
        if session_id in self._sessions:
            return self._sessions[session_id]
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT payload FROM research_sessions WHERE session_id = $1",
                session_id,
            )
        if row is None:
            return None
        return self._remember(self._decode(row["payload"]))

    async def save(self, session: ResearchSession) -> None:
        self._remember(session)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO research_sessions (session_id, user_id, status, payload, created_at, last_updated)
                VALUES ($1, $2, $3, $4::jsonb, $5, $6)
                ON CONFLICT (session_id) DO UPDATE
                SET status = EXCLUDED.status,
                    payload = EXCLUDED.payload,
                    last_updated = EXCLUDED.last_updated
                """,
                session.session_id,
                session.user_id,
                session.status.value,
                session.model_dump_json(),
                session.created_at,
                session.last_updated,
            )

    async def list_sessions(self, status: SessionStatus | None = None) -> list[ResearchSession]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            if status is None:
                rows = await conn.fetch(
                    "SELECT session_id, payload FROM research_sessions ORDER BY created_at DESC"
                )
            else:
                rows = await conn.fetch(
                    "SELECT session_id, payload FROM research_sessions WHERE status = $1 ORDER BY created_at DESC",
                    status.value,
                )
        sessions: list[ResearchSession] = []
        for row in rows:
            cached = self._sessions.get(row["session_id"])
            session = cached if cached is not None else self._remember(self._decode(row["payload"]))
            if status is not None and session.status != status:
                continue
            sessions.append(session)
        return sessions

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute("DELETE FROM research_sessions WHERE session_id = $1", session_id)


_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        backend = settings.session_backend.lower().strip()
        if backend == "json":
            _store = JsonSessionStore(settings.session_store_dir)
        elif backend == "postgres":
            _store = PostgresSessionStore()
        else:
            raise ValueError(f"Unsupported SESSION_BACKEND: {settings.session_backend}")
    return _store
