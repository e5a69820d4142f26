from __future__ import annotations

from deepdive.services.container import Engine, build_engine

_engine: Engine | None = None


def get_engine() -> Engine:
    """FastAPI dependency returning the process-wide engine."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def set_engine(engine: Engine | None) -> None:
    global _engine
    _engine = engine


def current_engine() -> Engine | None:
    return _engine
