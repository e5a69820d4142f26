"""Loguru sinks plus structured one-line records for research activity.

Every helper writes a single `KIND: {...}` line so the daily file can be
grepped per session or per source.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from deepdive.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[session_id]} | {name}:{line} - {message}"

QUIET_LOGGERS = (
    "uvicorn.access",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "asyncpg",
    "sentence_transformers",
)


def configure_logging(level: str | None = None, log_dir: str | None = None) -> None:
    """(Re)install the console and file sinks. Safe to call more than once."""
    logger.remove()
    logger.configure(extra={"session_id": "-"})
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=(level or settings.app_log_level).upper(),
        colorize=True,
    )

    directory = settings.log_dir if log_dir is None else log_dir
    if directory:
        path = Path(directory)
        path.mkdir(parents=True, exist_ok=True)
        logger.add(
            path / "deepdive_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
            enqueue=True,
        )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(settings.noisy_log_level.upper())


configure_logging()


def _emit(kind: str, payload: dict[str, Any], *, failed: bool = False) -> None:
    payload = {"timestamp": datetime.now(timezone.utc).isoformat(), **payload}
    bound = logger.bind(session_id=payload.get("session_id") or "-")
    if failed:
        bound.error(f"{kind}_FAILED: {payload}")
    else:
        bound.info(f"{kind}: {payload}")


def log_llm_call(
    model: str,
    caller: str,
    duration_ms: int = 0,
    input_chars: int = 0,
    output_chars: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    _emit(
        "LLM_CALL",
        {
            "model": model,
            "caller": caller,
            "input_chars": input_chars,
            "output_chars": output_chars,
            "duration_ms": duration_ms,
            "status": status,
            "error": error,
        },
        failed=error is not None,
    )


def log_source_fetch(
    source: str,
    round_number: int,
    requested: int,
    returned: int,
    duration_ms: int,
    error: Optional[str] = None,
) -> None:
    """One line per source per round, including sources that failed."""
    _emit(
        "SOURCE_FETCH",
        {
            "source": source,
            "round": round_number,
            "requested": requested,
            "returned": returned,
            "duration_ms": duration_ms,
            "error": error,
        },
        failed=error is not None,
    )


def log_research_step(
    session_id: str,
    step_type: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    _emit(
        "RESEARCH_STEP",
        {"session_id": session_id, "step_type": step_type, "status": status, "data": data},
    )


def log_session_transition(session_id: str, old: str, new: str, reason: str, **details: Any) -> None:
    _emit(
        "SESSION",
        {"session_id": session_id, "from": old, "to": new, "reason": reason, **details},
    )


def log_event(event_type: str, message: str, **kwargs: Any) -> None:
    """Log anything that does not fit the helpers above."""
    _emit("EVENT", {"event_type": event_type, "message": message, **kwargs})
