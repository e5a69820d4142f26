from __future__ import annotations

import re
from typing import AsyncIterator

from loguru import logger

from deepdive.errors import GenerationError
from deepdive.llm_client import TextGenerator
from deepdive.models.research import SourceCandidate
from deepdive.services.cancellation import CancellationToken
from deepdive.services.prompt_store import render_prompt
from deepdive.tools.text_utils import clip

CITATION_RE = re.compile(r"\[(web|literature|preprint|trials):([^\[\]\s]+)\]")
_END = object()


def extract_citations(text: str, allowed_ids: set[str]) -> tuple[list[str], list[str]]:
    """Split `[type:id]` markers in `text` into (known, unknown), first-seen order."""
    known: list[str] = []
    unknown: list[str] = []
    for source_type, source_id in CITATION_RE.findall(text or ""):
        citation = f"{source_type}:{source_id}"
        bucket = known if citation in allowed_ids else unknown
        if citation not in bucket:
            bucket.append(citation)
    return known, unknown


def format_sources(sources: list[SourceCandidate], snippet_chars: int = 600) -> str:
    blocks = []
    for idx, source in enumerate(sources, start=1):
        dated = f" ({source.published_date.isoformat()})" if source.published_date else ""
        blocks.append(
            f"{idx}. [{source.citation_id}] {source.title}{dated}\n"
            f"   {clip(source.snippet, snippet_chars)}\n"
            f"   {source.url}"
        )
    return "\n".join(blocks)


def fallback_answer(query: str, sources: list[SourceCandidate], limit: int = 5) -> str:
    if not sources:
        return f"I could not gather sources to answer \"{query}\" right now. Please try again later."
    lines = [f"I could not write a full answer to \"{query}\", but these were the strongest sources found:"]
    for source in sources[:limit]:
        lines.append(f"- {source.title} [{source.citation_id}]")
    return "\n".join(lines)


async def _next_chunk(iterator: AsyncIterator[str]):
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


class Synthesizer:
    """Streams the final cited answer over the ranked corpus."""

    def __init__(self, generator: TextGenerator, *, max_sources: int = 30, max_tokens: int = 4096):
        self.generator = generator
        self.max_sources = max_sources
        self.max_tokens = max_tokens

    def build_prompt(
        self,
        query: str,
        sources: list[SourceCandidate],
        *,
        rounds_completed: int,
        degraded: bool = False,
    ) -> str:
        degraded_note = (
            " Some sources were unavailable, so coverage may be incomplete." if degraded else ""
        )
        return render_prompt(
            "synthesis.user",
            query=query,
            rounds_completed=rounds_completed,
            source_count=len(sources),
            degraded_note=degraded_note,
            sources=format_sources(sources) or "No sources were found.",
        )

    async def stream(
        self,
        query: str,
        sources: list[SourceCandidate],
        *,
        rounds_completed: int,
        degraded: bool = False,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        sources = sources[: self.max_sources]
        prompt = self.build_prompt(query, sources, rounds_completed=rounds_completed, degraded=degraded)
        iterator = self.generator.stream(
            prompt,
            temperature=0.3,
            max_tokens=self.max_tokens,
            system=render_prompt("synthesis.system"),
            caller="synthesizer",
        )
        produced = False
        try:
            while True:
                pending = _next_chunk(iterator)
                chunk = await (token.run(pending) if token is not None else pending)
                if chunk is _END:
                    break
                produced = True
                yield chunk
        except GenerationError as exc:
            logger.warning(f"Synthesis failed: {exc}")
            if not produced:
                yield fallback_answer(query, sources)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
