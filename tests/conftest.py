"""Shared stubs for the research engine tests.

Nothing here talks to a network or a model: text generation, embeddings and
source clients are replaced with small deterministic fakes.
"""
from __future__ import annotations

import asyncio
from datetime import date

import pytest

from deepdive.errors import EmbeddingFailure, GenerationError, SourceUnavailable
from deepdive.models.research import SourceCandidate, SourceType
from deepdive.tools.text_utils import tokenize

EMBED_DIMS = 32


class StubGenerator:
    """Canned text generation that records every call."""

    def __init__(self, responses=None, chunks=None, *, fail=False, fail_stream_after=None):
        self.responses = list(responses or [])
        self.chunks = list(chunks or ["Answer."])
        self.fail = fail
        self.fail_stream_after = fail_stream_after
        self.calls: list[dict] = []

    async def generate(self, prompt, *, temperature=0.0, max_tokens=1024, system="", caller="generate"):
        self.calls.append({"prompt": prompt, "system": system, "caller": caller})
        if self.fail:
            raise GenerationError(f"{caller}: stub failure")
        if self.responses:
            return self.responses.pop(0)
        return "{}"

    async def stream(self, prompt, *, temperature=0.0, max_tokens=4096, system="", caller="stream"):
        self.calls.append({"prompt": prompt, "system": system, "caller": caller})
        if self.fail:
            raise GenerationError(f"{caller}: stub failure")
        for idx, chunk in enumerate(self.chunks):
            if self.fail_stream_after is not None and idx >= self.fail_stream_after:
                raise GenerationError(f"{caller}: stream interrupted")
            await asyncio.sleep(0)
            yield chunk


class BagOfWordsEmbedder:
    """Deterministic bag-of-words vectors; texts listed in `failing` raise."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        if text in self.failing:
            raise EmbeddingFailure("stub embedding failure")
        vec = [0.0] * EMBED_DIMS
        for token in tokenize(text):
            vec[sum(ord(ch) for ch in token) % EMBED_DIMS] += 1.0
        return vec


class StaticSourceClient:
    """Returns fixed candidates, optionally after a delay or by raising."""

    def __init__(self, source_type, items=None, *, delay=0.0, error=None):
        self.source_type = source_type
        self.items = list(items or [])
        self.delay = delay
        self.error = error
        self.calls: list[tuple[str, int]] = []

    async def fetch(self, query, count, timeout_s):
        self.calls.append((query, count))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.items[:count]


def make_candidates(source_type: SourceType, n: int, *, prefix: str = "", topic: str = "metformin kidney"):
    return [
        SourceCandidate(
            id=f"{prefix}{source_type.value[:3]}{i}",
            source_type=source_type,
            title=f"{topic} finding {i}",
            snippet=f"Evidence about {topic} number {i}",
            published_date=date(2020 + (i % 5), 1, 1),
            url=f"https://example.org/{source_type.value}/{prefix}{i}",
        )
        for i in range(n)
    ]


def failing_client(source_type: SourceType, reason: str = "down") -> StaticSourceClient:
    return StaticSourceClient(source_type, error=SourceUnavailable(source_type.value, reason))


@pytest.fixture
def generator():
    return StubGenerator()


@pytest.fixture
def embedder():
    return BagOfWordsEmbedder()
