"""Tests for the OpenRouter text generator wrapper."""
from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from deepdive.errors import GenerationError
from deepdive.llm_client import OpenRouterTextGenerator, get_model


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def _chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


class FakeStream:
    def __init__(self, chunks, error=None, stall_s=0.0):
        self._chunks = list(chunks)
        self._error = error
        self._stall_s = stall_s
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._chunks:
            return self._chunks.pop(0)
        if self._error is not None:
            raise self._error
        if self._stall_s:
            await asyncio.sleep(self._stall_s)
        raise StopAsyncIteration

    async def close(self):
        self.closed = True


def _client(create):
    client = MagicMock()
    client.chat.completions.create = create
    return client


@pytest.mark.asyncio
async def test_generate_returns_message_content():
    create = AsyncMock(return_value=_completion("hello"))
    generator = OpenRouterTextGenerator(_client(create), "openai/gpt-4o-mini", timeout_s=5)

    text = await generator.generate("hi", system="be brief", temperature=0.2)

    assert text == "hello"
    kwargs = create.call_args.kwargs
    assert kwargs["messages"][0] == {"role": "system", "content": "be brief"}
    assert kwargs["temperature"] == 0.2


@pytest.mark.asyncio
async def test_generate_pins_temperature_for_gpt5_models():
    create = AsyncMock(return_value=_completion("ok"))
    generator = OpenRouterTextGenerator(_client(create), "openai/gpt-5-mini", timeout_s=5)

    await generator.generate("hi", temperature=0.2)

    assert create.call_args.kwargs["temperature"] == 1


@pytest.mark.asyncio
async def test_generate_wraps_provider_errors():
    generator = OpenRouterTextGenerator(_client(AsyncMock(side_effect=RuntimeError("502"))), "m", timeout_s=5)

    with pytest.raises(GenerationError):
        await generator.generate("hi")


@pytest.mark.asyncio
async def test_generate_rejects_empty_response():
    generator = OpenRouterTextGenerator(_client(AsyncMock(return_value=_completion("  "))), "m", timeout_s=5)

    with pytest.raises(GenerationError):
        await generator.generate("hi")


@pytest.mark.asyncio
async def test_generate_times_out():
    async def slow(**kwargs):
        await asyncio.sleep(1)
        return _completion("late")

    generator = OpenRouterTextGenerator(_client(slow), "m", timeout_s=0.01)

    with pytest.raises(GenerationError, match="timed out"):
        await generator.generate("hi")


@pytest.mark.asyncio
async def test_stream_yields_deltas_and_closes():
    stream = FakeStream([_chunk("Hel"), _chunk(None), _chunk("lo")])
    generator = OpenRouterTextGenerator(_client(AsyncMock(return_value=stream)), "m", timeout_s=5)

    chunks = [c async for c in generator.stream("hi")]

    assert chunks == ["Hel", "lo"]
    assert stream.closed


@pytest.mark.asyncio
async def test_stream_interruption_raises_generation_error():
    stream = FakeStream([_chunk("partial")], error=ConnectionError("reset"))
    generator = OpenRouterTextGenerator(_client(AsyncMock(return_value=stream)), "m", timeout_s=5)
    received = []

    with pytest.raises(GenerationError):
        async for chunk in generator.stream("hi"):
            received.append(chunk)

    assert received == ["partial"]


@pytest.mark.asyncio
async def test_stalled_stream_times_out_and_closes():
    stream = FakeStream([_chunk("partial")], stall_s=3600)
    generator = OpenRouterTextGenerator(_client(AsyncMock(return_value=stream)), "m", timeout_s=0.1)
    received = []

    async def consume():
        async for chunk in generator.stream("hi"):
            received.append(chunk)

    with pytest.raises(GenerationError, match="no chunk within"):
        await asyncio.wait_for(consume(), timeout=2)

    assert received == ["partial"]
    assert stream.closed


def test_get_model_prefers_override():
    with patch("deepdive.llm_client.settings") as mock_settings:
        mock_settings.openrouter_model = "anthropic/some-model"
        mock_settings.default_model = "openai/gpt-4o-mini"
        assert get_model() == "anthropic/some-model"

        mock_settings.openrouter_model = ""
        assert get_model() == "openai/gpt-4o-mini"
