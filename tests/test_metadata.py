from __future__ import annotations

import pytest

from conftest import StubGenerator
from deepdive.errors import GenerationError
from deepdive.models.research import ResearchSession
from deepdive.services.metadata import MetadataGenerator


def _session():
    session = ResearchSession()
    session.append_message("user", "Is intermittent fasting safe with insulin?")
    session.append_message("assistant", "It can be, with dose adjustments.")
    return session


@pytest.mark.asyncio
async def test_metadata_parses_camel_case_topics():
    generator = StubGenerator(responses=[
        '```json\n{"title": "Fasting on insulin", "summary": "Needs dose changes.", "keyTopics": ["fasting", " ", "insulin"]}\n```'
    ])

    meta = await MetadataGenerator(generator).generate(_session())

    assert meta.title == "Fasting on insulin"
    assert meta.key_topics == ["fasting", "insulin"]
    assert "intermittent fasting" in generator.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_metadata_accepts_comma_separated_topics():
    generator = StubGenerator(responses=['{"title": "T", "summary": "S", "key_topics": "a, b"}'])

    meta = await MetadataGenerator(generator).generate(_session())

    assert meta.key_topics == ["a", "b"]


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["no json here", '{"title": "", "summary": ""}'])
async def test_metadata_rejects_unusable_output(raw):
    with pytest.raises(GenerationError):
        await MetadataGenerator(StubGenerator(responses=[raw])).generate(_session())


@pytest.mark.asyncio
async def test_metadata_requires_conversation():
    generator = StubGenerator()

    with pytest.raises(GenerationError):
        await MetadataGenerator(generator).generate(ResearchSession())
    assert generator.calls == []
