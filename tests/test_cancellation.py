from __future__ import annotations

import asyncio

import pytest

from deepdive.errors import ResearchCancelled
from deepdive.services.cancellation import CancellationRegistry, CancellationToken


@pytest.mark.asyncio
async def test_run_returns_result_when_not_cancelled():
    token = CancellationToken("s1")

    assert await token.run(asyncio.sleep(0, result=42)) == 42


@pytest.mark.asyncio
async def test_run_interrupts_pending_work():
    token = CancellationToken("s1")
    started = asyncio.Event()

    async def slow():
        started.set()
        await asyncio.sleep(10)

    task = asyncio.create_task(token.run(slow()))
    await started.wait()
    token.cancel()

    with pytest.raises(ResearchCancelled):
        await asyncio.wait_for(task, timeout=1.0)


@pytest.mark.asyncio
async def test_run_on_cancelled_token_does_not_start_work():
    token = CancellationToken("s1")
    token.cancel()
    ran = []

    async def work():
        ran.append(True)

    with pytest.raises(ResearchCancelled):
        await token.run(work())
    assert ran == []


def test_registry_lifecycle():
    registry = CancellationRegistry()
    token = registry.create("s1")

    assert "s1" in registry
    assert registry.cancel("s1") is True
    assert token.cancelled
    registry.remove("s1", token)
    assert "s1" not in registry
    assert registry.cancel("s1") is False


def test_newer_handle_survives_removal_of_older_one():
    registry = CancellationRegistry()
    old = registry.create("s1")
    new = registry.create("s1")

    assert old.cancelled
    registry.remove("s1", old)

    assert registry.get("s1") is new
    assert registry.active_ids() == ["s1"]
