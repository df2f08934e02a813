"""Tests for the shared model cache."""

import asyncio
import threading
import time

import pytest

from workspace_index.model_registry import ModelRegistry


class CountingLoader:
    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.delay = delay
        self.fail = fail
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
            n = self.calls
        time.sleep(self.delay)
        if self.fail:
            raise RuntimeError("load failed")
        return f"model-{n}"


@pytest.mark.asyncio
async def test_loads_once_and_caches():
    registry = ModelRegistry()
    loader = CountingLoader()

    assert await registry.get_or_load("m", loader) == "model-1"
    assert await registry.get_or_load("m", loader) == "model-1"
    assert loader.calls == 1
    assert registry.is_loaded("m")


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_load():
    registry = ModelRegistry()
    loader = CountingLoader(delay=0.05)

    results = await asyncio.gather(*(registry.get_or_load("m", loader) for _ in range(5)))

    assert results == ["model-1"] * 5
    assert loader.calls == 1


@pytest.mark.asyncio
async def test_failure_is_not_cached():
    registry = ModelRegistry()
    loader = CountingLoader(fail=True)

    with pytest.raises(RuntimeError):
        await registry.get_or_load("m", loader)
    assert not registry.is_loaded("m")

    loader.fail = False
    assert await registry.get_or_load("m", loader) == "model-2"


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_abort_shared_load():
    registry = ModelRegistry()
    loader = CountingLoader(delay=0.1)

    first = asyncio.create_task(registry.get_or_load("m", loader))
    second = asyncio.create_task(registry.get_or_load("m", loader))
    await asyncio.sleep(0.01)
    first.cancel()

    assert await second == "model-1"
    assert first.cancelled()
    assert registry.is_loaded("m")
    assert loader.calls == 1


@pytest.mark.asyncio
async def test_release_and_clear():
    registry = ModelRegistry()
    loader = CountingLoader()
    await registry.get_or_load("a", loader)
    await registry.get_or_load("b", loader)

    assert registry.release("a")
    assert not registry.release("a")
    assert not registry.is_loaded("a")

    registry.clear()
    assert not registry.is_loaded("b")


@pytest.mark.asyncio
async def test_release_during_load_drops_result():
    registry = ModelRegistry()
    loader = CountingLoader(delay=0.05)

    task = asyncio.create_task(registry.get_or_load("m", loader))
    await asyncio.sleep(0.01)
    registry.release("m")

    assert await task == "model-1"
    assert not registry.is_loaded("m")
