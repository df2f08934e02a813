"""Shared cache of loaded local embedding models."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class ModelRegistry:
    """
    Process-wide cache of loaded models keyed by name.

    Pass one instance to every provider that should share models. At most one
    load per name is in flight: concurrent callers await the same task. A
    failed load is not cached, so a later call starts a fresh one.
    """

    def __init__(self) -> None:
        self._models: dict[str, Any] = {}
        self._pending: dict[str, asyncio.Task[Any]] = {}

    def is_loaded(self, name: str) -> bool:
        return name in self._models

    async def get_or_load(self, name: str, loader: Callable[[], Any]) -> Any:
        """
        Return the cached model, loading it with ``loader`` if needed.

        The loader is blocking and runs in a worker thread.
        """
        if name in self._models:
            return self._models[name]

        task = self._pending.get(name)
        if task is None:
            task = asyncio.ensure_future(self._load(name, loader))
            self._pending[name] = task
            task.add_done_callback(lambda t: self._finish(name, t))

        # Shielded so one cancelled waiter does not abort the shared load
        return await asyncio.shield(task)

    def release(self, name: str) -> bool:
        """Forget a model (and any pending load). Returns True if anything was held."""
        had_model = self._models.pop(name, None) is not None
        had_pending = self._pending.pop(name, None) is not None
        return had_model or had_pending

    def clear(self) -> None:
        self._models.clear()
        self._pending.clear()

    async def _load(self, name: str, loader: Callable[[], Any]) -> Any:
        logger.info("Loading embedding model %s", name)
        start = time.perf_counter()
        model = await asyncio.to_thread(loader)
        logger.info("Loaded embedding model %s in %.0fms", name, (time.perf_counter() - start) * 1000)
        return model

    def _finish(self, name: str, task: asyncio.Task[Any]) -> None:
        # Released while loading: drop the result
        if self._pending.get(name) is not task:
            return
        del self._pending[name]
        if not task.cancelled() and task.exception() is None:
            self._models[name] = task.result()
