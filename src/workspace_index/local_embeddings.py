"""On-device embeddings using FastEmbed (ONNX-based, quantized models)."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import numpy as np

from .embeddings import CancellationToken, EmbeddingProvider
from .errors import ErrorCode, ModelLoadError, wrap_error
from .model_registry import ModelRegistry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

_NETWORK_HINTS = ("fetch", "timeout", "timed out", "network", "connection", "resolve")


@dataclass
class ModelDownloadProgress:
    """A model download lifecycle event."""

    status: Literal["initiate", "download", "progress", "done"]
    name: str
    file: str | None = None
    progress: float | None = None  # 0-100
    loaded: int | None = None
    total: int | None = None


ProgressCallback = Callable[[ModelDownloadProgress], None]


def default_cache_dir() -> Path:
    """FastEmbed's download location when none is configured."""
    env = os.environ.get("FASTEMBED_CACHE_PATH")
    if env:
        return Path(env)
    return Path(tempfile.gettempdir()) / "fastembed_cache"


class LocalEmbeddingProvider(EmbeddingProvider):
    """Local embedding using FastEmbed."""

    # Known models: (dimensions, max input tokens)
    MODEL_SPECS = {
        "sentence-transformers/all-MiniLM-L6-v2": (384, 512),
        "BAAI/bge-small-en-v1.5": (384, 512),
        "BAAI/bge-base-en-v1.5": (768, 512),
        "BAAI/bge-large-en-v1.5": (1024, 512),
        "jinaai/jina-embeddings-v2-base-code": (768, 8192),
    }

    # Map common short names to FastEmbed model names
    MODEL_MAP = {
        "all-MiniLM-L6-v2": "sentence-transformers/all-MiniLM-L6-v2",
        "Xenova/all-MiniLM-L6-v2": "sentence-transformers/all-MiniLM-L6-v2",
        "bge-small": "BAAI/bge-small-en-v1.5",
        "bge-base": "BAAI/bge-base-en-v1.5",
        "jina-code": "jinaai/jina-embeddings-v2-base-code",
    }

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        *,
        registry: ModelRegistry | None = None,
        progress_callback: ProgressCallback | None = None,
        cache_dir: str | None = None,
    ):
        self.model_name = self.MODEL_MAP.get(model_name, model_name)
        self.registry = registry or ModelRegistry()
        self.progress_callback = progress_callback
        self.cache_dir = cache_dir
        self._model: Any = None
        self._load_task: asyncio.Task[Any] | None = None
        self._dimensions: int | None = None

    @property
    def embedding_id(self) -> str:
        return self.model_name

    @property
    def dimensions(self) -> int:
        if self._dimensions is not None:
            return self._dimensions
        return self.MODEL_SPECS.get(self.model_name, (384, 512))[0]

    @property
    def max_chunk_size(self) -> int:
        return self.MODEL_SPECS.get(self.model_name, (384, 512))[1]

    def set_progress_callback(self, callback: ProgressCallback | None) -> None:
        self.progress_callback = callback

    def is_loaded(self) -> bool:
        return self._model is not None

    @staticmethod
    def is_model_cached(model_name: str = DEFAULT_MODEL, cache_dir: str | Path | None = None) -> bool:
        """Check whether a model's files are already on disk."""
        root = Path(cache_dir) if cache_dir else default_cache_dir()
        if not root.is_dir():
            return False
        short_name = model_name.rsplit("/", 1)[-1].lower()
        for path in root.glob("models--*"):
            if path.is_dir() and path.name.lower().split("--")[-1].startswith(short_name):
                return (path / "snapshots").is_dir()
        return False

    async def embed(
        self,
        texts: list[str],
        cancel_token: CancellationToken | None = None,
    ) -> list[list[float]]:
        """Embed texts one at a time, returning unit-length vectors.

        Raises:
            ModelLoadError: If the model cannot be loaded
            IndexingError: If inference fails (EMBEDDING_FAILED, or TIMEOUT)
        """
        if not texts:
            return []

        model = await self._ensure_model()

        results: list[list[float]] = []
        for text in texts:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                vector = await asyncio.to_thread(_embed_one, model, text)
            except Exception as e:
                raise wrap_error(e, ErrorCode.EMBEDDING_FAILED) from e
            self._dimensions = len(vector)
            results.append(vector)
        return results

    async def dispose(self) -> None:
        """Release the model. The next embed() loads it again."""
        self._model = None
        self._load_task = None
        self.registry.release(self.model_name)

    async def _ensure_model(self) -> Any:
        """Load the model once; concurrent callers share one load task.

        A failed load stays failed (it is a setup fault) until dispose().
        """
        if self._model is not None:
            return self._model
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load_model())
        self._model = await asyncio.shield(self._load_task)
        return self._model

    async def _load_model(self) -> Any:
        self._emit(ModelDownloadProgress(status="initiate", name=self.model_name))
        if not self.registry.is_loaded(self.model_name) and not self.is_model_cached(
            self.model_name, self.cache_dir
        ):
            self._emit(ModelDownloadProgress(status="download", name=self.model_name))

        try:
            model = await self.registry.get_or_load(self.model_name, self._create_model)
        except Exception as e:
            logger.error("Failed to load embedding model %s: %s", self.model_name, e)
            message = str(e)
            if any(hint in message.lower() for hint in _NETWORK_HINTS):
                raise ModelLoadError(
                    "Model download failed: network unavailable. Check the connection and retry.",
                    details=message,
                ) from e
            raise ModelLoadError(f"Model load failed: {message}", details=message) from e

        self._emit(ModelDownloadProgress(status="progress", name=self.model_name, progress=100.0))
        self._emit(ModelDownloadProgress(status="done", name=self.model_name))
        return model

    def _create_model(self) -> Any:
        from fastembed import TextEmbedding

        return TextEmbedding(model_name=self.model_name, cache_dir=self.cache_dir)

    def _emit(self, event: ModelDownloadProgress) -> None:
        if self.progress_callback is not None:
            self.progress_callback(event)


def _embed_one(model: Any, text: str) -> list[float]:
    """Embed a single text and L2-normalize the result."""
    vector = np.asarray(next(iter(model.embed([text]))), dtype=np.float32)
    norm = float(np.linalg.norm(vector))
    if norm > 0:
        vector = vector / norm
    return vector.tolist()
