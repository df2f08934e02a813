"""Embedding providers for Workspace Index."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .config import IndexConfig
from .errors import EmbeddingCancelledError

if TYPE_CHECKING:
    from .local_embeddings import ProgressCallback
    from .model_registry import ModelRegistry

TEST_SENTINEL = "test"


class CancellationToken:
    """Cooperative cancellation signal shared between a caller and a provider."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancellation_requested(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise EmbeddingCancelledError()

    async def sleep(self, seconds: float) -> None:
        """Sleep for up to ``seconds``, waking early if cancelled."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            pass


@dataclass
class ProviderTestResult:
    """Outcome of a one-shot provider check."""

    success: bool
    dimensions: int | None = None
    error: str | None = None


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @property
    @abstractmethod
    def embedding_id(self) -> str:
        """Stable model+config fingerprint; a change means re-embed everything."""
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Return the embedding dimensions."""
        ...

    @property
    @abstractmethod
    def max_chunk_size(self) -> int:
        """Largest input the provider accepts in one piece."""
        ...

    @abstractmethod
    async def embed(
        self,
        texts: list[str],
        cancel_token: CancellationToken | None = None,
    ) -> list[list[float]]:
        """
        Generate embeddings for a batch of texts.

        Args:
            texts: List of text strings to embed
            cancel_token: Optional token checked between units of work

        Returns:
            List of embedding vectors (same order as input)
        """
        ...

    async def embed_single(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        return (await self.embed([text]))[0]

    async def test(self) -> ProviderTestResult:
        """Embed a sentinel string to check the provider works end to end."""
        try:
            vectors = await self.embed([TEST_SENTINEL])
        except Exception as e:
            return ProviderTestResult(success=False, error=str(e) or type(e).__name__)
        return result_from_vectors(vectors)

    async def dispose(self) -> None:
        """Release held resources."""


def result_from_vectors(vectors: list[list[float]]) -> ProviderTestResult:
    if vectors and vectors[0]:
        return ProviderTestResult(success=True, dimensions=len(vectors[0]))
    return ProviderTestResult(success=False, error="Embedding result is empty")


def get_embedding_provider(
    config: IndexConfig,
    registry: ModelRegistry | None = None,
    progress_callback: ProgressCallback | None = None,
) -> EmbeddingProvider:
    """
    Factory function to get the appropriate embedding provider.

    Args:
        config: Configuration with provider settings
        registry: Shared model cache for local providers
        progress_callback: Model download events (local provider only)

    Returns:
        An EmbeddingProvider instance

    Raises:
        ValueError: If the provider is not supported
    """
    if config.embedding_provider == "local":
        from .local_embeddings import LocalEmbeddingProvider

        return LocalEmbeddingProvider(
            config.embedding_model,
            registry=registry,
            progress_callback=progress_callback,
            cache_dir=config.cache_dir,
        )
    if config.embedding_provider == "api":
        from .api_embeddings import ApiEmbeddingProvider

        return ApiEmbeddingProvider(
            config.embedding_model,
            base_url=config.api_base_url,
            api_key=config.api_key,
            name=config.api_name,
            max_input_chars=config.max_input_chars,
            max_batch_chars=config.max_batch_chars,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay,
            retry_max_delay=config.retry_max_delay,
            timeout=config.request_timeout,
        )
    raise ValueError(f"Provider '{config.embedding_provider}' not supported")
