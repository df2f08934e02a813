"""OpenAI-compatible embedding API client.

Long inputs are sliced, slices are packed into size-bounded batches, and each
batch is retried with exponential backoff. A batch that still fails degrades
to zero vectors so one bad request does not abort indexing of a workspace;
every such fallback is logged and counted.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Sequence
from dataclasses import dataclass

import httpx
import numpy as np
import tenacity

from .embeddings import (
    TEST_SENTINEL,
    CancellationToken,
    EmbeddingProvider,
    ProviderTestResult,
    result_from_vectors,
)
from .errors import (
    EmbeddingCancelledError,
    ErrorCode,
    IndexingError,
    ProviderUnavailableError,
    is_retryable,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_INPUT_CHARS = 8000
DEFAULT_MAX_BATCH_CHARS = 16000
DEFAULT_MAX_RETRIES = 3

# Setup faults, never retried
SETUP_FAULT_STATUS_CODES = frozenset({401, 403, 404})


@dataclass
class TextSlice:
    """One piece of an input text, remembered with the input's position."""

    text_index: int
    text: str


def split_text(text: str, max_chars: int) -> list[str]:
    """Cut text into consecutive pieces of at most max_chars characters."""
    if len(text) <= max_chars:
        return [text]
    return [text[i : i + max_chars] for i in range(0, len(text), max_chars)]


def pack_batches(slices: Sequence[TextSlice], max_batch_chars: int) -> list[list[TextSlice]]:
    """
    Greedily group slices into batches under a total character budget.

    A batch always takes at least one slice, even one larger than the budget.
    """
    batches: list[list[TextSlice]] = []
    current: list[TextSlice] = []
    current_chars = 0
    for piece in slices:
        if current and current_chars + len(piece.text) > max_batch_chars:
            batches.append(current)
            current = []
            current_chars = 0
        current.append(piece)
        current_chars += len(piece.text)
    if current:
        batches.append(current)
    return batches


def mean_vector(vectors: Sequence[Sequence[float]]) -> list[float]:
    """Elementwise arithmetic mean."""
    return np.mean(np.asarray(vectors, dtype=np.float64), axis=0).tolist()


def default_dimensions(model_id: str) -> int:
    """Best guess at a model's vector size before the first response."""
    lower = model_id.lower()
    if "text-embedding-3-large" in lower:
        return 3072
    if "text-embedding-3-small" in lower or "text-embedding-ada" in lower:
        return 1536
    if "bge-large" in lower:
        return 1024
    if "bge-base" in lower or "bge-small" in lower:
        return 768
    return 1536


def embeddings_url(base_url: str) -> str:
    """Build the /v1/embeddings URL without doubling a trailing /v1."""
    url = base_url.rstrip("/")
    if url.endswith("/v1"):
        return f"{url}/embeddings"
    return f"{url}/v1/embeddings"


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception is a transient failure worth retrying.

    Retries on:
    - httpx timeouts, network errors, and invalid HTTP from the server
    - HTTP error statuses other than the setup faults (401/403/404)
    - malformed or short responses
    """
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code not in SETUP_FAULT_STATUS_CODES
    if isinstance(exc, IndexingError):
        return is_retryable(exc)
    return False


async def _cancellable_sleep(cancel_token: CancellationToken, seconds: float) -> None:
    # Backoff wakes on cancellation and no further attempt starts
    await cancel_token.sleep(seconds)
    cancel_token.raise_if_cancelled()


def log_retry(retry_state: tenacity.RetryCallState) -> None:
    """Log a failed attempt before backing off."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if exc is None:
        return

    exc_msg = str(exc)
    if isinstance(exc, httpx.HTTPStatusError):
        exc_msg = f"HTTP {exc.response.status_code}: {exc_msg}"

    logger.warning(
        "[RETRY] Embedding attempt %d failed: %s: %s",
        retry_state.attempt_number,
        type(exc).__name__,
        exc_msg,
    )


class ApiEmbeddingProvider(EmbeddingProvider):
    """Embeddings from an OpenAI-compatible ``/v1/embeddings`` endpoint."""

    MAX_CHUNK_SIZE = 8192

    def __init__(
        self,
        model: str,
        *,
        base_url: str,
        api_key: str = "",
        name: str = "api",
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
        max_batch_chars: int = DEFAULT_MAX_BATCH_CHARS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 8.0,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize client.

        Args:
            model: Embedding model identifier (e.g., 'text-embedding-3-small').
            base_url: API root, with or without a trailing /v1.
            api_key: Bearer token. Empty sends no Authorization header.
            name: Configuration name, part of embedding_id.
            max_input_chars: Texts longer than this are sliced.
            max_batch_chars: Character budget of one request.
            max_retries: Attempts per batch before falling back to zero vectors.
            retry_base_delay: Exponential backoff multiplier in seconds.
            retry_max_delay: Upper bound of a single backoff delay.
            timeout: Request timeout in seconds.
            client: Pre-built httpx client (its base URL and headers are not used).
        """
        self.model = model
        self.name = name
        self.url = embeddings_url(base_url)
        self.max_input_chars = max_input_chars
        self.max_batch_chars = max_batch_chars
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._dimensions = default_dimensions(model)

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._headers = headers
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

        # Failed batches, and input texts returned as zero vectors because of them
        self.fallback_batches = 0
        self.fallback_texts = 0

    @property
    def embedding_id(self) -> str:
        return f"api:{self.name}:{self.model}"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def max_chunk_size(self) -> int:
        return self.MAX_CHUNK_SIZE

    async def embed(
        self,
        texts: list[str],
        cancel_token: CancellationToken | None = None,
    ) -> list[list[float]]:
        """
        Embed texts, one output vector per input, in input order.

        Blank texts get zero vectors without a request. Texts longer than
        max_input_chars are sliced and their slice vectors averaged. A text
        with any slice in a failed batch gets a zero vector.

        Raises:
            EmbeddingCancelledError: If cancel_token fires between batches
            ProviderUnavailableError: On 401/403/404 or unusable endpoint
        """
        if not texts:
            return []

        slices = [
            TextSlice(index, piece)
            for index, text in enumerate(texts)
            if text.strip()
            for piece in split_text(text, self.max_input_chars)
        ]

        vectors: dict[int, list[list[float] | None]] = {}
        for batch in pack_batches(slices, self.max_batch_chars):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            batch_vectors = await self._embed_batch([piece.text for piece in batch], cancel_token)

            # In-flight results are discarded once cancelled
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            for i, piece in enumerate(batch):
                vector = batch_vectors[i] if batch_vectors is not None else None
                vectors.setdefault(piece.text_index, []).append(vector)

        # Zero vectors are sized after all batches, once dimensions are known
        zero = [0.0] * self._dimensions
        results: list[list[float]] = []
        for index in range(len(texts)):
            pieces = vectors.get(index, [])
            if any(piece is None for piece in pieces):
                # One lost slice voids the whole text, never a partial mean
                self.fallback_texts += 1
                results.append(list(zero))
            elif not pieces:
                results.append(list(zero))
            elif len(pieces) == 1:
                results.append(list(pieces[0]))
            else:
                results.append(mean_vector(pieces))
        return results

    async def test(self) -> ProviderTestResult:
        """Send one request (with retries) and report instead of degrading."""
        try:
            vectors = await self._request_with_retry([TEST_SENTINEL], None)
        except tenacity.RetryError as e:
            last = e.last_attempt.exception()
            return ProviderTestResult(success=False, error=str(last) or type(last).__name__)
        except Exception as e:
            return ProviderTestResult(success=False, error=str(e) or type(e).__name__)
        return result_from_vectors(vectors)

    async def dispose(self) -> None:
        """Close HTTP client and release resources."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ApiEmbeddingProvider:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.dispose()

    async def _embed_batch(
        self,
        texts: list[str],
        cancel_token: CancellationToken | None,
    ) -> list[list[float]] | None:
        """Embed one batch. Returns None when retries are exhausted."""
        try:
            return await self._request_with_retry(texts, cancel_token)
        except tenacity.RetryError as e:
            if cancel_token is not None and cancel_token.is_cancellation_requested:
                raise EmbeddingCancelledError() from e
            last = e.last_attempt.exception()
            self.fallback_batches += 1
            logger.warning(
                "Embedding batch of %d slice(s) failed after %d attempt(s), using zero vectors: %s",
                len(texts),
                e.last_attempt.attempt_number,
                last,
            )
            return None

    async def _request_with_retry(
        self,
        texts: list[str],
        cancel_token: CancellationToken | None,
    ) -> list[list[float]]:
        """Call the endpoint, retrying transient failures.

        Raises:
            tenacity.RetryError: When attempts are exhausted or cancelled
        """
        stop = tenacity.stop_after_attempt(self.max_retries)
        sleep = asyncio.sleep
        if cancel_token is not None:
            stop = tenacity.stop_any(stop, lambda _: cancel_token.is_cancellation_requested)
            sleep = functools.partial(_cancellable_sleep, cancel_token)

        retrying = tenacity.AsyncRetrying(
            retry=tenacity.retry_if_exception(is_retryable_error),
            stop=stop,
            wait=tenacity.wait_exponential(multiplier=self.retry_base_delay, max=self.retry_max_delay),
            sleep=sleep,
            before_sleep=log_retry,
        )
        async for attempt in retrying:
            with attempt:
                return await self._request(texts)
        raise AssertionError("unreachable")

    async def _request(self, texts: list[str]) -> list[list[float]]:
        """Single POST to the embeddings endpoint."""
        try:
            response = await self._client.post(
                self.url,
                json={"model": self.model, "input": texts},
                headers=self._headers,
            )
        except (httpx.UnsupportedProtocol, httpx.ProxyError, httpx.LocalProtocolError) as e:
            raise ProviderUnavailableError(f"Embedding endpoint unusable: {e}") from e

        if response.status_code in SETUP_FAULT_STATUS_CODES:
            raise ProviderUnavailableError(
                f"Embedding API error ({response.status_code}): {response.text}",
                details={"status": response.status_code, "url": self.url},
            )
        response.raise_for_status()

        try:
            data = response.json()
            items = sorted(data["data"], key=lambda item: item["index"])
            vectors = [[float(x) for x in item["embedding"]] for item in items]
        except (ValueError, KeyError, TypeError) as e:
            raise IndexingError(
                f"Malformed embedding response: {e}", code=ErrorCode.EMBEDDING_FAILED
            ) from e

        if len(vectors) != len(texts):
            raise IndexingError(
                f"Embedding response has {len(vectors)} vectors for {len(texts)} inputs",
                code=ErrorCode.EMBEDDING_FAILED,
            )

        if vectors:
            self._dimensions = len(vectors[0])
        return vectors
