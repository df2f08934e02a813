"""Error hierarchy for Workspace Index.

Structural and parse errors abort the operation that raised them. Transient
provider errors are handled inside the API provider and never reach callers
unless retries are disabled or cancelled.
"""

from __future__ import annotations

import json
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Stable numeric codes, grouped by area."""

    # General (1000-1099)
    UNKNOWN = 1000
    CANCELLED = 1001
    TIMEOUT = 1002

    # Tree (1300-1399)
    PATH_CONFLICT = 1304
    INDEX_CORRUPTED = 1303

    # Embeddings (1400-1499)
    EMBEDDING_FAILED = 1400
    MODEL_LOAD_FAILED = 1401
    MODEL_NOT_SUPPORTED = 1402
    PROVIDER_UNAVAILABLE = 1403


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.UNKNOWN: "An unknown error occurred",
    ErrorCode.CANCELLED: "Operation cancelled",
    ErrorCode.TIMEOUT: "Operation timed out",
    ErrorCode.PATH_CONFLICT: "Path conflict in file tree",
    ErrorCode.INDEX_CORRUPTED: "Index data is corrupted, rebuild the index",
    ErrorCode.EMBEDDING_FAILED: "Failed to generate embeddings",
    ErrorCode.MODEL_LOAD_FAILED: "Failed to load embedding model",
    ErrorCode.MODEL_NOT_SUPPORTED: "Embedding model not supported",
    ErrorCode.PROVIDER_UNAVAILABLE: "Embedding provider unavailable",
}

RETRYABLE_CODES = frozenset({ErrorCode.TIMEOUT, ErrorCode.EMBEDDING_FAILED})


class IndexingError(Exception):
    """Base exception for all Workspace Index operations."""

    default_code = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | None = None,
        details: Any = None,
    ):
        self.code = code if code is not None else self.default_code
        self.details = details
        super().__init__(message or ERROR_MESSAGES.get(self.code, ERROR_MESSAGES[ErrorCode.UNKNOWN]))

    @property
    def message(self) -> str:
        return str(self)

    def full_message(self) -> str:
        """Message with details appended, if any."""
        if self.details is None:
            return self.message
        if isinstance(self.details, str):
            detail = self.details
        else:
            detail = json.dumps(self.details, indent=2, default=str)
        return f"{self.message}\nDetails: {detail}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"code": int(self.code), "message": self.message}
        if self.details is not None:
            result["details"] = self.details
        return result


class PathConflictError(IndexingError):
    """A path segment expected to be a directory is a file."""

    default_code = ErrorCode.PATH_CONFLICT

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path conflict: expected directory at {path}", details=path)


class TreeCorruptedError(IndexingError):
    """Serialized tree data could not be parsed."""

    default_code = ErrorCode.INDEX_CORRUPTED


class ModelLoadError(IndexingError):
    """Local embedding model failed to load."""

    default_code = ErrorCode.MODEL_LOAD_FAILED


class ProviderUnavailableError(IndexingError):
    """Embedding endpoint rejected the request (auth, missing model, bad URL)."""

    default_code = ErrorCode.PROVIDER_UNAVAILABLE


class EmbeddingCancelledError(IndexingError):
    """Embedding was cancelled through a CancellationToken."""

    default_code = ErrorCode.CANCELLED


def wrap_error(exc: BaseException, default_code: ErrorCode = ErrorCode.UNKNOWN) -> IndexingError:
    """Convert an arbitrary exception into an IndexingError."""
    if isinstance(exc, IndexingError):
        return exc

    text = str(exc) or type(exc).__name__
    if isinstance(exc, TimeoutError) or "timeout" in text.lower():
        return IndexingError(text, code=ErrorCode.TIMEOUT)
    if "cancel" in text.lower():
        return EmbeddingCancelledError(text)
    return IndexingError(text, code=default_code)


def is_retryable(error: IndexingError) -> bool:
    """Check whether an error is worth retrying."""
    return error.code in RETRYABLE_CODES
