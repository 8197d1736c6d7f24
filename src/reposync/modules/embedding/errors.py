"""Typed error hierarchy for embedding providers and batching."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "EmbeddingBatchError",
    "EmbeddingDimensionError",
    "EmbeddingProviderConfigurationError",
    "EmbeddingProviderError",
    "EmbeddingProviderInputTooLargeError",
    "EmbeddingProviderRateLimitError",
    "EmbeddingProviderRequestError",
    "EmbeddingProviderRetryExceededError",
    "EmbeddingProviderRetryableError",
]


@dataclass(slots=True)
class EmbeddingProviderError(RuntimeError):
    """Base error raised by embedding providers."""

    message: str
    provider: str
    model: str
    request_id: str | None = None
    status_code: int | None = None

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)


@dataclass(slots=True)
class EmbeddingProviderConfigurationError(EmbeddingProviderError):
    """Raised when the provider configuration is invalid."""


@dataclass(slots=True)
class EmbeddingProviderRequestError(EmbeddingProviderError):
    """Raised for non-retryable request errors."""


@dataclass(slots=True)
class EmbeddingProviderRetryableError(EmbeddingProviderError):
    """Raised for retryable transport or server-side errors."""


@dataclass(slots=True)
class EmbeddingProviderRateLimitError(EmbeddingProviderRetryableError):
    """Raised when the provider returns a rate limiting response."""


@dataclass(slots=True)
class EmbeddingProviderRetryExceededError(EmbeddingProviderError):
    """Raised when retry attempts are exhausted."""

    attempts: int = 0


@dataclass(slots=True)
class EmbeddingProviderInputTooLargeError(EmbeddingProviderError):
    """Raised when a single input exceeds provider token limits."""

    token_count: int | None = None
    limit: int | None = None


@dataclass(slots=True)
class EmbeddingBatchError(RuntimeError):
    """Raised when a chunk cannot be embedded even on its own."""

    message: str
    chunk_id: str
    batch_index: int

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)


@dataclass(slots=True)
class EmbeddingDimensionError(RuntimeError):
    """Raised when vectors in one run disagree on dimension."""

    message: str
    expected: int
    actual: int
    chunk_id: str | None = None

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)
