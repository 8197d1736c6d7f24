"""Embedding providers and the chunk batcher."""

from __future__ import annotations

from .batcher import EmbeddingBatcher
from .errors import (
    EmbeddingBatchError,
    EmbeddingDimensionError,
    EmbeddingProviderError,
)
from .providers import (
    EmbeddingsProvider,
    ProviderRegistry,
    create_default_provider_registry,
)

__all__ = [
    "EmbeddingBatchError",
    "EmbeddingBatcher",
    "EmbeddingDimensionError",
    "EmbeddingProviderError",
    "EmbeddingsProvider",
    "ProviderRegistry",
    "create_default_provider_registry",
]
