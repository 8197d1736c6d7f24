"""Batch chunks through an embedding provider with per-chunk fallback."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from reposync.core.logging import Logger, get_logger
from reposync.modules.embedding.errors import (
    EmbeddingBatchError,
    EmbeddingDimensionError,
)
from reposync.modules.embedding.providers import (
    EmbedRequestOptions,
    EmbeddingMatrix,
    EmbeddingsProvider,
)
from reposync.sync.models import EmbeddingVector, TextChunk

__all__ = [
    "DEFAULT_BATCH_DELAY",
    "DEFAULT_BATCH_SIZE",
    "EmbeddingBatcher",
]

DEFAULT_BATCH_SIZE = 16
DEFAULT_BATCH_DELAY = 0.1


@dataclass(slots=True)
class EmbeddingBatcher:
    """Embed chunks in fixed-size batches, preserving input order.

    A failed batch call is retried one chunk at a time so that a single bad
    chunk does not sink its neighbours. A chunk that still fails raises
    :class:`EmbeddingBatchError`; embedding is all-or-nothing per run.
    """

    provider: EmbeddingsProvider
    model: str
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay: float = DEFAULT_BATCH_DELAY
    timeout: float | None = None
    sleep: Callable[[float], None] = time.sleep
    logger: Logger | None = None
    _stats: dict[str, int] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.batch_delay < 0:
            raise ValueError("batch_delay must be >= 0")
        if self.logger is None:
            self.logger = get_logger(__name__, component="embedding-batcher")
        self._reset_stats()

    @property
    def stats(self) -> dict[str, int]:
        """Return counters from the most recent :meth:`embed_all` call."""

        return dict(self._stats)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def embed_all(self, chunks: Sequence[TextChunk]) -> list[EmbeddingVector]:
        """Return one vector per chunk with ids equal to the chunk ids.

        Raises:
            EmbeddingBatchError: If a chunk fails in the per-chunk fallback.
            EmbeddingDimensionError: If returned vectors disagree on size.
        """

        self._reset_stats()
        if not chunks:
            return []

        batches = [
            chunks[start : start + self.batch_size]
            for start in range(0, len(chunks), self.batch_size)
        ]
        vectors: list[EmbeddingVector] = []
        dimension: int | None = None

        for index, batch in enumerate(batches):
            matrix = self._embed_batch(batch, batch_index=index)
            for chunk, values in zip(batch, matrix):
                if dimension is None:
                    dimension = len(values)
                elif len(values) != dimension:
                    raise EmbeddingDimensionError(
                        (
                            f"Chunk {chunk.chunk_id} embedded with dimension "
                            f"{len(values)}; expected {dimension}."
                        ),
                        expected=dimension,
                        actual=len(values),
                        chunk_id=chunk.chunk_id,
                    )
                vectors.append(
                    EmbeddingVector(
                        id=chunk.chunk_id,
                        vector=tuple(values),
                        metadata=dict(chunk.metadata),
                    )
                )

            if index < len(batches) - 1 and self.batch_delay > 0:
                self.sleep(self.batch_delay)

        self._stats["vectors"] = len(vectors)
        self.logger.info(
            "embedding-complete",
            model=self.model,
            chunks=len(chunks),
            vectors=len(vectors),
            batches=len(batches),
            fallback_batches=self._stats["fallback_batches"],
            dimension=dimension,
        )
        return vectors

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _reset_stats(self) -> None:
        self._stats.clear()
        self._stats.update(
            {"batches": 0, "fallback_batches": 0, "calls": 0, "vectors": 0}
        )

    def _options(self, size: int) -> EmbedRequestOptions:
        return EmbedRequestOptions(max_batch_size=size, timeout=self.timeout)

    def _call(self, texts: Sequence[str]) -> EmbeddingMatrix:
        self._stats["calls"] += 1
        matrix = self.provider.embed_texts(
            texts,
            model=self.model,
            options=self._options(len(texts)),
        )
        if len(matrix) != len(texts):
            raise ValueError(
                f"Provider returned {len(matrix)} vectors for "
                f"{len(texts)} texts"
            )
        if any(len(values) == 0 for values in matrix):
            raise ValueError("Provider returned an empty vector")
        return matrix

    def _embed_batch(
        self,
        batch: Sequence[TextChunk],
        *,
        batch_index: int,
    ) -> EmbeddingMatrix:
        self._stats["batches"] += 1
        try:
            return self._call([chunk.content for chunk in batch])
        except Exception as exc:
            self._stats["fallback_batches"] += 1
            self.logger.warning(
                "embedding-batch-fallback",
                batch_index=batch_index,
                batch_size=len(batch),
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

        results: list[tuple[float, ...]] = []
        for chunk in batch:
            try:
                (values,) = self._call([chunk.content])
            except Exception as exc:
                self.logger.error(
                    "embedding-chunk-failed",
                    batch_index=batch_index,
                    chunk_id=chunk.chunk_id,
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )
                raise EmbeddingBatchError(
                    f"Failed to embed chunk {chunk.chunk_id}: {exc}",
                    chunk_id=chunk.chunk_id,
                    batch_index=batch_index,
                ) from exc
            results.append(tuple(values))
        return tuple(results)
