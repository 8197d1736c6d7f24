"""Collection provisioning and batched upserts over a vector backend."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Callable, Sequence

from reposync.core.logging import Logger, get_logger
from reposync.core.retry import RetryExhaustedError, linear_backoff, run_with_retry
from reposync.modules.vdb.backends import VectorRecord, VectorStoreBackend
from reposync.modules.vdb.errors import (
    CollectionProvisionError,
    VectorBackendError,
)
from reposync.sync.models import EmbeddingVector

__all__ = [
    "CollectionState",
    "GatewaySettings",
    "UpsertReport",
    "VectorStoreGateway",
]


class CollectionState(StrEnum):
    """Provisioning state of a collection as seen by the gateway."""

    ABSENT = "absent"
    CREATING = "creating"
    INDEXING = "indexing"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True, slots=True)
class GatewaySettings:
    """Batching and retry knobs for the gateway."""

    upsert_batch_size: int = 50
    max_retries: int = 3
    retry_delay: float = 2.0
    load_retry_delay: float = 5.0
    batch_delay: float = 0.2

    def __post_init__(self) -> None:
        if self.upsert_batch_size < 1:
            raise ValueError("upsert_batch_size must be >= 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")


@dataclass(frozen=True, slots=True)
class UpsertReport:
    """Counts describing one :meth:`VectorStoreGateway.upsert` call."""

    collection: str
    requested: int
    valid: int
    persisted: int
    total_batches: int = 0
    failed_batches: int = 0

    @property
    def dropped(self) -> int:
        """Vectors discarded before sending for a missing id or data."""

        return self.requested - self.valid

    @property
    def failed(self) -> int:
        """Valid vectors that could not be persisted."""

        return self.valid - self.persisted

    @property
    def complete(self) -> bool:
        return self.persisted == self.valid


def _is_valid(vector: EmbeddingVector) -> bool:
    return bool(vector.id and vector.id.strip() and vector.vector)


@dataclass(slots=True)
class VectorStoreGateway:
    """Idempotent collection lifecycle and retried, batched upserts.

    ``ensure_collection`` walks ``ABSENT -> CREATING -> INDEXING -> LOADING
    -> READY``. Index creation and load retry with ``delay * attempt``
    backoff and treat "already exists"/"already loaded" responses as success;
    when they still fail the collection is left usable but degraded.
    """

    backend: VectorStoreBackend
    settings: GatewaySettings = field(default_factory=GatewaySettings)
    sleep: Callable[[float], None] = time.sleep
    logger: Logger | None = None
    _states: dict[str, CollectionState] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(
                __name__,
                component="vdb-gateway",
                backend=getattr(self.backend, "name", "unknown"),
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def state(self, name: str) -> CollectionState:
        """Return the last state the gateway observed for ``name``."""

        with self._lock:
            return self._states.get(name, CollectionState.ABSENT)

    def has_collection(self, name: str) -> bool:
        """Return whether ``name`` exists; any backend error means no."""

        try:
            exists = bool(self.backend.has_collection(name))
        except Exception as exc:
            self.logger.warning(
                "vdb-has-collection-failed",
                collection=name,
                error=str(exc),
            )
            return False
        if not exists:
            self._set_state(name, CollectionState.ABSENT)
        return exists

    def ensure_collection(self, name: str, dimension: int) -> CollectionState:
        """Create, index and load ``name`` unless it already exists.

        Raises:
            CollectionProvisionError: If the collection cannot be created.
        """

        if self.has_collection(name):
            self._set_state(name, CollectionState.READY)
            self.logger.debug("vdb-collection-exists", collection=name)
            return CollectionState.READY

        self._set_state(name, CollectionState.CREATING)
        self.logger.info(
            "vdb-collection-create",
            collection=name,
            dimension=dimension,
        )
        try:
            self.backend.create_collection(name, dimension)
        except VectorBackendError as exc:
            if not exc.already_done:
                self._set_state(name, CollectionState.ABSENT)
                raise CollectionProvisionError(name, str(exc)) from exc
            self.logger.info("vdb-collection-created-concurrently", collection=name)
        except Exception as exc:
            self._set_state(name, CollectionState.ABSENT)
            raise CollectionProvisionError(name, str(exc)) from exc

        self._set_state(name, CollectionState.INDEXING)
        indexed = self._provision_step(
            name,
            step="create-index",
            action=self.backend.create_index,
            delay=self.settings.retry_delay,
        )

        self._set_state(name, CollectionState.LOADING)
        loaded = self._provision_step(
            name,
            step="load",
            action=self.backend.load_collection,
            delay=self.settings.load_retry_delay,
        )

        self._set_state(name, CollectionState.READY)
        self.logger.info(
            "vdb-collection-ready",
            collection=name,
            dimension=dimension,
            degraded=not (indexed and loaded),
        )
        return CollectionState.READY

    def upsert(
        self,
        name: str,
        vectors: Sequence[EmbeddingVector],
    ) -> UpsertReport:
        """Write ``vectors`` in sub-batches, skipping batches that keep failing.

        Raises:
            CollectionProvisionError: If the collection cannot be ensured.
        """

        requested = len(vectors)
        valid = [vector for vector in vectors if _is_valid(vector)]
        if len(valid) < requested:
            self.logger.warning(
                "vdb-upsert-dropped-invalid",
                collection=name,
                dropped=requested - len(valid),
            )
        if not valid:
            return UpsertReport(
                collection=name,
                requested=requested,
                valid=0,
                persisted=0,
            )

        self._ensure_for_upsert(name, valid[0].dimension)

        size = self.settings.upsert_batch_size
        batches = [valid[start : start + size] for start in range(0, len(valid), size)]
        persisted = 0
        failed_batches = 0

        for index, batch in enumerate(batches):
            records = [
                VectorRecord(
                    id=vector.id,
                    vector=vector.vector,
                    metadata=dict(vector.metadata),
                )
                for vector in batch
            ]
            written = run_with_retry(
                lambda: self.backend.upsert(name, records),
                max_attempts=self.settings.max_retries,
                backoff=linear_backoff(
                    self.settings.retry_delay,
                    self.settings.max_retries,
                ),
                fallback=lambda exc, attempts: None,
                sleep=self.sleep,
                logger=self.logger,
                name="vdb-upsert-batch",
            )
            if written is None:
                failed_batches += 1
                self.logger.error(
                    "vdb-upsert-batch-failed",
                    collection=name,
                    batch_index=index,
                    batch_size=len(batch),
                )
            else:
                persisted += min(int(written), len(batch))

            if index < len(batches) - 1 and self.settings.batch_delay > 0:
                self.sleep(self.settings.batch_delay)

        report = UpsertReport(
            collection=name,
            requested=requested,
            valid=len(valid),
            persisted=persisted,
            total_batches=len(batches),
            failed_batches=failed_batches,
        )
        self.logger.info(
            "vdb-upsert-complete",
            collection=name,
            requested=requested,
            valid=report.valid,
            persisted=persisted,
            batches=len(batches),
            failed_batches=failed_batches,
        )
        return report

    def drop_collection(self, name: str) -> bool:
        """Drop ``name``; failures are logged and reported as ``False``."""

        try:
            self.backend.drop_collection(name)
        except Exception as exc:
            self.logger.warning(
                "vdb-drop-collection-failed",
                collection=name,
                error=str(exc),
            )
            return False
        self._set_state(name, CollectionState.ABSENT)
        self.logger.info("vdb-collection-dropped", collection=name)
        return True

    def count(self, name: str) -> int:
        """Return the number of rows stored in ``name``."""

        return self.backend.count(name)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _set_state(self, name: str, state: CollectionState) -> None:
        with self._lock:
            self._states[name] = state

    def _provision_step(
        self,
        name: str,
        *,
        step: str,
        action: Callable[[str], None],
        delay: float,
    ) -> bool:
        def _attempt() -> bool:
            try:
                action(name)
            except VectorBackendError as exc:
                if not exc.already_done:
                    raise
                self.logger.debug(
                    "vdb-provision-already-done",
                    collection=name,
                    step=step,
                    detail=str(exc),
                )
            return True

        def _degraded(exc: Exception, attempts: int) -> bool:
            self.logger.warning(
                "vdb-collection-degraded",
                collection=name,
                step=step,
                attempts=attempts,
                error=str(exc),
            )
            return False

        return run_with_retry(
            _attempt,
            max_attempts=self.settings.max_retries,
            backoff=linear_backoff(delay, self.settings.max_retries),
            fallback=_degraded,
            sleep=self.sleep,
            logger=self.logger,
            name=f"vdb-{step}",
        )

    def _ensure_for_upsert(self, name: str, dimension: int) -> None:
        try:
            run_with_retry(
                lambda: self.ensure_collection(name, dimension),
                max_attempts=self.settings.max_retries,
                backoff=linear_backoff(
                    self.settings.retry_delay,
                    self.settings.max_retries,
                ),
                sleep=self.sleep,
                logger=self.logger,
                name="vdb-ensure-collection",
            )
        except RetryExhaustedError as exc:
            raise CollectionProvisionError(name, str(exc.last_error)) from exc
