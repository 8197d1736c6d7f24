"""Six-stage sync workflow with stage-tagged failures and top-level retry."""

from __future__ import annotations

import contextvars
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Generic, Sequence, TypeVar

from reposync.core.config import SyncSettings
from reposync.core.logging import Logger, get_logger, sync_log_context
from reposync.core.retry import run_with_retry
from reposync.modules.embedding.batcher import EmbeddingBatcher
from reposync.modules.embedding.errors import EmbeddingDimensionError
from reposync.modules.vdb.errors import VectorStoreError
from reposync.modules.vdb.gateway import UpsertReport, VectorStoreGateway
from reposync.source import RepositorySource
from reposync.sync.chunker import TextChunker
from reposync.sync.ledger import LedgerError, ShaLedger
from reposync.sync.models import (
    DocumentContent,
    EmbeddingVector,
    RepositoryInfo,
    SyncJobResult,
    SyncStatus,
    TextChunk,
)

__all__ = [
    "NO_CHUNKS_MESSAGE",
    "NO_CHANGES_MESSAGE",
    "NO_DOCUMENTS_MESSAGE",
    "NO_REPOSITORIES_MESSAGE",
    "SingleFlight",
    "StageCounts",
    "SyncOrchestrator",
    "SyncStageError",
]

T = TypeVar("T")

NO_REPOSITORIES_MESSAGE = "No repositories found matching criteria"
NO_DOCUMENTS_MESSAGE = "No documents found in repositories"
NO_CHANGES_MESSAGE = "No documents changed since the last sync"
NO_CHUNKS_MESSAGE = "No chunks created"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_job_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class StageCounts:
    """Counts produced so far by one workflow attempt."""

    repositories: int = 0
    documents: int = 0
    chunks: int = 0
    vectors: int = 0

    def snapshot(self) -> "StageCounts":
        return StageCounts(
            repositories=self.repositories,
            documents=self.documents,
            chunks=self.chunks,
            vectors=self.vectors,
        )


@dataclass(slots=True)
class SyncStageError(RuntimeError):
    """A stage-fatal failure, tagged with the stage that raised it."""

    stage: str
    step: int
    message: str
    counts: StageCounts = field(default_factory=StageCounts)

    def __post_init__(self) -> None:
        RuntimeError.__init__(
            self,
            f"Step {self.step} failed ({self.stage}): {self.message}",
        )


@dataclass(slots=True)
class _Flight(Generic[T]):
    done: threading.Event = field(default_factory=threading.Event)
    result: T | None = None
    error: BaseException | None = None


class SingleFlight(Generic[T]):
    """Collapse concurrent calls into the one already running.

    The first caller runs the function; callers arriving while it runs block
    until it finishes and receive the same result (or the same exception).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flight: _Flight[T] | None = None

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._flight is not None

    def run(self, func: Callable[[], T]) -> T:
        with self._lock:
            flight = self._flight
            leader = flight is None
            if flight is None:
                flight = _Flight()
                self._flight = flight

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.result  # type: ignore[return-value]

        try:
            flight.result = func()
            return flight.result
        except BaseException as exc:
            flight.error = exc
            raise
        finally:
            with self._lock:
                self._flight = None
            flight.done.set()


@dataclass(slots=True)
class SyncOrchestrator:
    """Drive discover, fetch, chunk, embed, ensure-collection and upsert.

    Stages run strictly in order, each on the complete output of the previous
    one. Empty discovery, fetch or chunk output ends the run as ``SUCCESS``.
    Any other stage failure aborts the attempt; once ``max_attempts`` attempts
    have failed the run is reported as ``FAILED``. :meth:`execute_sync_workflow`
    never raises.
    """

    settings: SyncSettings
    source: RepositorySource
    batcher: EmbeddingBatcher
    gateway: VectorStoreGateway
    chunker: TextChunker | None = None
    ledger: ShaLedger | None = None
    logger: Logger | None = None
    now: Callable[[], datetime] = _utcnow
    sleep: Callable[[float], None] = time.sleep
    job_id_factory: Callable[[], str] = _new_job_id
    _flight: SingleFlight[SyncJobResult] = field(
        default_factory=SingleFlight, init=False
    )

    def __post_init__(self) -> None:
        if self.chunker is None:
            self.chunker = TextChunker(
                chunk_size=self.settings.chunk_size,
                overlap=self.settings.overlap,
            )
        if self.logger is None:
            self.logger = get_logger(__name__, component="sync-orchestrator")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        """Whether a single-flight run is currently in progress."""

        return self._flight.in_flight

    def execute_sync_workflow(self) -> SyncJobResult:
        """Run the workflow once and return its result.

        With ``single_flight`` enabled a call made while another run is in
        progress waits for that run and returns its result.
        """

        if self.settings.single_flight:
            return self._flight.run(self._execute)
        return self._execute()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _execute(self) -> SyncJobResult:
        job_id = self.job_id_factory()
        with sync_log_context(job_id=job_id):
            return self._execute_job(job_id)

    def _execute_job(self, job_id: str) -> SyncJobResult:
        start_time = self.now()
        log = self.logger
        attempts: list[StageCounts] = []

        log.info(
            "sync-start",
            organization=self.settings.organization,
            filter_keyword=self.settings.filter_keyword,
            collection=self.settings.collection_name,
        )

        def _attempt() -> SyncJobResult:
            counts = StageCounts()
            attempts.append(counts)
            return self._run_pipeline(job_id, start_time, counts, log)

        def _fallback(exc: Exception, attempt_count: int) -> SyncJobResult:
            if isinstance(exc, SyncStageError):
                counts = exc.counts
            elif attempts:
                counts = attempts[-1]
            else:
                counts = StageCounts()
            message = f"Workflow failed after {attempt_count} attempt(s): {exc}"
            result = self._result(
                job_id,
                start_time,
                counts,
                SyncStatus.FAILED,
                message,
            )
            log.error(
                "sync-failed",
                attempts=attempt_count,
                error=str(exc),
                error_type=exc.__class__.__name__,
                repositories=counts.repositories,
                documents=counts.documents,
                chunks=counts.chunks,
            )
            return result

        result = run_with_retry(
            _attempt,
            max_attempts=self.settings.max_attempts,
            backoff=self.settings.backoff,
            fallback=_fallback,
            sleep=self.sleep,
            logger=log,
            name="sync-workflow",
        )
        log.info(
            "sync-complete",
            status=result.status.value,
            repositories=result.repositories_processed,
            documents=result.documents_processed,
            chunks=result.chunks_created,
            vectors=result.vectors_stored,
            duration_seconds=round(result.duration_seconds, 3),
            message=result.error_message,
        )
        return result

    def _run_pipeline(
        self,
        job_id: str,
        start_time: datetime,
        counts: StageCounts,
        log: Logger,
    ) -> SyncJobResult:
        settings = self.settings

        repositories = self._stage(
            1,
            "discover",
            counts,
            log,
            lambda: self.source.list_repositories(
                settings.organization,
                settings.filter_keyword,
            ),
        )
        counts.repositories = len(repositories)
        if not repositories:
            return self._result(
                job_id,
                start_time,
                counts,
                SyncStatus.SUCCESS,
                NO_REPOSITORIES_MESSAGE,
            )

        documents = self._stage(
            2,
            "fetch",
            counts,
            log,
            lambda: self._fetch_documents(repositories, log),
        )
        counts.documents = len(documents)
        if not documents:
            return self._result(
                job_id,
                start_time,
                counts,
                SyncStatus.SUCCESS,
                NO_DOCUMENTS_MESSAGE,
            )

        if settings.skip_unchanged and self.ledger is not None:
            ledger = self.ledger
            documents = self._stage(
                2,
                "fetch",
                counts,
                log,
                lambda: ledger.filter_unchanged(documents),
            )
            counts.documents = len(documents)
            if not documents:
                return self._result(
                    job_id,
                    start_time,
                    counts,
                    SyncStatus.SUCCESS,
                    NO_CHANGES_MESSAGE,
                )

        chunks = self._stage(
            3,
            "chunk",
            counts,
            log,
            lambda: self.chunker.chunk_all(documents),
        )
        counts.chunks = len(chunks)
        if not chunks:
            return self._result(
                job_id,
                start_time,
                counts,
                SyncStatus.SUCCESS,
                NO_CHUNKS_MESSAGE,
            )

        vectors = self._stage(
            4,
            "embed",
            counts,
            log,
            lambda: self._embed(chunks),
        )
        dimension = vectors[0].dimension

        self._stage(
            5,
            "ensure-collection",
            counts,
            log,
            lambda: self.gateway.ensure_collection(
                settings.collection_name,
                dimension,
            ),
        )

        report = self._stage(
            6,
            "upsert",
            counts,
            log,
            lambda: self._upsert(vectors),
        )
        counts.vectors = report.persisted

        if report.persisted < report.requested:
            missing = report.requested - report.persisted
            return self._result(
                job_id,
                start_time,
                counts,
                SyncStatus.PARTIAL_SUCCESS,
                (
                    f"Stored {report.persisted} of {report.requested} vectors; "
                    f"{missing} failed"
                ),
            )

        if settings.skip_unchanged and self.ledger is not None:
            try:
                self.ledger.record(documents)
            except LedgerError as exc:
                log.warning(
                    "sync-ledger-write-failed",
                    path=str(self.ledger.path),
                    error=str(exc),
                )

        return self._result(job_id, start_time, counts, SyncStatus.SUCCESS)

    def _stage(
        self,
        step: int,
        stage: str,
        counts: StageCounts,
        log: Logger,
        action: Callable[[], T],
    ) -> T:
        started = time.perf_counter()
        try:
            value = action()
        except SyncStageError:
            raise
        except Exception as exc:
            log.error(
                "sync-stage-failed",
                stage=stage,
                step=step,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            raise SyncStageError(
                stage=stage,
                step=step,
                message=str(exc),
                counts=counts.snapshot(),
            ) from exc
        size = len(value) if isinstance(value, list) else None
        log.info(
            "sync-stage-complete",
            stage=stage,
            step=step,
            count=size,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
        )
        return value

    def _fetch_documents(
        self,
        repositories: Sequence[RepositoryInfo],
        log: Logger,
    ) -> list[DocumentContent]:
        def _fetch(repository: RepositoryInfo) -> list[DocumentContent]:
            try:
                return list(
                    self.source.get_documents(repository.owner, repository.repo)
                )
            except Exception as exc:
                log.warning(
                    "sync-fetch-failed",
                    repository=repository.full_name,
                    error=str(exc),
                    error_type=exc.__class__.__name__,
                )
                return []

        workers = max(1, min(self.settings.fetch_concurrency, len(repositories)))
        if workers == 1:
            batches = [_fetch(repository) for repository in repositories]
        else:
            with ThreadPoolExecutor(
                max_workers=workers,
                thread_name_prefix="reposync-fetch",
            ) as executor:
                futures = [
                    executor.submit(
                        contextvars.copy_context().run, _fetch, repository
                    )
                    for repository in repositories
                ]
                batches = [future.result() for future in futures]

        return [document for batch in batches for document in batch]

    def _embed(self, chunks: Sequence[TextChunk]) -> list[EmbeddingVector]:
        vectors = self.batcher.embed_all(chunks)
        if len(vectors) != len(chunks):
            raise RuntimeError(
                f"Embedding returned {len(vectors)} vectors for "
                f"{len(chunks)} chunks"
            )
        observed = vectors[0].dimension
        expected = self.settings.vector_dimension
        if observed != expected:
            raise EmbeddingDimensionError(
                (
                    f"Embedding dimension {observed} does not match the "
                    f"configured vector dimension {expected}"
                ),
                expected=expected,
                actual=observed,
            )
        return vectors

    def _upsert(self, vectors: Sequence[EmbeddingVector]) -> UpsertReport:
        report = self.gateway.upsert(self.settings.collection_name, vectors)
        if report.valid and not report.persisted:
            raise VectorStoreError(
                f"No vectors persisted to {report.collection!r}; "
                f"{report.failed_batches} of {report.total_batches} "
                "batches failed"
            )
        return report

    def _result(
        self,
        job_id: str,
        start_time: datetime,
        counts: StageCounts,
        status: SyncStatus,
        message: str | None = None,
    ) -> SyncJobResult:
        return SyncJobResult(
            job_id=job_id,
            start_time=start_time,
            end_time=self.now(),
            repositories_processed=counts.repositories,
            documents_processed=counts.documents,
            chunks_created=counts.chunks,
            vectors_stored=counts.vectors,
            status=status,
            error_message=message,
        )
