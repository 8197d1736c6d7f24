"""FastAPI application exposing the manual sync trigger and health checks."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Sequence

from fastapi import APIRouter, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from reposync.core.logging import get_logger
from reposync.sync.models import SyncJobResult
from reposync.sync.orchestrator import SyncOrchestrator
from reposync.sync.scheduler import SyncScheduler

from .health import HealthProbe, ServiceHealth, run_probes

__all__ = ["LivenessResponse", "create_app"]

_logger = get_logger(__name__, component="http")


class LivenessResponse(BaseModel):
    """Response body of ``GET /api/orchestrator/health``."""

    status: str
    message: str
    running: bool


def _orchestrator_router(orchestrator: SyncOrchestrator) -> APIRouter:
    router = APIRouter(prefix="/api/orchestrator", tags=["orchestrator"])

    @router.post("/sync", response_model=SyncJobResult)
    def trigger_sync() -> JSONResponse:
        """Run one sync; a FAILED result is returned with status 500."""

        _logger.info("sync-manual-trigger")
        result = orchestrator.execute_sync_workflow()
        status_code = 200
        if result.is_failed:
            _logger.error("sync-manual-failed", message=result.error_message)
            status_code = 500
        return JSONResponse(
            status_code=status_code,
            content=result.model_dump(mode="json"),
        )

    @router.get("/health", response_model=LivenessResponse)
    def liveness() -> LivenessResponse:
        return LivenessResponse(
            status="UP",
            message="Orchestrator service is running",
            running=orchestrator.running,
        )

    return router


def _health_router(probes: Sequence[HealthProbe]) -> APIRouter:
    router = APIRouter(prefix="/api", tags=["health"])

    @router.get("/health", response_model=list[ServiceHealth])
    def health() -> JSONResponse:
        """Probe every collaborator; any unhealthy one yields status 503."""

        records = run_probes(probes)
        healthy = all(record.healthy for record in records)
        return JSONResponse(
            status_code=200 if healthy else 503,
            content=[record.model_dump(mode="json") for record in records],
        )

    return router


def create_app(
    orchestrator: SyncOrchestrator,
    *,
    probes: Sequence[HealthProbe] = (),
    scheduler: SyncScheduler | None = None,
) -> FastAPI:
    """Create the HTTP app around ``orchestrator``.

    When ``scheduler`` is given it is started and stopped with the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if scheduler is not None:
            scheduler.start()
        _logger.info("http-started", scheduler=scheduler is not None)
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown()
            _logger.info("http-stopped")

    app = FastAPI(
        title="reposync",
        description="Repository documentation sync service",
        lifespan=lifespan,
    )
    app.include_router(_orchestrator_router(orchestrator))
    app.include_router(_health_router(tuple(probes)))
    return app
