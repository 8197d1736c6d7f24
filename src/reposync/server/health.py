"""Collaborator health probes exposed by ``GET /api/health``."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Sequence

from pydantic import BaseModel, Field

from reposync.core.logging import Logger, get_logger
from reposync.modules.embedding.providers import EmbeddingsProvider
from reposync.modules.vdb.gateway import VectorStoreGateway

__all__ = [
    "HealthProbe",
    "ServiceHealth",
    "build_health_probes",
    "probe_embedding",
    "probe_source",
    "probe_vector_store",
    "run_probes",
]

STATUS_UP = "UP"
STATUS_DOWN = "DOWN"
STATUS_ERROR = "ERROR"


class ServiceHealth(BaseModel):
    """Result of probing one collaborator."""

    service_name: str = Field(description="Collaborator being probed.")
    healthy: bool = Field(description="Whether the probe succeeded.")
    status: str = Field(description="``UP``, ``DOWN`` or ``ERROR``.")
    response_time_ms: int = Field(
        default=0,
        ge=0,
        description="Wall time spent in the probe.",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


HealthProbe = Callable[[], ServiceHealth]
"""Zero-argument callable returning a :class:`ServiceHealth`."""


def _timed(
    service_name: str,
    check: Callable[[], Mapping[str, Any]],
    *,
    logger: Logger,
) -> ServiceHealth:
    started = time.perf_counter()
    try:
        details = dict(check())
    except Exception as exc:
        elapsed = int((time.perf_counter() - started) * 1000)
        logger.warning(
            "health-probe-failed",
            service=service_name,
            error=str(exc),
            error_type=exc.__class__.__name__,
        )
        return ServiceHealth(
            service_name=service_name,
            healthy=False,
            status=STATUS_ERROR,
            response_time_ms=elapsed,
            details={"error": str(exc)},
        )
    elapsed = int((time.perf_counter() - started) * 1000)
    healthy = bool(details.pop("healthy", True))
    return ServiceHealth(
        service_name=service_name,
        healthy=healthy,
        status=STATUS_UP if healthy else STATUS_DOWN,
        response_time_ms=elapsed,
        details=details,
    )


def probe_source(source: object, *, logger: Logger | None = None) -> HealthProbe:
    """Probe repository source reachability through its ``ping`` method."""

    log = logger or get_logger(__name__)

    def _check() -> Mapping[str, Any]:
        ping = getattr(source, "ping", None)
        if not callable(ping):
            return {"reachable": None}
        ping()
        return {"reachable": True}

    return lambda: _timed("github", _check, logger=log)


def probe_vector_store(
    gateway: VectorStoreGateway,
    collection: str,
    *,
    logger: Logger | None = None,
) -> HealthProbe:
    """Probe the backend and report whether ``collection`` exists."""

    log = logger or get_logger(__name__)

    def _check() -> Mapping[str, Any]:
        exists = bool(gateway.backend.has_collection(collection))
        return {
            "backend": getattr(gateway.backend, "name", "unknown"),
            "collection": collection,
            "exists": exists,
            "state": gateway.state(collection).value,
        }

    return lambda: _timed("vector-store", _check, logger=log)


def probe_embedding(
    provider: EmbeddingsProvider,
    model: str,
    *,
    logger: Logger | None = None,
) -> HealthProbe:
    """Report the embedding provider and model configuration."""

    log = logger or get_logger(__name__)

    def _check() -> Mapping[str, Any]:
        described = provider.describe_model(model)
        return {
            "provider": described.provider,
            "model": described.name,
            "dimension": described.dim,
        }

    return lambda: _timed("embedding", _check, logger=log)


def build_health_probes(
    *,
    source: object,
    gateway: VectorStoreGateway,
    collection: str,
    provider: EmbeddingsProvider,
    model: str,
) -> list[HealthProbe]:
    return [
        probe_source(source),
        probe_vector_store(gateway, collection),
        probe_embedding(provider, model),
    ]


def run_probes(probes: Iterable[HealthProbe]) -> list[ServiceHealth]:
    return [probe() for probe in probes]
