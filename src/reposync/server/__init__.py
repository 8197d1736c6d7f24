"""HTTP trigger and health endpoints for the sync service."""

from __future__ import annotations

from .app import create_app
from .health import HealthProbe, ServiceHealth, build_health_probes, run_probes

__all__ = [
    "HealthProbe",
    "ServiceHealth",
    "build_health_probes",
    "create_app",
    "run_probes",
]
