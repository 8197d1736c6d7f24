"""Vector store backends and the collection gateway."""

from __future__ import annotations

from .backends import (
    BackendRegistry,
    VectorRecord,
    VectorStoreBackend,
    create_default_backend_registry,
)
from .errors import CollectionProvisionError, VectorBackendError
from .gateway import (
    CollectionState,
    GatewaySettings,
    UpsertReport,
    VectorStoreGateway,
)

__all__ = [
    "BackendRegistry",
    "CollectionProvisionError",
    "CollectionState",
    "GatewaySettings",
    "UpsertReport",
    "VectorBackendError",
    "VectorRecord",
    "VectorStoreBackend",
    "VectorStoreGateway",
    "create_default_backend_registry",
]
