"""Vector store backend contract and registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Callable,
    Mapping,
    Protocol,
    Sequence,
    runtime_checkable,
)

from reposync.core.logging import Logger

__all__ = [
    "BackendFactory",
    "BackendInitContext",
    "BackendNotRegisteredError",
    "BackendRegistry",
    "FaissVectorBackend",
    "MilvusVectorBackend",
    "VectorRecord",
    "VectorStoreBackend",
    "create_default_backend_registry",
    "faiss_backend_factory",
    "milvus_backend_factory",
]

VECTOR_INDEX_NAME = "vector_idx"
ID_MAX_LENGTH = 512


@dataclass(frozen=True, slots=True)
class VectorRecord:
    """Row written to a collection: primary key, vector and metadata."""

    id: str
    vector: tuple[float, ...]
    metadata: Mapping[str, str] = field(default_factory=dict)

    def as_row(self) -> dict[str, object]:
        """Return the row mapping sent to row-oriented backends."""

        return {
            "id": self.id,
            "vector": list(self.vector),
            "metadata": dict(self.metadata),
        }


@runtime_checkable
class VectorStoreBackend(Protocol):
    """Narrow contract the gateway drives.

    Every method raises :class:`~reposync.modules.vdb.errors.VectorBackendError`
    on failure. Collections hold ``id`` (string primary key), ``vector``
    (fixed dimension) and ``metadata`` (JSON) fields.
    """

    name: str

    def has_collection(self, name: str) -> bool:
        """Return whether ``name`` exists."""

    def create_collection(self, name: str, dimension: int) -> None:
        """Create ``name`` with the three-field schema."""

    def create_index(self, name: str) -> None:
        """Create the cosine vector index on ``name``."""

    def load_collection(self, name: str) -> None:
        """Load ``name`` into serving memory."""

    def upsert(self, name: str, records: Sequence[VectorRecord]) -> int:
        """Insert or overwrite ``records`` by id, returning rows written."""

    def drop_collection(self, name: str) -> None:
        """Drop ``name``."""

    def count(self, name: str) -> int:
        """Return the number of rows stored in ``name``."""


@dataclass(frozen=True, slots=True)
class BackendInitContext:
    """Construction context supplied to backend factories."""

    logger: Logger
    config: Mapping[str, object] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "config",
            MappingProxyType(dict(self.config or {})),
        )


BackendFactory = Callable[[BackendInitContext], VectorStoreBackend]
"""Factory callable responsible for instantiating backends."""


class BackendNotRegisteredError(LookupError):
    """Raised when no backend is registered under the requested key."""


class BackendRegistry:
    """Mapping of backend keys to factory callables."""

    def __init__(
        self,
        factories: Mapping[str, BackendFactory] | None = None,
    ) -> None:
        self._factories: dict[str, BackendFactory] = {}
        for key, factory in (factories or {}).items():
            self.register(key, factory)

    def register(self, key: str, factory: BackendFactory) -> None:
        normalized = key.strip().lower()
        if not normalized:
            raise ValueError("backend key cannot be empty")
        self._factories[normalized] = factory

    def create(
        self,
        key: str,
        *,
        logger: Logger,
        config: Mapping[str, object] | None = None,
    ) -> VectorStoreBackend:
        normalized = key.strip().lower()
        try:
            factory = self._factories[normalized]
        except KeyError as exc:
            raise BackendNotRegisteredError(
                f"No vector backend registered under key {normalized!r}",
            ) from exc
        return factory(BackendInitContext(logger=logger, config=config))

    def snapshot(self) -> Mapping[str, BackendFactory]:
        return MappingProxyType(dict(self._factories))


if TYPE_CHECKING:  # pragma: no cover - type checker imports only
    from .faiss import FaissVectorBackend, faiss_backend_factory
    from .milvus import MilvusVectorBackend, milvus_backend_factory


def __getattr__(name: str) -> object:
    if name in {"MilvusVectorBackend", "milvus_backend_factory"}:
        from . import milvus

        return getattr(milvus, name)
    if name in {"FaissVectorBackend", "faiss_backend_factory"}:
        from . import faiss

        return getattr(faiss, name)

    message = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(message)


def _milvus_factory(context: BackendInitContext) -> VectorStoreBackend:
    from .milvus import milvus_backend_factory

    return milvus_backend_factory(context)


def _faiss_factory(context: BackendInitContext) -> VectorStoreBackend:
    from .faiss import faiss_backend_factory

    return faiss_backend_factory(context)


def create_default_backend_registry() -> BackendRegistry:
    """Return a registry with the ``milvus`` and ``faiss`` backends.

    Backend modules import lazily so the optional FAISS extra is only
    required when that backend is selected.
    """

    return BackendRegistry({"milvus": _milvus_factory, "faiss": _faiss_factory})
