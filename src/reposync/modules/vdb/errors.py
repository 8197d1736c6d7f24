"""Typed error hierarchy for vector store backends and the gateway."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "CollectionProvisionError",
    "VectorBackendError",
    "VectorStoreError",
    "is_already_done",
]

_ALREADY_MARKERS = ("already exist", "already loaded", "load state: loaded")


def is_already_done(message: str) -> bool:
    """Return ``True`` when a backend message reports an idempotent no-op.

    Example:
        >>> is_already_done("index already exists for field vector")
        True
        >>> is_already_done("collection not found")
        False
    """

    lowered = message.lower()
    return any(marker in lowered for marker in _ALREADY_MARKERS)


@dataclass(slots=True)
class VectorBackendError(RuntimeError):
    """Raised by backends when a storage call fails."""

    message: str
    backend: str
    collection: str | None = None
    code: int | None = None

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)

    @property
    def already_done(self) -> bool:
        return is_already_done(self.message)


class VectorStoreError(RuntimeError):
    """Base error raised by the vector store gateway."""


class CollectionProvisionError(VectorStoreError):
    """Raised when a collection cannot be created."""

    def __init__(self, collection: str, message: str) -> None:
        super().__init__(f"Failed to provision collection {collection!r}: {message}")
        self.collection = collection
