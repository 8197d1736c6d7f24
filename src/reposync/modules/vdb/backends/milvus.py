"""Milvus backend built on :class:`pymilvus.MilvusClient`."""

from __future__ import annotations

import os
from typing import Any, Callable, Mapping, Sequence, TypeVar

from pymilvus import DataType, MilvusClient, MilvusException

from reposync.core.logging import Logger
from reposync.modules.vdb.errors import VectorBackendError

from . import (
    ID_MAX_LENGTH,
    VECTOR_INDEX_NAME,
    BackendInitContext,
    VectorRecord,
)

__all__ = ["MilvusVectorBackend", "milvus_backend_factory"]

T = TypeVar("T")

_DEFAULT_URI = "http://localhost:19530"
_DEFAULT_TIMEOUT = 120.0


class MilvusVectorBackend:
    """Drive a Milvus collection with the id/vector/metadata schema."""

    name = "milvus"

    def __init__(
        self,
        *,
        logger: Logger,
        uri: str = _DEFAULT_URI,
        token: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        client: MilvusClient | None = None,
    ) -> None:
        self.logger = logger
        self.uri = uri
        self._token = token
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> MilvusClient:
        """Return the client, connecting on first use."""

        if self._client is None:
            self._client = self._call(
                None,
                "connect",
                lambda: MilvusClient(
                    uri=self.uri,
                    token=self._token or "",
                    timeout=self.timeout,
                ),
            )
            self.logger.info("milvus-connected", uri=self.uri)
        return self._client

    # ------------------------------------------------------------------#
    # Backend interface
    # ------------------------------------------------------------------#
    def has_collection(self, name: str) -> bool:
        return bool(
            self._call(
                name,
                "has_collection",
                lambda: self.client.has_collection(collection_name=name),
            )
        )

    def create_collection(self, name: str, dimension: int) -> None:
        if dimension < 1:
            raise VectorBackendError(
                f"Invalid vector dimension {dimension}",
                backend=self.name,
                collection=name,
            )

        def _create() -> None:
            schema = self.client.create_schema(
                auto_id=False,
                enable_dynamic_field=False,
            )
            schema.add_field(
                field_name="id",
                datatype=DataType.VARCHAR,
                is_primary=True,
                max_length=ID_MAX_LENGTH,
            )
            schema.add_field(
                field_name="vector",
                datatype=DataType.FLOAT_VECTOR,
                dim=dimension,
            )
            schema.add_field(field_name="metadata", datatype=DataType.JSON)
            self.client.create_collection(collection_name=name, schema=schema)

        self._call(name, "create_collection", _create)

    def create_index(self, name: str) -> None:
        def _index() -> None:
            index_params = self.client.prepare_index_params()
            index_params.add_index(
                field_name="vector",
                index_type="AUTOINDEX",
                metric_type="COSINE",
                index_name=VECTOR_INDEX_NAME,
            )
            self.client.create_index(
                collection_name=name,
                index_params=index_params,
            )

        self._call(name, "create_index", _index)

    def load_collection(self, name: str) -> None:
        self._call(
            name,
            "load_collection",
            lambda: self.client.load_collection(collection_name=name),
        )

    def upsert(self, name: str, records: Sequence[VectorRecord]) -> int:
        if not records:
            return 0
        rows = [record.as_row() for record in records]
        result = self._call(
            name,
            "upsert",
            lambda: self.client.upsert(collection_name=name, data=rows),
        )
        return _upsert_count(result, default=len(rows))

    def drop_collection(self, name: str) -> None:
        self._call(
            name,
            "drop_collection",
            lambda: self.client.drop_collection(collection_name=name),
        )

    def count(self, name: str) -> int:
        stats = self._call(
            name,
            "count",
            lambda: self.client.get_collection_stats(collection_name=name),
        )
        return int(stats.get("row_count", 0))

    # ------------------------------------------------------------------#
    # Internal helpers
    # ------------------------------------------------------------------#
    def _call(
        self,
        collection: str | None,
        operation: str,
        func: Callable[[], T],
    ) -> T:
        try:
            return func()
        except MilvusException as exc:
            message = getattr(exc, "message", None) or str(exc)
            raise VectorBackendError(
                f"Milvus {operation} failed: {message}",
                backend=self.name,
                collection=collection,
                code=getattr(exc, "code", None),
            ) from exc


def _upsert_count(result: Any, *, default: int) -> int:
    if isinstance(result, Mapping):
        value = result.get("upsert_count")
        if isinstance(value, int):
            return value
    return default


def milvus_backend_factory(context: BackendInitContext) -> MilvusVectorBackend:
    """Factory registered with the backend registry as ``milvus``."""

    config = context.config or {}
    timeout = config.get("timeout")
    return MilvusVectorBackend(
        logger=context.logger,
        uri=str(config.get("uri") or _DEFAULT_URI),
        token=os.environ.get("MILVUS_TOKEN") or None,
        timeout=float(timeout) if isinstance(timeout, (int, float)) else _DEFAULT_TIMEOUT,
    )
