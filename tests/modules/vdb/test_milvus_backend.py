from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest
from structlog import get_logger

pytest.importorskip("pymilvus")

from pymilvus import DataType, MilvusException  # noqa: E402

from reposync.modules.vdb.backends import BackendInitContext, VectorRecord  # noqa: E402
from reposync.modules.vdb.backends.milvus import (  # noqa: E402
    MilvusVectorBackend,
    milvus_backend_factory,
)
from reposync.modules.vdb.errors import VectorBackendError  # noqa: E402


class _FakeSchema:
    def __init__(self) -> None:
        self.fields: list[dict[str, Any]] = []

    def add_field(self, **kwargs: Any) -> None:
        self.fields.append(kwargs)


class _FakeIndexParams:
    def __init__(self) -> None:
        self.indexes: list[dict[str, Any]] = []

    def add_index(self, **kwargs: Any) -> None:
        self.indexes.append(kwargs)


class _FakeMilvusClient:
    """Records calls made through the MilvusClient surface."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        self.fail_with: Exception | None = None

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    def has_collection(self, *, collection_name: str) -> bool:
        self._record("has_collection")
        return collection_name in self.collections

    def create_schema(self, **kwargs: Any) -> _FakeSchema:
        return _FakeSchema()

    def create_collection(self, *, collection_name: str, schema: _FakeSchema) -> None:
        self._record("create_collection")
        self.collections[collection_name] = {"schema": schema, "rows": {}}

    def prepare_index_params(self) -> _FakeIndexParams:
        return _FakeIndexParams()

    def create_index(self, *, collection_name: str, index_params: _FakeIndexParams) -> None:
        self._record("create_index")
        self.collections[collection_name]["index"] = index_params

    def load_collection(self, *, collection_name: str) -> None:
        self._record("load_collection")

    def upsert(self, *, collection_name: str, data: list[dict[str, Any]]) -> dict[str, int]:
        self._record("upsert")
        rows = self.collections[collection_name]["rows"]
        for row in data:
            rows[row["id"]] = row
        return {"upsert_count": len(data)}

    def drop_collection(self, *, collection_name: str) -> None:
        self._record("drop_collection")
        self.collections.pop(collection_name, None)

    def get_collection_stats(self, *, collection_name: str) -> dict[str, int]:
        return {"row_count": len(self.collections[collection_name]["rows"])}


@pytest.fixture
def client() -> _FakeMilvusClient:
    return _FakeMilvusClient()


@pytest.fixture
def backend(client: _FakeMilvusClient) -> MilvusVectorBackend:
    return MilvusVectorBackend(
        logger=get_logger("test.milvus"),
        client=client,  # type: ignore[arg-type]
    )


def test_create_collection_uses_three_field_schema(backend, client) -> None:
    backend.create_collection("repo_docs", 1536)

    schema = client.collections["repo_docs"]["schema"]
    fields = {field["field_name"]: field for field in schema.fields}
    assert fields["id"]["datatype"] == DataType.VARCHAR
    assert fields["id"]["is_primary"] is True
    assert fields["id"]["max_length"] == 512
    assert fields["vector"]["datatype"] == DataType.FLOAT_VECTOR
    assert fields["vector"]["dim"] == 1536
    assert fields["metadata"]["datatype"] == DataType.JSON


def test_create_index_uses_cosine_autoindex(backend, client) -> None:
    backend.create_collection("repo_docs", 4)
    backend.create_index("repo_docs")

    (index,) = client.collections["repo_docs"]["index"].indexes
    assert index["field_name"] == "vector"
    assert index["index_type"] == "AUTOINDEX"
    assert index["metric_type"] == "COSINE"


def test_upsert_and_count(backend, client) -> None:
    backend.create_collection("repo_docs", 2)
    records = [
        VectorRecord(id="a_0", vector=(0.1, 0.2), metadata={"file_name": "README.md"}),
        VectorRecord(id="a_1", vector=(0.3, 0.4)),
    ]

    assert backend.upsert("repo_docs", records) == 2
    assert backend.upsert("repo_docs", records[:1]) == 1
    assert backend.count("repo_docs") == 2
    assert client.collections["repo_docs"]["rows"]["a_0"]["metadata"] == {
        "file_name": "README.md"
    }
    assert backend.upsert("repo_docs", []) == 0


def test_milvus_errors_are_wrapped(backend, client) -> None:
    client.fail_with = MilvusException(code=65535, message="index already exists")

    with pytest.raises(VectorBackendError) as exc_info:
        backend.create_index("repo_docs")

    error = exc_info.value
    assert error.backend == "milvus"
    assert error.collection == "repo_docs"
    assert error.already_done
    assert "create_index" in str(error)


def test_invalid_dimension_is_rejected(backend, client) -> None:
    with pytest.raises(VectorBackendError):
        backend.create_collection("repo_docs", 0)
    assert client.calls == []


def test_factory_reads_uri_timeout_and_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MILVUS_TOKEN", "root:Milvus")
    context = BackendInitContext(
        logger=get_logger("test.milvus"),
        config={"uri": "http://milvus:19530", "timeout": 30},
    )

    backend = milvus_backend_factory(context)

    assert backend.uri == "http://milvus:19530"
    assert backend.timeout == 30.0
    assert backend._token == "root:Milvus"
    assert backend._client is None


def test_client_connects_lazily(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[dict[str, Any]] = []

    def _client(**kwargs: Any) -> SimpleNamespace:
        created.append(kwargs)
        return SimpleNamespace(has_collection=lambda *, collection_name: False)

    monkeypatch.setattr(
        "reposync.modules.vdb.backends.milvus.MilvusClient",
        _client,
    )
    backend = MilvusVectorBackend(logger=get_logger("test.milvus"), uri="http://m:19530")

    assert created == []
    assert backend.has_collection("repo_docs") is False
    assert created == [{"uri": "http://m:19530", "token": "", "timeout": 120.0}]
