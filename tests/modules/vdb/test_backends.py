from __future__ import annotations

import pytest
from structlog import get_logger

from reposync.modules.vdb.backends import (
    BackendInitContext,
    BackendNotRegisteredError,
    BackendRegistry,
    VectorRecord,
    create_default_backend_registry,
)


def test_vector_record_as_row() -> None:
    record = VectorRecord(
        id="acme_api_README.md_0",
        vector=(0.1, 0.2),
        metadata={"repository": "acme/api"},
    )

    assert record.as_row() == {
        "id": "acme_api_README.md_0",
        "vector": [0.1, 0.2],
        "metadata": {"repository": "acme/api"},
    }


def test_registry_creates_backend_with_frozen_config(memory_backend) -> None:
    seen: list[BackendInitContext] = []

    def _factory(context: BackendInitContext):
        seen.append(context)
        return memory_backend

    registry = BackendRegistry({"Memory": _factory})
    logger = get_logger("test.backends")

    backend = registry.create(" memory ", logger=logger, config={"root": "/tmp/x"})

    assert backend is memory_backend
    assert seen[0].logger is logger
    assert seen[0].config["root"] == "/tmp/x"
    with pytest.raises(TypeError):
        seen[0].config["root"] = "/elsewhere"  # type: ignore[index]


def test_registry_rejects_unknown_and_blank_keys() -> None:
    registry = BackendRegistry()

    with pytest.raises(BackendNotRegisteredError):
        registry.create("qdrant", logger=get_logger("test"))
    with pytest.raises(ValueError):
        registry.register("  ", lambda context: None)  # type: ignore[arg-type,return-value]


def test_default_registry_lists_builtin_backends() -> None:
    assert sorted(create_default_backend_registry().snapshot()) == ["faiss", "milvus"]
