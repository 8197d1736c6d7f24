from __future__ import annotations

from pathlib import Path

import pytest
from structlog import get_logger

pytest.importorskip("faiss")
pytest.importorskip("numpy")

from reposync.modules.vdb.backends import BackendInitContext, VectorRecord  # noqa: E402
from reposync.modules.vdb.backends.faiss import (  # noqa: E402
    FaissVectorBackend,
    faiss_backend_factory,
)
from reposync.modules.vdb.errors import VectorBackendError  # noqa: E402
from reposync.modules.vdb.gateway import GatewaySettings, VectorStoreGateway  # noqa: E402
from reposync.sync.models import EmbeddingVector  # noqa: E402


def _backend(root: Path) -> FaissVectorBackend:
    return FaissVectorBackend(root=root, logger=get_logger("test.faiss"))


def _records(count: int) -> list[VectorRecord]:
    return [
        VectorRecord(
            id=f"acme_api_README.md_{index}",
            vector=(1.0 + index, 0.5, 0.25),
            metadata={"chunk_index": str(index)},
        )
        for index in range(count)
    ]


def test_collection_lifecycle_persists_to_disk(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    assert not backend.has_collection("repo_docs")

    backend.create_collection("repo_docs", 3)
    backend.create_index("repo_docs")
    backend.load_collection("repo_docs")
    assert backend.upsert("repo_docs", _records(3)) == 3

    assert (tmp_path / "repo_docs" / "index.faiss").exists()
    assert (tmp_path / "repo_docs" / "index.faiss.meta.json").exists()

    reopened = _backend(tmp_path)
    assert reopened.has_collection("repo_docs")
    assert reopened.count("repo_docs") == 3
    assert reopened.metadata("repo_docs", "acme_api_README.md_2") == {"chunk_index": "2"}


def test_upsert_overwrites_existing_ids(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.create_collection("repo_docs", 3)
    backend.upsert("repo_docs", _records(2))

    replacement = VectorRecord(
        id="acme_api_README.md_0",
        vector=(0.0, 1.0, 0.0),
        metadata={"chunk_index": "0", "edited": "yes"},
    )
    backend.upsert("repo_docs", [replacement])

    assert backend.count("repo_docs") == 2
    assert backend.metadata("repo_docs", "acme_api_README.md_0")["edited"] == "yes"


def test_upsert_counts_repeated_ids_once(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.create_collection("repo_docs", 3)
    first, second = _records(2)
    edited = VectorRecord(
        id=first.id,
        vector=(0.0, 0.0, 1.0),
        metadata={"chunk_index": "0", "edited": "yes"},
    )

    written = backend.upsert("repo_docs", [first, second, edited])

    assert written == 2
    assert backend.count("repo_docs") == written
    assert backend.metadata("repo_docs", first.id)["edited"] == "yes"


def test_repeated_steps_report_already_done(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.create_collection("repo_docs", 3)
    backend.create_index("repo_docs")
    backend.load_collection("repo_docs")

    for step in (
        lambda: backend.create_collection("repo_docs", 3),
        lambda: backend.create_index("repo_docs"),
        lambda: backend.load_collection("repo_docs"),
    ):
        with pytest.raises(VectorBackendError) as exc_info:
            step()
        assert exc_info.value.already_done


def test_dimension_mismatch_and_bad_names_fail(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.create_collection("repo_docs", 3)

    with pytest.raises(VectorBackendError):
        backend.upsert("repo_docs", [VectorRecord(id="x", vector=(1.0, 2.0))])
    with pytest.raises(VectorBackendError):
        backend.create_collection("../escape", 3)
    with pytest.raises(VectorBackendError):
        backend.create_collection("other", 0)


def test_tampered_index_fails_checksum(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.create_collection("repo_docs", 3)
    backend.upsert("repo_docs", _records(1))

    index_path = tmp_path / "repo_docs" / "index.faiss"
    index_path.write_bytes(index_path.read_bytes() + b"\x00")

    with pytest.raises(VectorBackendError, match="Checksum mismatch"):
        _backend(tmp_path).count("repo_docs")


def test_drop_collection_removes_directory(tmp_path: Path) -> None:
    backend = _backend(tmp_path)
    backend.create_collection("repo_docs", 3)

    backend.drop_collection("repo_docs")

    assert not (tmp_path / "repo_docs").exists()
    with pytest.raises(VectorBackendError):
        backend.drop_collection("repo_docs")


def test_gateway_drives_faiss_backend(tmp_path: Path) -> None:
    gateway = VectorStoreGateway(
        backend=_backend(tmp_path),
        settings=GatewaySettings(retry_delay=0.0, load_retry_delay=0.0, batch_delay=0.0),
        sleep=lambda _: None,
    )
    vectors = [
        EmbeddingVector(id=f"doc_{index}", vector=(1.0, float(index), 0.0))
        for index in range(3)
    ]

    gateway.ensure_collection("repo_docs", 3)
    report = gateway.upsert("repo_docs", vectors)

    assert report.persisted == 3
    assert gateway.count("repo_docs") == 3


def test_factory_requires_root(tmp_path: Path) -> None:
    logger = get_logger("test.faiss")

    backend = faiss_backend_factory(
        BackendInitContext(logger=logger, config={"root": str(tmp_path)})
    )
    assert backend.root == tmp_path

    with pytest.raises(ValueError):
        faiss_backend_factory(BackendInitContext(logger=logger))
