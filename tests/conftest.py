"""Shared pytest fixtures and in-memory collaborators for sync tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Mapping, Sequence

import pytest

from reposync.core.paths import WorkspacePaths, resolve_workspace
from reposync.modules.embedding.providers import (
    EmbeddingMatrix,
    EmbeddingProviderCaps,
    EmbeddingProviderModel,
    EmbedRequestOptions,
)
from reposync.modules.vdb.backends import VectorRecord
from reposync.modules.vdb.errors import VectorBackendError
from reposync.sync.models import DocumentContent, FileType, RepositoryInfo


class StubProvider:
    """Deterministic embeddings provider recording every call."""

    provider_key = "stub"

    def __init__(self, dimension: int = 4) -> None:
        self.dimension = dimension
        self.calls: list[tuple[str, ...]] = []
        self.fail_all = False
        self.fail_batches = False
        self.fail_texts: set[str] = set()

    def describe_model(self, model: str) -> EmbeddingProviderModel:
        return EmbeddingProviderModel(
            provider=self.provider_key,
            name=model,
            dim=self.dimension,
        )

    def capabilities(self, *, model: str | None = None) -> EmbeddingProviderCaps:
        return EmbeddingProviderCaps(max_batch_size=64, max_parallel_requests=1)

    def embed_texts(
        self,
        texts: Sequence[str],
        *,
        model: str,
        options: EmbedRequestOptions,
    ) -> EmbeddingMatrix:
        self.calls.append(tuple(texts))
        if self.fail_all:
            raise RuntimeError("embedding backend unavailable")
        if self.fail_batches and len(texts) > 1:
            raise RuntimeError("batch rejected")
        for text in texts:
            if text in self.fail_texts:
                raise RuntimeError(f"cannot embed {text[:10]!r}")
        return tuple(self.vector_for(text) for text in texts)

    def vector_for(self, text: str) -> tuple[float, ...]:
        seed = float(len(text) % 97 + 1)
        return tuple(seed + index for index in range(self.dimension))


class InMemoryBackend:
    """Vector backend keeping collections in dictionaries."""

    name = "memory"

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, object]] = {}
        self.calls: list[tuple[str, str]] = []
        self.upsert_failures = 0
        self.fail_upsert_ids: set[str] = set()
        self.index_failures = 0
        self.load_failures = 0
        self.create_error: VectorBackendError | None = None

    def has_collection(self, name: str) -> bool:
        self.calls.append(("has_collection", name))
        return name in self.collections

    def create_collection(self, name: str, dimension: int) -> None:
        self.calls.append(("create_collection", name))
        if self.create_error is not None:
            raise self.create_error
        if name in self.collections:
            raise VectorBackendError(
                f"collection {name} already exists",
                backend=self.name,
                collection=name,
            )
        self.collections[name] = {
            "dimension": dimension,
            "rows": {},
            "indexed": False,
            "loaded": False,
        }

    def create_index(self, name: str) -> None:
        self.calls.append(("create_index", name))
        if self.index_failures:
            self.index_failures -= 1
            raise VectorBackendError("index build timed out", backend=self.name)
        self.collections[name]["indexed"] = True

    def load_collection(self, name: str) -> None:
        self.calls.append(("load_collection", name))
        if self.load_failures:
            self.load_failures -= 1
            raise VectorBackendError("load timed out", backend=self.name)
        self.collections[name]["loaded"] = True

    def upsert(self, name: str, records: Sequence[VectorRecord]) -> int:
        self.calls.append(("upsert", name))
        if self.upsert_failures:
            self.upsert_failures -= 1
            raise VectorBackendError("upsert rejected", backend=self.name)
        if any(record.id in self.fail_upsert_ids for record in records):
            raise VectorBackendError("poisoned batch", backend=self.name)
        rows = self.collections[name]["rows"]
        for record in records:
            rows[record.id] = (tuple(record.vector), dict(record.metadata))
        return len(records)

    def drop_collection(self, name: str) -> None:
        self.calls.append(("drop_collection", name))
        self.collections.pop(name, None)

    def count(self, name: str) -> int:
        return len(self.collections[name]["rows"])

    def rows(self, name: str) -> Mapping[str, tuple[tuple[float, ...], dict]]:
        return self.collections[name]["rows"]


class FakeSource:
    """Repository source serving canned repositories and documents."""

    def __init__(
        self,
        repositories: Sequence[RepositoryInfo] = (),
        documents: Mapping[str, Sequence[DocumentContent]] | None = None,
        failures: Mapping[str, Exception] | None = None,
    ) -> None:
        self.repositories = list(repositories)
        self.documents = dict(documents or {})
        self.failures = dict(failures or {})
        self.list_error: Exception | None = None
        self.list_calls: list[tuple[str, str | None]] = []
        self.fetch_calls: list[str] = []

    def list_repositories(
        self,
        org: str,
        filter_keyword: str | None = None,
    ) -> list[RepositoryInfo]:
        self.list_calls.append((org, filter_keyword))
        if self.list_error is not None:
            raise self.list_error
        if not filter_keyword:
            return list(self.repositories)
        needle = filter_keyword.lower()
        return [
            repository
            for repository in self.repositories
            if needle in repository.name.lower()
            or needle in (repository.description or "").lower()
        ]

    def get_documents(self, owner: str, repo: str) -> list[DocumentContent]:
        full_name = f"{owner}/{repo}"
        self.fetch_calls.append(full_name)
        if full_name in self.failures:
            raise self.failures[full_name]
        return list(self.documents.get(full_name, ()))


def _make_repository(full_name: str, description: str | None = None) -> RepositoryInfo:
    return RepositoryInfo(
        name=full_name.split("/", 1)[1],
        full_name=full_name,
        description=description,
    )


def _make_document(
    repository: str,
    content: str,
    *,
    file_name: str = "README.md",
    file_path: str | None = None,
    file_type: FileType = FileType.README,
    sha: str | None = "sha-1",
) -> DocumentContent:
    return DocumentContent(
        repository_name=repository,
        file_path=file_path or file_name,
        file_name=file_name,
        file_type=file_type,
        content=content,
        sha=sha,
    )


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    """Sleep replacement that returns immediately."""

    return lambda _: None


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def memory_backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def workspace_paths(tmp_path: Path) -> WorkspacePaths:
    """Provide a resolved workspace with every directory created."""

    paths = resolve_workspace(workspace_override=tmp_path / "workspace")
    for path in paths.iter_all():
        if path.suffix:
            path.parent.mkdir(parents=True, exist_ok=True)
        else:
            path.mkdir(parents=True, exist_ok=True)
    return paths


@pytest.fixture
def make_repository() -> Callable[..., RepositoryInfo]:
    """Factory building :class:`RepositoryInfo` from an ``owner/repo`` slug."""

    return _make_repository


@pytest.fixture
def make_document() -> Callable[..., DocumentContent]:
    """Factory building :class:`DocumentContent` records."""

    return _make_document


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()
