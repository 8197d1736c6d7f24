"""Pipeline records exchanged between sync stages."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "DocumentContent",
    "EmbeddingVector",
    "FileType",
    "RepositoryInfo",
    "SyncJobResult",
    "SyncStatus",
    "TextChunk",
]


class FileType(StrEnum):
    """Kinds of documents collected from repositories."""

    README = "README"
    API_DEFINITION = "API_DEFINITION"


class SyncStatus(StrEnum):
    """Terminal outcome of a sync run."""

    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"


class RepositoryInfo(BaseModel):
    """Snapshot of a repository returned by discovery."""

    name: str
    full_name: str = Field(description="``owner/repo`` slug.")
    description: str | None = None
    html_url: str | None = None
    default_branch: str | None = None
    language: str | None = None
    stargazers_count: int = 0
    forks_count: int = 0
    updated_at: str | None = None

    model_config = {"frozen": True}

    @field_validator("full_name")
    @classmethod
    def _require_owner(cls, value: str) -> str:
        if value.count("/") != 1 or value.startswith("/") or value.endswith("/"):
            raise ValueError(f"full_name must look like owner/repo: {value!r}")
        return value

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.full_name.split("/", 1)[1]


class DocumentContent(BaseModel):
    """A single fetched file destined for chunking."""

    repository_name: str
    file_path: str
    file_name: str
    file_type: FileType
    content: str | None = None
    sha: str | None = None

    model_config = {"frozen": True}

    @property
    def document_key(self) -> str:
        """Return the ``repository/path`` key used for change detection."""

        return f"{self.repository_name}/{self.file_path}"


class TextChunk(BaseModel):
    """Paragraph-aligned slice of a document."""

    chunk_id: str
    content: str
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(default=0, ge=0)
    metadata: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class EmbeddingVector(BaseModel):
    """Embedded chunk ready for upsert; ``id`` equals the chunk id."""

    id: str
    vector: tuple[float, ...]
    metadata: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def dimension(self) -> int:
        return len(self.vector)


class SyncJobResult(BaseModel):
    """Outcome of one orchestration run."""

    job_id: str
    start_time: datetime
    end_time: datetime
    repositories_processed: int = 0
    documents_processed: int = 0
    chunks_created: int = 0
    vectors_stored: int = 0
    status: SyncStatus
    error_message: str | None = None

    model_config = {"frozen": True}

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def is_failed(self) -> bool:
        return self.status is SyncStatus.FAILED
