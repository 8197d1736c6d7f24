"""Repository sources feeding the sync pipeline.

A source lists repositories for an organization and returns the documentation
and API-definition files found in each one.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from reposync.sync.models import DocumentContent, RepositoryInfo

from .errors import RepositoryNotFoundError, RepositorySourceError

__all__ = [
    "RepositoryNotFoundError",
    "RepositorySource",
    "RepositorySourceError",
]


@runtime_checkable
class RepositorySource(Protocol):
    """Contract the orchestrator uses to discover and fetch documents."""

    def list_repositories(
        self,
        org: str,
        filter_keyword: str | None = None,
    ) -> Sequence[RepositoryInfo]:
        """Return repositories of ``org`` matching ``filter_keyword``."""

    def get_documents(self, owner: str, repo: str) -> Sequence[DocumentContent]:
        """Return README and API-definition documents for ``owner/repo``."""
