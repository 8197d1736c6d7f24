"""Errors raised by repository sources."""

from __future__ import annotations

__all__ = ["RepositorySourceError", "RepositoryNotFoundError"]


class RepositorySourceError(RuntimeError):
    """Raised when the repository host cannot serve a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class RepositoryNotFoundError(RepositorySourceError):
    """Raised when an organization, repository or path does not exist."""
