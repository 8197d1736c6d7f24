"""GitHub REST implementation of :class:`~reposync.source.RepositorySource`."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from reposync.core.config import GitHubSettings
from reposync.core.logging import Logger, get_logger
from reposync.source.errors import RepositoryNotFoundError, RepositorySourceError
from reposync.sync.models import DocumentContent, FileType, RepositoryInfo

__all__ = ["GitHubRepositorySource", "is_api_definition_name"]

_PAGE_SIZE = 100
_API_SUFFIXES = (".yaml", ".yml", ".json")
_API_MARKERS = ("openapi", "swagger")


def is_api_definition_name(name: str) -> bool:
    """Return whether a file found in a scanned directory is collected.

    Example:
        >>> is_api_definition_name("petstore.yaml")
        True
        >>> is_api_definition_name("guide.md")
        False
    """

    lowered = name.lower()
    return lowered.endswith(_API_SUFFIXES) or any(
        marker in lowered for marker in _API_MARKERS
    )


def _matches_keyword(repository: RepositoryInfo, keyword: str | None) -> bool:
    if not keyword:
        return True
    needle = keyword.lower()
    haystacks = (repository.name, repository.description or "")
    return any(needle in value.lower() for value in haystacks)


def _decode_content(payload: Mapping[str, Any]) -> str:
    raw = payload.get("content") or ""
    encoding = payload.get("encoding") or "base64"
    if encoding != "base64":
        return str(raw)
    compact = "".join(str(raw).split())
    try:
        data = base64.b64decode(compact)
    except (binascii.Error, ValueError) as exc:
        raise RepositorySourceError(
            f"Invalid base64 content for {payload.get('path')!r}: {exc}"
        ) from exc
    return data.decode("utf-8", errors="replace")


@dataclass(slots=True)
class GitHubRepositorySource:
    """List organization repositories and fetch their documentation files."""

    settings: GitHubSettings = field(default_factory=GitHubSettings)
    token: str | None = None
    client: httpx.Client | None = None
    logger: Logger | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="github-source")
        if self.client is None:
            self.client = httpx.Client(
                base_url=self.settings.api_base_url,
                timeout=self.settings.timeout,
                follow_redirects=True,
            )
        self.client.headers.update(self._headers())

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

    def __enter__(self) -> "GitHubRepositorySource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def ping(self) -> None:
        """Raise :class:`RepositorySourceError` unless the API answers."""

        self._get("/rate_limit")

    def list_repositories(
        self,
        org: str,
        filter_keyword: str | None = None,
    ) -> list[RepositoryInfo]:
        """Return every repository of ``org`` whose name or description
        contains ``filter_keyword`` (case-insensitive).

        Raises:
            RepositorySourceError: If GitHub rejects the listing.
        """

        if not org.strip():
            raise RepositorySourceError("An organization name is required")

        repositories: list[RepositoryInfo] = []
        url: str | None = f"/orgs/{org}/repos"
        params: dict[str, Any] | None = {"per_page": _PAGE_SIZE, "type": "all"}
        pages = 0
        while url:
            response = self._get(url, params=params)
            pages += 1
            for item in response.json():
                repositories.append(self._repository(item))
            url = response.links.get("next", {}).get("url")
            params = None

        matched = [
            repository
            for repository in repositories
            if _matches_keyword(repository, filter_keyword)
        ]
        self.logger.info(
            "github-repositories-listed",
            organization=org,
            filter_keyword=filter_keyword,
            pages=pages,
            total=len(repositories),
            matched=len(matched),
        )
        return matched

    def get_documents(self, owner: str, repo: str) -> list[DocumentContent]:
        """Collect README files, root API definitions and scanned specs.

        Missing files and directories are skipped. Any other failure reading
        one file or directory is logged and skipped so the repository keeps
        the documents that did load. A scanned file whose name matches a
        document already collected for the repository is skipped so chunk ids
        stay unique per repository.
        """

        full_name = f"{owner}/{repo}"
        documents: list[DocumentContent] = []
        seen_paths: set[str] = set()
        seen_names: set[str] = set()

        def _collect(document: DocumentContent | None) -> None:
            if document is None or document.file_path in seen_paths:
                return
            if document.file_name in seen_names:
                self.logger.warning(
                    "github-document-name-collision",
                    repository=full_name,
                    file_path=document.file_path,
                    file_name=document.file_name,
                )
                return
            seen_paths.add(document.file_path)
            seen_names.add(document.file_name)
            documents.append(document)

        for pattern in self.settings.readme_patterns:
            _collect(self._fetch_file(owner, repo, pattern, FileType.README))

        for pattern in self.settings.api_patterns:
            _collect(
                self._fetch_file(owner, repo, pattern, FileType.API_DEFINITION)
            )

        for directory in self.settings.scan_directories:
            for entry in self._list_directory(owner, repo, directory):
                if entry.get("type") != "file":
                    continue
                name = str(entry.get("name", ""))
                if not is_api_definition_name(name):
                    continue
                path = str(entry.get("path") or f"{directory}/{name}")
                if path in seen_paths:
                    continue
                _collect(
                    self._fetch_file(owner, repo, path, FileType.API_DEFINITION)
                )

        self.logger.info(
            "github-documents-fetched",
            repository=full_name,
            documents=len(documents),
        )
        return documents

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            response = self.client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise RepositorySourceError(
                f"GitHub request failed for {url}: {exc}",
                url=url,
            ) from exc

        if response.status_code == 404:
            raise RepositoryNotFoundError(
                f"GitHub resource not found: {url}",
                status_code=404,
                url=url,
            )
        if response.status_code >= 400:
            detail = response.text[:200]
            raise RepositorySourceError(
                f"GitHub returned {response.status_code} for {url}: {detail}",
                status_code=response.status_code,
                url=url,
            )
        return response

    def _contents(self, owner: str, repo: str, path: str) -> Any | None:
        try:
            response = self._get(f"/repos/{owner}/{repo}/contents/{path}")
        except RepositoryNotFoundError:
            self.logger.debug(
                "github-path-missing",
                repository=f"{owner}/{repo}",
                path=path,
            )
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RepositorySourceError(
                f"GitHub returned invalid JSON for {path}: {exc}",
                url=str(response.request.url),
            ) from exc

    def _fetch_file(
        self,
        owner: str,
        repo: str,
        path: str,
        file_type: FileType,
    ) -> DocumentContent | None:
        try:
            payload = self._contents(owner, repo, path)
            if not isinstance(payload, Mapping):
                return None
            if payload.get("type", "file") != "file":
                return None
            content = _decode_content(payload)
        except RepositorySourceError as exc:
            self._skip(owner, repo, path, exc)
            return None
        resolved_path = str(payload.get("path") or path)
        return DocumentContent(
            repository_name=f"{owner}/{repo}",
            file_path=resolved_path,
            file_name=str(payload.get("name") or resolved_path.rsplit("/", 1)[-1]),
            file_type=file_type,
            content=content,
            sha=payload.get("sha"),
        )

    def _list_directory(
        self,
        owner: str,
        repo: str,
        directory: str,
    ) -> list[Mapping[str, Any]]:
        try:
            payload = self._contents(owner, repo, directory)
        except RepositorySourceError as exc:
            self._skip(owner, repo, directory, exc)
            return []
        if not isinstance(payload, list):
            return []
        return [entry for entry in payload if isinstance(entry, Mapping)]

    def _skip(
        self,
        owner: str,
        repo: str,
        path: str,
        exc: RepositorySourceError,
    ) -> None:
        self.logger.warning(
            "github-path-skipped",
            repository=f"{owner}/{repo}",
            path=path,
            status_code=exc.status_code,
            error=str(exc),
        )

    @staticmethod
    def _repository(item: Mapping[str, Any]) -> RepositoryInfo:
        return RepositoryInfo(
            name=item["name"],
            full_name=item["full_name"],
            description=item.get("description"),
            html_url=item.get("html_url"),
            default_branch=item.get("default_branch"),
            language=item.get("language"),
            stargazers_count=int(item.get("stargazers_count") or 0),
            forks_count=int(item.get("forks_count") or 0),
            updated_at=item.get("updated_at"),
        )
