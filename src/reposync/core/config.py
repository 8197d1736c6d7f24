"""Configuration models and loaders for :mod:`reposync`."""

from __future__ import annotations

import os
from collections.abc import Mapping as MappingABC
from enum import StrEnum
from pathlib import Path
from typing import Any, Mapping

import tomllib
import tomlkit
from pydantic import BaseModel, Field, field_validator, model_validator

from reposync.resources import get_resource

DEFAULTS_RESOURCE_NAME = "reposync.defaults.toml"

_DEFAULT_README_PATTERNS: tuple[str, ...] = (
    "README.md",
    "README.MD",
    "readme.md",
    "Readme.md",
    "README",
    "README.txt",
)
_DEFAULT_API_PATTERNS: tuple[str, ...] = (
    "openapi.yaml",
    "openapi.yml",
    "swagger.yaml",
    "swagger.yml",
    "openapi.json",
    "swagger.json",
    "api.yaml",
    "api.yml",
)
_DEFAULT_SCAN_DIRECTORIES: tuple[str, ...] = ("docs", "api")

# Environment variable -> dotted config key.
_ENV_KEYS: Mapping[str, str] = {
    "REPOSYNC_LOG_LEVEL": "log_level",
    "REPOSYNC_ORGANIZATION": "github.organization",
    "REPOSYNC_FILTER_KEYWORD": "github.filter_keyword",
    "REPOSYNC_COLLECTION": "vector_store.collection_name",
    "REPOSYNC_VECTOR_BACKEND": "vector_store.backend",
    "REPOSYNC_MILVUS_URI": "vector_store.uri",
    "REPOSYNC_EMBEDDING_PROVIDER": "embedding.provider",
    "REPOSYNC_EMBEDDING_MODEL": "embedding.model",
}


class GitHubSettings(BaseModel):
    """Repository discovery and document fetch settings."""

    organization: str = Field(
        default="",
        description="Organization whose repositories are synchronized.",
    )
    filter_keyword: str | None = Field(
        default=None,
        description=(
            "Optional case-insensitive keyword matched against repository "
            "names and descriptions."
        ),
    )
    api_base_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the GitHub REST API.",
    )
    timeout: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds allowed for each GitHub request.",
    )
    fetch_concurrency: int = Field(
        default=4,
        ge=1,
        description="Repositories fetched in parallel during a sync.",
    )
    readme_patterns: tuple[str, ...] = Field(
        default=_DEFAULT_README_PATTERNS,
        description="README file names probed in order; every match is collected.",
    )
    api_patterns: tuple[str, ...] = Field(
        default=_DEFAULT_API_PATTERNS,
        description="Root-level API definition file names to collect.",
    )
    scan_directories: tuple[str, ...] = Field(
        default=_DEFAULT_SCAN_DIRECTORIES,
        description="Directories scanned for additional API definitions.",
    )

    model_config = {"frozen": True, "str_strip_whitespace": True}

    @field_validator("filter_keyword")
    @classmethod
    def _blank_keyword_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class ChunkingSettings(BaseModel):
    """Chunker sizing."""

    chunk_size: int = Field(
        default=1000,
        ge=1,
        description="Soft upper bound on characters per chunk.",
    )
    overlap: int = Field(
        default=200,
        ge=0,
        description="Trailing characters repeated at the next chunk start.",
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingSettings":
        if self.overlap >= self.chunk_size:
            raise ValueError("chunking.overlap must be smaller than chunk_size")
        return self


class EmbeddingSettings(BaseModel):
    """Embedding provider selection and batching."""

    provider: str = Field(
        default="openai",
        description="Registered embedding provider key.",
    )
    model: str = Field(
        default="text-embedding-3-small",
        description="Model (or Azure deployment) name used for embeddings.",
    )
    batch_size: int = Field(
        default=16,
        ge=1,
        description="Chunks sent to the provider per embedding call.",
    )
    batch_delay: float = Field(
        default=0.1,
        ge=0.0,
        description="Pause in seconds between embedding batches.",
    )
    timeout: float = Field(
        default=120.0,
        gt=0.0,
        description="Seconds allowed for each embedding request.",
    )
    azure_endpoint: str | None = Field(
        default=None,
        description="Azure OpenAI endpoint for the azure-openai provider.",
    )
    api_version: str | None = Field(
        default=None,
        description="Azure OpenAI API version for the azure-openai provider.",
    )

    model_config = {"frozen": True, "str_strip_whitespace": True}

    @field_validator("provider")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("embedding.provider cannot be blank")
        return normalized

    def provider_config(self) -> dict[str, object]:
        """Return the mapping handed to provider factories."""

        payload: dict[str, object] = {"timeout": self.timeout}
        if self.azure_endpoint:
            payload["azure_endpoint"] = self.azure_endpoint
        if self.api_version:
            payload["api_version"] = self.api_version
        return payload


class VectorBackendKind(StrEnum):
    """Supported vector store backends."""

    MILVUS = "milvus"
    FAISS = "faiss"


class VectorStoreSettings(BaseModel):
    """Vector store collection and write-path settings."""

    backend: VectorBackendKind = Field(
        default=VectorBackendKind.MILVUS,
        description="Vector store backend used for collections.",
    )
    collection_name: str = Field(
        default="repo_docs",
        description="Collection receiving document vectors.",
    )
    vector_dimension: int = Field(
        default=1536,
        ge=1,
        description="Dimension every stored vector must have.",
    )
    uri: str = Field(
        default="http://localhost:19530",
        description="Milvus server URI.",
    )
    timeout: float = Field(
        default=120.0,
        gt=0.0,
        description="Seconds allowed for each vector store call.",
    )
    upsert_batch_size: int = Field(
        default=50,
        ge=1,
        description="Vectors written per upsert sub-batch.",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts for index, load and upsert operations.",
    )
    retry_delay: float = Field(
        default=2.0,
        ge=0.0,
        description="Base delay multiplied by the attempt number.",
    )
    load_retry_delay: float = Field(
        default=5.0,
        ge=0.0,
        description="Base delay for collection load retries.",
    )
    batch_delay: float = Field(
        default=0.2,
        ge=0.0,
        description="Pause in seconds between upsert sub-batches.",
    )

    model_config = {"frozen": True, "str_strip_whitespace": True}

    @field_validator("collection_name")
    @classmethod
    def _require_collection(cls, value: str) -> str:
        if not value:
            raise ValueError("vector_store.collection_name cannot be blank")
        return value


class WorkflowSettings(BaseModel):
    """Top-level workflow retry and run policy."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for a whole sync run before falling back.",
    )
    backoff: tuple[float, ...] = Field(
        default=(2.0, 4.0),
        description=(
            "Seconds to wait before each retry; the last value repeats "
            "when there are more retries than entries."
        ),
    )
    single_flight: bool = Field(
        default=True,
        description="Collapse overlapping runs into the in-flight one.",
    )
    skip_unchanged: bool = Field(
        default=False,
        description="Skip documents whose sha matches the last synced sha.",
    )

    model_config = {"frozen": True}

    @field_validator("backoff")
    @classmethod
    def _check_backoff(cls, value: tuple[float, ...]) -> tuple[float, ...]:
        if any(delay < 0 for delay in value):
            raise ValueError("workflow.backoff values must be >= 0")
        return value


class SchedulerSettings(BaseModel):
    """Cron and startup trigger settings."""

    enabled: bool = Field(
        default=True,
        description="Whether the cron trigger is registered.",
    )
    cron: str = Field(
        default="0 8 * * *",
        description="Five-field crontab expression for scheduled syncs.",
    )
    timezone: str = Field(
        default="UTC",
        description="Timezone the cron expression is evaluated in.",
    )
    run_on_startup: bool = Field(
        default=True,
        description="Run one sync shortly after the service starts.",
    )
    startup_delay: float = Field(
        default=5.0,
        ge=0.0,
        description="Settle delay in seconds before the startup sync.",
    )

    model_config = {"frozen": True, "str_strip_whitespace": True}

    @field_validator("cron")
    @classmethod
    def _check_cron(cls, value: str) -> str:
        if len(value.split()) != 5:
            raise ValueError(
                "scheduler.cron must have five fields "
                "(minute hour day month weekday)"
            )
        return value


class ServerSettings(BaseModel):
    """HTTP trigger server binding."""

    host: str = Field(default="127.0.0.1", description="Bind address.")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port.")

    model_config = {"frozen": True, "str_strip_whitespace": True}


class SyncSettings(BaseModel):
    """Immutable settings handed to the sync orchestrator."""

    organization: str
    filter_keyword: str | None = None
    collection_name: str
    vector_dimension: int = Field(ge=1)
    chunk_size: int = Field(ge=1)
    overlap: int = Field(ge=0)
    fetch_concurrency: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=1, ge=1)
    backoff: tuple[float, ...] = ()
    single_flight: bool = True
    skip_unchanged: bool = False

    model_config = {"frozen": True}


class AppConfig(BaseModel):
    """Root configuration for the :mod:`reposync` application."""

    workspace: Path = Field(
        default_factory=lambda: Path("~/.reposync").expanduser(),
        description="Absolute path to the workspace root.",
    )
    log_level: str = Field(
        default="INFO",
        description="Default logging level for the application runtime.",
    )
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    vector_store: VectorStoreSettings = Field(
        default_factory=VectorStoreSettings
    )
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
    }

    @model_validator(mode="after")
    def _post_process(self) -> "AppConfig":
        """Normalize fields after validation."""

        object.__setattr__(self, "log_level", self.log_level.upper())
        object.__setattr__(self, "workspace", self.workspace.expanduser())
        return self

    def sync_settings(self) -> SyncSettings:
        """Project the orchestrator-facing settings out of the config."""

        return SyncSettings(
            organization=self.github.organization,
            filter_keyword=self.github.filter_keyword,
            collection_name=self.vector_store.collection_name,
            vector_dimension=self.vector_store.vector_dimension,
            chunk_size=self.chunking.chunk_size,
            overlap=self.chunking.overlap,
            fetch_concurrency=self.github.fetch_concurrency,
            max_attempts=self.workflow.max_attempts,
            backoff=self.workflow.backoff,
            single_flight=self.workflow.single_flight,
            skip_unchanged=self.workflow.skip_unchanged,
        )


def read_packaged_defaults_text() -> str:
    """Return the raw packaged defaults TOML content.

    Example:
        >>> text = read_packaged_defaults_text()
        >>> text.startswith("#")
        True
    """

    resource = get_resource(DEFAULTS_RESOURCE_NAME)
    return resource.read_text(encoding="utf-8")


def load_packaged_defaults() -> dict[str, Any]:
    """Load the packaged defaults as a plain dictionary.

    Example:
        >>> defaults = load_packaged_defaults()
        >>> defaults["log_level"]
        'INFO'
    """

    return tomllib.loads(read_packaged_defaults_text())


def load_user_config(path: Path) -> dict[str, Any]:
    """Parse ``path`` as TOML, returning an empty mapping when absent."""

    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Translate ``REPOSYNC_*`` environment variables into a config layer.

    Example:
        >>> env_overrides({"REPOSYNC_ORGANIZATION": "acme"})
        {'github': {'organization': 'acme'}}
    """

    source = os.environ if environ is None else environ
    layer: dict[str, Any] = {}
    for variable, dotted in _ENV_KEYS.items():
        value = source.get(variable)
        if value is None or not value.strip():
            continue
        target = layer
        *parents, leaf = dotted.split(".")
        for parent in parents:
            target = target.setdefault(parent, {})
        target[leaf] = value.strip()
    return layer


def _deep_merge(
    base: Mapping[str, Any],
    overlay: Mapping[str, Any],
) -> dict[str, Any]:
    """Recursively merge ``overlay`` into ``base`` returning a new dict."""

    merged: dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if (
            key in merged
            and isinstance(merged[key], MappingABC)
            and isinstance(value, MappingABC)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    *,
    defaults: Mapping[str, Any],
    user_config: Mapping[str, Any] | None = None,
    env_config: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Load configuration according to the precedence stack.

    Args:
        defaults: Packaged defaults shipped with the application.
        user_config: Parsed user ``reposync.toml`` content.
        env_config: Settings derived from environment variables.
        cli_overrides: Settings supplied via CLI flags.

    Returns:
        A validated :class:`AppConfig` instance.

    Raises:
        pydantic.ValidationError: If the merged layers are invalid.
    """

    stack = dict(defaults)
    for layer in (user_config, env_config, cli_overrides):
        if layer:
            stack = _deep_merge(stack, layer)
    return AppConfig(**stack)


def _table(values: Mapping[str, Any]) -> tomlkit.items.Table:
    table = tomlkit.table()
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, tuple):
            value = list(value)
        table[key] = value
    return table


def render_user_config(
    config: AppConfig,
    *,
    include_defaults: bool = True,
) -> str:
    """Render a ``reposync.toml`` template for users to customize.

    Args:
        config: Configuration instance to serialize.
        include_defaults: Whether to prepend the precedence commentary.

    Returns:
        A TOML-formatted string ready to persist for the user.
    """

    document = tomlkit.document()

    if include_defaults:
        document.add(tomlkit.comment("Generated by reposync init"))
        document.add(
            tomlkit.comment(
                "Precedence: CLI flags > env vars > reposync.toml > defaults"
            )
        )
        document.add(tomlkit.comment("Environment overrides:"))
        for variable in ("REPOSYNC_WORKSPACE", *_ENV_KEYS):
            document.add(tomlkit.comment(f"  {variable}"))
        document.add(
            tomlkit.comment(
                "Secrets (env only): GITHUB_TOKEN, MILVUS_TOKEN, "
                "OPENAI_API_KEY, AZURE_OPENAI_API_KEY"
            )
        )
        document.add(tomlkit.nl())

    document["workspace"] = str(config.workspace)
    document["log_level"] = config.log_level

    for section in (
        "github",
        "chunking",
        "embedding",
        "vector_store",
        "workflow",
        "scheduler",
        "server",
    ):
        model: BaseModel = getattr(config, section)
        document[section] = _table(model.model_dump(mode="json"))

    return tomlkit.dumps(document)


__all__ = [
    "AppConfig",
    "ChunkingSettings",
    "DEFAULTS_RESOURCE_NAME",
    "EmbeddingSettings",
    "GitHubSettings",
    "SchedulerSettings",
    "ServerSettings",
    "SyncSettings",
    "VectorBackendKind",
    "VectorStoreSettings",
    "WorkflowSettings",
    "env_overrides",
    "load_config",
    "load_packaged_defaults",
    "load_user_config",
    "read_packaged_defaults_text",
    "render_user_config",
]
