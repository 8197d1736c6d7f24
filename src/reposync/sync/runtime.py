"""Assemble the sync pipeline collaborators from an :class:`AppConfig`."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from reposync.core.config import AppConfig, VectorBackendKind
from reposync.core.logging import Logger, get_logger
from reposync.core.paths import WorkspacePaths
from reposync.modules.embedding.batcher import EmbeddingBatcher
from reposync.modules.embedding.providers import (
    EmbeddingsProvider,
    ProviderRegistry,
    create_default_provider_registry,
)
from reposync.modules.vdb.backends import (
    BackendRegistry,
    VectorStoreBackend,
    create_default_backend_registry,
)
from reposync.modules.vdb.gateway import GatewaySettings, VectorStoreGateway
from reposync.source import RepositorySource
from reposync.sync.chunker import TextChunker
from reposync.sync.ledger import ShaLedger
from reposync.sync.orchestrator import SyncOrchestrator

__all__ = [
    "SyncRuntime",
    "backend_config",
    "build_backend",
    "build_gateway",
    "build_runtime",
    "build_source",
]


@dataclass(slots=True)
class SyncRuntime:
    """Wired collaborators shared by the CLI, scheduler and HTTP app."""

    config: AppConfig
    orchestrator: SyncOrchestrator
    gateway: VectorStoreGateway
    source: RepositorySource
    provider: EmbeddingsProvider

    def close(self) -> None:
        close = getattr(self.source, "close", None)
        if callable(close):
            close()


def backend_config(config: AppConfig, paths: WorkspacePaths) -> Mapping[str, object]:
    """Return the factory config for the selected vector backend."""

    store = config.vector_store
    if store.backend is VectorBackendKind.FAISS:
        return {"root": str(paths.collections_dir)}
    return {"uri": store.uri, "timeout": store.timeout}


def build_backend(
    config: AppConfig,
    paths: WorkspacePaths,
    *,
    backends: BackendRegistry | None = None,
    logger: Logger | None = None,
) -> VectorStoreBackend:
    registry = backends or create_default_backend_registry()
    kind = config.vector_store.backend.value
    return registry.create(
        kind,
        logger=logger or get_logger(__name__, backend=kind),
        config=backend_config(config, paths),
    )


def build_gateway(
    config: AppConfig,
    paths: WorkspacePaths,
    *,
    backends: BackendRegistry | None = None,
    logger: Logger | None = None,
) -> VectorStoreGateway:
    store = config.vector_store
    backend = build_backend(config, paths, backends=backends, logger=logger)
    return VectorStoreGateway(
        backend=backend,
        settings=GatewaySettings(
            upsert_batch_size=store.upsert_batch_size,
            max_retries=store.max_retries,
            retry_delay=store.retry_delay,
            load_retry_delay=store.load_retry_delay,
            batch_delay=store.batch_delay,
        ),
    )


def build_source(config: AppConfig) -> RepositorySource:
    """Return the GitHub source, authenticated with ``GITHUB_TOKEN`` if set."""

    from reposync.source.github import GitHubRepositorySource

    return GitHubRepositorySource(
        settings=config.github,
        token=os.environ.get("GITHUB_TOKEN") or None,
    )


def build_runtime(
    config: AppConfig,
    paths: WorkspacePaths,
    *,
    providers: ProviderRegistry | None = None,
    backends: BackendRegistry | None = None,
    source: RepositorySource | None = None,
    logger: Logger | None = None,
) -> SyncRuntime:
    """Build the orchestrator and its collaborators for one process.

    Raises:
        EmbeddingProviderConfigurationError: If the provider cannot be set up.
        BackendNotRegisteredError: If the configured backend is unknown.
    """

    log = logger or get_logger(__name__, component="runtime")
    embedding = config.embedding
    registry = providers or create_default_provider_registry()
    provider = registry.create(
        embedding.provider,
        logger=get_logger(__name__, provider=embedding.provider),
        config=embedding.provider_config(),
    )
    batcher = EmbeddingBatcher(
        provider=provider,
        model=embedding.model,
        batch_size=embedding.batch_size,
        batch_delay=embedding.batch_delay,
        timeout=embedding.timeout,
    )
    gateway = build_gateway(config, paths, backends=backends)
    resolved_source = source if source is not None else build_source(config)

    settings = config.sync_settings()
    ledger = ShaLedger(paths.ledger_path) if settings.skip_unchanged else None
    orchestrator = SyncOrchestrator(
        settings=settings,
        source=resolved_source,
        batcher=batcher,
        gateway=gateway,
        chunker=TextChunker(
            chunk_size=settings.chunk_size,
            overlap=settings.overlap,
        ),
        ledger=ledger,
    )
    log.debug(
        "runtime-built",
        provider=embedding.provider,
        model=embedding.model,
        backend=config.vector_store.backend.value,
        collection=settings.collection_name,
    )
    return SyncRuntime(
        config=config,
        orchestrator=orchestrator,
        gateway=gateway,
        source=resolved_source,
        provider=provider,
    )
