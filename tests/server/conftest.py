from __future__ import annotations

import pytest

from reposync.core.config import SyncSettings
from reposync.modules.embedding.batcher import EmbeddingBatcher
from reposync.modules.vdb.gateway import GatewaySettings, VectorStoreGateway
from reposync.sync.orchestrator import SyncOrchestrator


@pytest.fixture
def gateway(memory_backend) -> VectorStoreGateway:
    return VectorStoreGateway(
        backend=memory_backend,
        settings=GatewaySettings(retry_delay=0.0, load_retry_delay=0.0, batch_delay=0.0),
        sleep=lambda _: None,
    )


@pytest.fixture
def orchestrator(fake_source, stub_provider, gateway) -> SyncOrchestrator:
    """Orchestrator over in-memory collaborators with no retries."""

    return SyncOrchestrator(
        settings=SyncSettings(
            organization="acme",
            collection_name="repo_docs",
            vector_dimension=4,
            chunk_size=1000,
            overlap=200,
        ),
        source=fake_source,
        batcher=EmbeddingBatcher(
            provider=stub_provider,
            model="stub-model",
            batch_delay=0.0,
        ),
        gateway=gateway,
        sleep=lambda _: None,
    )
