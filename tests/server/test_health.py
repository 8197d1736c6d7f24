"""Tests for :mod:`reposync.server.health` probes."""

from __future__ import annotations

from reposync.modules.vdb.errors import VectorBackendError
from reposync.server import build_health_probes, run_probes
from reposync.server.health import probe_embedding, probe_source, probe_vector_store


class _PingSource:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.pings = 0

    def ping(self) -> None:
        self.pings += 1
        if self.error is not None:
            raise self.error


def test_source_probe_reports_up_and_error() -> None:
    healthy = probe_source(_PingSource())()
    failing = probe_source(_PingSource(RuntimeError("bad credentials")))()

    assert healthy.service_name == "github"
    assert healthy.healthy and healthy.status == "UP"
    assert healthy.details == {"reachable": True}
    assert not failing.healthy
    assert failing.status == "ERROR"
    assert failing.details == {"error": "bad credentials"}


def test_source_without_ping_is_assumed_healthy(fake_source) -> None:
    record = probe_source(fake_source)()

    assert record.healthy
    assert record.details == {"reachable": None}


def test_vector_store_probe_reports_collection(gateway, memory_backend) -> None:
    missing = probe_vector_store(gateway, "repo_docs")()
    gateway.ensure_collection("repo_docs", 4)
    present = probe_vector_store(gateway, "repo_docs")()

    assert missing.healthy
    assert missing.details == {
        "backend": "memory",
        "collection": "repo_docs",
        "exists": False,
        "state": "absent",
    }
    assert present.details["exists"] is True
    assert present.details["state"] == "ready"


def test_vector_store_probe_reports_backend_errors(gateway, memory_backend, monkeypatch) -> None:
    def _boom(name: str) -> bool:
        raise VectorBackendError("connection refused", backend="memory")

    monkeypatch.setattr(memory_backend, "has_collection", _boom)

    record = probe_vector_store(gateway, "repo_docs")()

    assert not record.healthy
    assert record.status == "ERROR"


def test_embedding_probe_describes_model(stub_provider) -> None:
    record = probe_embedding(stub_provider, "stub-model")()

    assert record.healthy
    assert record.details == {"provider": "stub", "model": "stub-model", "dimension": 4}


def test_build_health_probes_runs_in_order(fake_source, gateway, stub_provider) -> None:
    probes = build_health_probes(
        source=fake_source,
        gateway=gateway,
        collection="repo_docs",
        provider=stub_provider,
        model="stub-model",
    )

    records = run_probes(probes)

    assert [record.service_name for record in records] == [
        "github",
        "vector-store",
        "embedding",
    ]
    assert all(record.healthy for record in records)
