from __future__ import annotations

from pathlib import Path

import pytest
import tomlkit

from reposync.cli.init import init_workspace
from reposync.core.logging import configure_logging


@pytest.fixture
def seeded_workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Initialized workspace tuned for the in-memory test collaborators."""

    # Keep command output clean; console logs would mix into stdout.
    monkeypatch.setattr(
        "reposync.cli.context.configure_logging",
        lambda **_: configure_logging(level="CRITICAL"),
    )
    workspace = tmp_path / "workspace"
    init_workspace(workspace=workspace, organization="acme")

    config_path = workspace / "reposync.toml"
    document = tomlkit.loads(config_path.read_text(encoding="utf-8"))
    document["embedding"]["provider"] = "stub"
    document["embedding"]["batch_delay"] = 0.0
    document["vector_store"]["vector_dimension"] = 4
    document["vector_store"]["retry_delay"] = 0.0
    document["vector_store"]["load_retry_delay"] = 0.0
    document["vector_store"]["batch_delay"] = 0.0
    document["workflow"]["max_attempts"] = 1
    document["server"]["port"] = 9090
    config_path.write_text(tomlkit.dumps(document), encoding="utf-8")
    return workspace
