"""Tests for :mod:`reposync.cli.init`."""

from __future__ import annotations

import tomllib
from pathlib import Path
from zipfile import ZipFile

import pytest
import tomlkit

from reposync.cli.init import init_workspace
from reposync.core.config import DEFAULTS_RESOURCE_NAME


def test_init_workspace_seeds_layout_and_config(tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"

    config = init_workspace(workspace=workspace)

    config_path = workspace / "reposync.toml"
    assert config_path.exists()
    assert (workspace / DEFAULTS_RESOURCE_NAME).exists()
    for directory in ("logs", "archives", "collections", "state"):
        assert (workspace / directory).is_dir()

    text = config_path.read_text(encoding="utf-8")
    assert text.startswith("# Generated by reposync init")
    rendered = tomllib.loads(text)
    assert rendered["workspace"].endswith("workspace")
    assert rendered["log_level"] == "INFO"
    assert rendered["vector_store"]["collection_name"] == "repo_docs"
    assert rendered["scheduler"]["cron"] == "0 8 * * *"

    assert config.workspace == workspace
    assert config.log_level == "INFO"


def test_init_workspace_respects_overrides_and_refresh(tmp_path: Path) -> None:
    workspace = tmp_path / "custom"
    init_workspace(workspace=workspace)

    config = init_workspace(
        workspace=workspace,
        refresh=True,
        log_level="debug",
        organization="acme",
    )

    rendered = tomllib.loads(
        (workspace / "reposync.toml").read_text(encoding="utf-8")
    )
    assert rendered["log_level"] == "DEBUG"
    assert rendered["github"]["organization"] == "acme"
    assert config.log_level == "DEBUG"
    assert config.github.organization == "acme"

    archive_entries = list((workspace / "archives").iterdir())
    assert archive_entries, "refresh should archive previous workspace contents"
    archive_file = archive_entries[0]
    assert archive_file.suffix == ".zip"
    with ZipFile(archive_file) as archive:
        assert "reposync.toml" in archive.namelist()


def test_init_workspace_keeps_existing_config_without_refresh(tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"
    init_workspace(workspace=workspace)

    config_path = workspace / "reposync.toml"
    rendered = tomlkit.loads(config_path.read_text(encoding="utf-8"))
    rendered["log_level"] = "WARNING"
    config_path.write_text(tomlkit.dumps(rendered), encoding="utf-8")

    init_workspace(workspace=workspace, organization="acme")

    reread = tomlkit.loads(config_path.read_text(encoding="utf-8"))
    assert reread["log_level"] == "WARNING"
    assert reread["github"]["organization"] == ""


def test_init_workspace_applies_env_before_cli(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    workspace = tmp_path / "workspace"
    monkeypatch.setenv("REPOSYNC_LOG_LEVEL", "warning")
    monkeypatch.setenv("REPOSYNC_ORGANIZATION", "from-env")

    config_env = init_workspace(workspace=workspace)
    assert config_env.log_level == "WARNING"
    assert config_env.github.organization == "from-env"

    config_cli = init_workspace(
        workspace=workspace,
        log_level="debug",
        organization="from-cli",
    )
    assert config_cli.log_level == "DEBUG"
    assert config_cli.github.organization == "from-cli"
