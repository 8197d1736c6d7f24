"""Helpers for the ``reposync init`` command."""

from __future__ import annotations

from pathlib import Path

from reposync.core.config import (
    AppConfig,
    DEFAULTS_RESOURCE_NAME,
    env_overrides,
    load_config,
    load_packaged_defaults,
    render_user_config,
    read_packaged_defaults_text,
)
from reposync.core.paths import WorkspacePaths, archive_workspace, resolve_workspace


def _ensure_directories(paths: WorkspacePaths) -> None:
    """Create the workspace directories if they are missing."""

    for directory in (
        paths.workspace,
        paths.logs_dir,
        paths.archives_dir,
        paths.collections_dir,
        paths.state_dir,
    ):
        directory.mkdir(parents=True, exist_ok=True)


def init_workspace(
    *,
    workspace: Path,
    refresh: bool = False,
    log_level: str | None = None,
    organization: str | None = None,
) -> AppConfig:
    """Bootstrap the workspace directory and its configuration files.

    Example:
        >>> from pathlib import Path
        >>> config = init_workspace(workspace=Path("/tmp/reposync-example"))
        >>> str(config.workspace).endswith("reposync-example")
        True

    Args:
        workspace: Target directory for the workspace.
        refresh: Archive the existing workspace and rewrite its files.
        log_level: Optional override for the configured logging level.
        organization: Optional GitHub organization to record in the config.

    Returns:
        The resolved configuration after applying overrides.
    """

    paths = resolve_workspace(workspace_override=workspace)

    if refresh:
        archive_workspace(paths)

    _ensure_directories(paths)

    cli_overrides: dict[str, object] = {"workspace": str(paths.workspace)}
    if log_level:
        cli_overrides["log_level"] = log_level
    if organization:
        cli_overrides["github"] = {"organization": organization}

    config = load_config(
        defaults=load_packaged_defaults(),
        env_config=env_overrides(),
        cli_overrides=cli_overrides,
    )

    defaults_path = paths.workspace / DEFAULTS_RESOURCE_NAME
    if refresh or not defaults_path.exists():
        defaults_path.write_text(read_packaged_defaults_text(), encoding="utf-8")

    config_path = paths.config_file
    if refresh or not config_path.exists():
        config_path.write_text(render_user_config(config), encoding="utf-8")

    return config


__all__ = ["init_workspace"]
