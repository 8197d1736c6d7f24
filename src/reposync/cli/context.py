"""Workspace loading shared by the ``sync`` and ``collection`` commands."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import typer
from pydantic import ValidationError

from reposync.core.config import (
    AppConfig,
    env_overrides,
    load_config,
    load_packaged_defaults,
    load_user_config,
)
from reposync.core.logging import Logger, configure_logging, get_logger
from reposync.core.paths import WorkspacePaths, resolve_workspace

WORKSPACE_ENV = "REPOSYNC_WORKSPACE"


@dataclass(slots=True)
class CLIContext:
    """Shared context object carried across workspace-bound commands."""

    paths: WorkspacePaths
    config: AppConfig
    logger: Logger


def resolve_workspace_override(workspace: Path | None) -> WorkspacePaths:
    env_workspace = os.environ.get(WORKSPACE_ENV)
    env_override = Path(env_workspace).expanduser() if env_workspace else None
    return resolve_workspace(
        workspace_override=workspace,
        env_override=env_override,
    )


def load_workspace_config(paths: WorkspacePaths) -> AppConfig:
    """Layer packaged defaults, ``reposync.toml`` and the environment."""

    return load_config(
        defaults=load_packaged_defaults(),
        user_config=load_user_config(paths.config_file),
        env_config=env_overrides(),
        cli_overrides={"workspace": str(paths.workspace)},
    )


def build_cli_context(workspace: Path | None, *, command: str) -> CLIContext:
    """Resolve the workspace, load config and configure logging.

    Exits with code 1 when the workspace is missing or its config is invalid.
    """

    try:
        paths = resolve_workspace_override(workspace)
    except ValueError as exc:
        typer.secho(f"Workspace error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    if not paths.config_file.exists():
        typer.secho(
            f"Workspace config not found at {paths.config_file}. "
            "Run `reposync init` first.",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)

    try:
        config = load_workspace_config(paths)
    except (OSError, ValueError, ValidationError) as exc:
        typer.secho(f"Failed to load workspace config: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    configure_logging(level=config.log_level, workspace_path=config.workspace)
    return CLIContext(
        paths=paths,
        config=config,
        logger=get_logger(__name__, command=command),
    )


def require_context(ctx: typer.Context) -> CLIContext:
    context = getattr(ctx, "obj", None)
    if not isinstance(context, CLIContext):
        typer.secho("Internal error: command context not initialized.", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return context


__all__ = [
    "CLIContext",
    "WORKSPACE_ENV",
    "build_cli_context",
    "load_workspace_config",
    "require_context",
    "resolve_workspace_override",
]
