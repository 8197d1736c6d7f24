"""Command-line interface for :mod:`reposync`.

This module exposes the Typer application behind the ``reposync`` console
script and wires the ``init``, ``sync`` and ``collection`` commands.

Example:
    >>> import typer
    >>> from reposync.cli import create_app
    >>> app = create_app()
    >>> isinstance(app, typer.Typer)
    True
"""

from __future__ import annotations

import os
from pathlib import Path

import typer

from reposync.cli.collection import create_collection_app
from reposync.cli.context import WORKSPACE_ENV
from reposync.cli.init import init_workspace
from reposync.cli.sync import create_sync_app
from reposync.core.config import AppConfig, DEFAULTS_RESOURCE_NAME
from reposync.core.logging import configure_logging, get_logger
from reposync.core.paths import CONFIG_FILENAME, resolve_workspace

_app_help = (
    "Sync repository documentation and API definitions into a vector store."
    "\n\n"
    "Use `reposync init` to bootstrap a workspace and populate `reposync.toml`."
)


def _emit_workspace_summary(
    *,
    config: AppConfig,
    refresh: bool,
    existing: bool,
) -> None:
    """Print a human-friendly summary of bootstrap results."""

    typer.secho("Workspace initialized", fg=typer.colors.GREEN, bold=True)
    typer.echo(f"  workspace: {config.workspace}")
    typer.echo(f"  config: {config.workspace / CONFIG_FILENAME}")
    typer.echo(f"  defaults: packaged resource ({DEFAULTS_RESOURCE_NAME})")
    typer.echo(f"  log level: {config.log_level}")
    typer.echo(f"  organization: {config.github.organization or '<unset>'}")
    typer.echo(
        f"  vector store: {config.vector_store.backend.value} "
        f"({config.vector_store.collection_name})"
    )

    if existing and not refresh:
        typer.echo("  note: existing workspace detected; files left untouched")
    elif refresh:
        typer.echo("  note: archived previous workspace before refresh")


def create_app() -> "typer.Typer":
    """Return the Typer application powering the ``reposync`` CLI.

    Returns:
        A configured Typer application ready to be invoked by ``reposync``.
    """

    app = typer.Typer(
        help=_app_help,
        no_args_is_help=True,
        rich_markup_mode="rich",
        invoke_without_command=False,
        cls=typer.core.TyperGroup,
    )

    app.add_typer(create_sync_app(), name="sync")
    app.add_typer(create_collection_app(), name="collection")

    @app.callback()
    def main_callback() -> None:
        """Top-level CLI callback ensuring subcommands are dispatched."""

        return None

    @app.command(
        "init",
        help="Bootstrap a workspace and seed configuration files.",
    )
    def init_command(
        workspace: Path | None = typer.Option(
            None,
            "--workspace",
            "-w",
            help=(
                "Override the workspace directory (defaults to "
                "$HOME/.reposync or REPOSYNC_WORKSPACE)."
            ),
        ),
        refresh: bool = typer.Option(
            False,
            "--refresh",
            help=(
                "Archive existing workspace contents before regenerating a "
                "clean layout."
            ),
        ),
        log_level: str | None = typer.Option(
            None,
            "--log-level",
            "-l",
            help="Override the logging level (DEBUG/INFO/WARNING/ERROR).",
        ),
        organization: str | None = typer.Option(
            None,
            "--organization",
            "-o",
            help="GitHub organization whose repositories are synchronized.",
        ),
    ) -> None:
        """Initialize (or refresh) the local workspace.

        Example:
            >>> from typer.testing import CliRunner
            >>> runner = CliRunner()
            >>> app = create_app()
            >>> result = runner.invoke(app, ["init", "--help"])
            >>> result.exit_code
            0
        """

        env_workspace = os.environ.get(WORKSPACE_ENV)
        env_workspace_path = (
            Path(env_workspace).expanduser() if env_workspace else None
        )

        try:
            paths = resolve_workspace(
                workspace_override=workspace,
                env_override=env_workspace_path,
            )
        except ValueError as exc:
            typer.secho(f"Workspace error: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc

        workspace_exists = paths.workspace.exists()

        try:
            config = init_workspace(
                workspace=paths.workspace,
                refresh=refresh,
                log_level=log_level,
                organization=organization,
            )
        except Exception as exc:
            typer.secho(
                f"Failed to initialize workspace: {exc}",
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1) from exc

        configure_logging(
            level=config.log_level,
            workspace_path=config.workspace,
        )
        logger = get_logger(__name__, command="init")
        logger.info(
            "init-complete",
            workspace=str(config.workspace),
            refresh=refresh,
            organization=config.github.organization,
        )

        _emit_workspace_summary(
            config=config,
            refresh=refresh,
            existing=workspace_exists,
        )

    return app


__all__ = ["create_app"]
