"""Typer command group inspecting and dropping vector store collections."""

from __future__ import annotations

from pathlib import Path

import typer

from reposync.cli.context import CLIContext, build_cli_context, require_context
from reposync.modules.vdb.gateway import VectorStoreGateway
from reposync.sync.runtime import build_gateway

_collection_app = typer.Typer(
    name="collection",
    help="Inspect or drop vector store collections.",
    no_args_is_help=True,
    invoke_without_command=False,
)


def _gateway(context: CLIContext) -> VectorStoreGateway:
    try:
        return build_gateway(context.config, context.paths)
    except Exception as exc:
        typer.secho(f"Failed to open vector store: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc


@_collection_app.callback()
def configure_collection_commands(
    ctx: typer.Context,
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        "-w",
        help=(
            "Override workspace directory (defaults to REPOSYNC_WORKSPACE or "
            "~/.reposync)."
        ),
    ),
) -> None:
    ctx.obj = build_cli_context(workspace, command="collection")


@_collection_app.command("exists", help="Report whether a collection exists.")
def exists_command(
    ctx: typer.Context,
    name: str | None = typer.Argument(
        None,
        help="Collection name (defaults to the configured collection).",
    ),
) -> None:
    context = require_context(ctx)
    collection = name or context.config.vector_store.collection_name
    gateway = _gateway(context)
    if gateway.has_collection(collection):
        typer.secho(f"Collection {collection} exists", fg=typer.colors.GREEN)
        try:
            typer.echo(f"  rows: {gateway.count(collection)}")
        except Exception as exc:
            context.logger.warning(
                "collection-count-failed",
                collection=collection,
                error=str(exc),
            )
    else:
        typer.echo(f"Collection {collection} does not exist")


@_collection_app.command("drop", help="Drop a collection and all its vectors.")
def drop_command(
    ctx: typer.Context,
    name: str | None = typer.Argument(
        None,
        help="Collection name (defaults to the configured collection).",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip the confirmation prompt.",
    ),
) -> None:
    context = require_context(ctx)
    collection = name or context.config.vector_store.collection_name
    if not yes and not typer.confirm(
        f"Drop collection {collection}?",
        default=False,
    ):
        typer.echo("Operation cancelled.")
        raise typer.Exit(code=1)

    gateway = _gateway(context)
    if not gateway.drop_collection(collection):
        typer.secho(f"Failed to drop collection {collection}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    context.logger.info("collection-dropped", collection=collection)
    typer.secho(f"Dropped collection {collection}", fg=typer.colors.GREEN)


def create_collection_app() -> typer.Typer:
    """Return the Typer app implementing ``reposync collection``."""

    return _collection_app


__all__ = ["create_collection_app"]
