"""Typer command group running the sync workflow and the sync service."""

from __future__ import annotations

from pathlib import Path

import typer
import uvicorn

from reposync.cli.context import CLIContext, build_cli_context, require_context
from reposync.server import build_health_probes, create_app
from reposync.sync.models import SyncJobResult, SyncStatus
from reposync.sync.runtime import SyncRuntime, build_runtime
from reposync.sync.scheduler import SyncScheduler

_sync_app = typer.Typer(
    name="sync",
    help="Run the repository documentation sync once or as a service.",
    no_args_is_help=True,
    invoke_without_command=False,
)

_STATUS_COLORS = {
    SyncStatus.SUCCESS: typer.colors.GREEN,
    SyncStatus.PARTIAL_SUCCESS: typer.colors.YELLOW,
    SyncStatus.FAILED: typer.colors.RED,
}


def _build_runtime(context: CLIContext) -> SyncRuntime:
    try:
        return build_runtime(context.config, context.paths)
    except Exception as exc:
        typer.secho(f"Failed to prepare sync runtime: {exc}", fg=typer.colors.RED)
        context.logger.error("sync-runtime-failed", error=str(exc))
        raise typer.Exit(code=1) from exc


def _emit_result(result: SyncJobResult) -> None:
    typer.secho(
        f"Sync {result.status.value}",
        fg=_STATUS_COLORS.get(result.status),
        bold=True,
    )
    typer.echo(f"  job: {result.job_id}")
    typer.echo(f"  repositories: {result.repositories_processed}")
    typer.echo(f"  documents: {result.documents_processed}")
    typer.echo(f"  chunks: {result.chunks_created}")
    typer.echo(f"  vectors: {result.vectors_stored}")
    typer.echo(f"  duration: {result.duration_seconds:.2f}s")
    if result.error_message:
        typer.echo(f"  message: {result.error_message}")


@_sync_app.callback()
def configure_sync_commands(
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
    ctx.obj = build_cli_context(workspace, command="sync")


@_sync_app.command("run", help="Run the sync workflow once.")
def run_command(
    ctx: typer.Context,
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the job result as JSON instead of a summary.",
    ),
) -> None:
    context = require_context(ctx)
    runtime = _build_runtime(context)
    try:
        result = runtime.orchestrator.execute_sync_workflow()
    finally:
        runtime.close()

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _emit_result(result)

    if result.is_failed:
        raise typer.Exit(code=1)


@_sync_app.command(
    "serve",
    help="Start the scheduler and the HTTP trigger endpoint.",
)
def serve_command(
    ctx: typer.Context,
    host: str | None = typer.Option(None, "--host", help="Bind address."),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port."),
    schedule: bool = typer.Option(
        True,
        "--schedule/--no-schedule",
        help="Register the cron and startup sync jobs.",
    ),
) -> None:
    context = require_context(ctx)
    config = context.config
    runtime = _build_runtime(context)

    scheduler = (
        SyncScheduler(orchestrator=runtime.orchestrator, settings=config.scheduler)
        if schedule
        else None
    )
    probes = build_health_probes(
        source=runtime.source,
        gateway=runtime.gateway,
        collection=config.vector_store.collection_name,
        provider=runtime.provider,
        model=config.embedding.model,
    )
    app = create_app(runtime.orchestrator, probes=probes, scheduler=scheduler)

    bind_host = host or config.server.host
    bind_port = port or config.server.port
    context.logger.info(
        "sync-serve",
        host=bind_host,
        port=bind_port,
        scheduler=schedule,
    )
    try:
        uvicorn.run(
            app,
            host=bind_host,
            port=bind_port,
            log_level=config.log_level.lower(),
        )
    finally:
        runtime.close()


def create_sync_app() -> typer.Typer:
    """Return the Typer app implementing ``reposync sync``."""

    return _sync_app


__all__ = ["create_sync_app"]
