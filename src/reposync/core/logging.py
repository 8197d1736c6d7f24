"""Logging helpers for :mod:`reposync`."""

from __future__ import annotations

from contextlib import contextmanager
import gzip
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import shutil
from typing import Any, Iterable, Iterator

from rich.console import Console
from rich.logging import RichHandler
import structlog

Logger = structlog.stdlib.BoundLogger

_CONSOLE_PROCESSOR = structlog.dev.ConsoleRenderer(colors=False)
_FILE_PROCESSOR = structlog.processors.JSONRenderer(sort_keys=True)
_TIMESTAMPER = structlog.processors.TimeStamper(fmt="iso", utc=True)

# One week of rotated sync logs.
_ROTATION_BACKUP_COUNT = 7
_DEFAULT_LOG_FILENAME = "reposync.log"

# Chatty third-party loggers that drown out sync events at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "apscheduler")


def _normalize_level(level: str) -> int:
    """Return the logging module level constant for ``level``.

    Raises:
        ValueError: If the level name is not recognized.
    """

    normalized = level.strip().upper()
    value = logging.getLevelName(normalized)
    if isinstance(value, str):  # ``getLevelName`` echoes unknown names.
        raise ValueError(f"Unsupported log level: {level!r}")
    return value


def _reset_root_logger(
    root: logging.Logger,
    handlers: Iterable[logging.Handler],
) -> None:
    """Replace root handlers with the provided ones."""

    for handler in list(root.handlers):
        root.removeHandler(handler)
        try:
            handler.close()
        except Exception:  # pragma: no cover - close errors are irrelevant
            pass
    for handler in handlers:
        root.addHandler(handler)


def _configure_structlog() -> None:
    """Apply the structlog configuration shared by console/file handlers."""

    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            _TIMESTAMPER,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _gzip_rotator(source: str, dest: str) -> None:
    """Compress rotated log file ``source`` into ``dest`` using gzip."""

    with open(source, "rb") as src, gzip.open(dest, "wb") as target:
        shutil.copyfileobj(src, target)
    Path(source).unlink(missing_ok=True)


def _foreign_pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        _TIMESTAMPER,
    ]


def _build_file_handler(log_file: Path, level: int) -> TimedRotatingFileHandler:
    """Return a rotating JSON handler that compresses archived log files."""

    handler = TimedRotatingFileHandler(
        log_file,
        when="midnight",
        backupCount=_ROTATION_BACKUP_COUNT,
        utc=True,
        encoding="utf-8",
        delay=True,
    )
    handler.setLevel(level)
    handler.suffix = "%Y-%m-%d"
    handler.namer = lambda name: f"{name}.gz"
    handler.rotator = _gzip_rotator
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_FILE_PROCESSOR,
            foreign_pre_chain=_foreign_pre_chain(),
        )
    )
    return handler


def _build_console_handler(
    level: int,
    console: Console | None = None,
) -> RichHandler:
    """Return a Rich-backed console handler for structured logging."""

    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        markup=False,
        enable_link_path=False,
        log_time_format="%Y-%m-%d %H:%M:%S",
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_CONSOLE_PROCESSOR,
            foreign_pre_chain=_foreign_pre_chain(),
        )
    )
    return handler


def configure_logging(
    *,
    level: str = "INFO",
    workspace_path: str | Path | None = None,
    console: Console | None = None,
) -> None:
    """Configure structlog alongside stdlib logging.

    Args:
        level: Log level name to apply to the root logger (case-insensitive).
        workspace_path: Optional workspace root used for the log directory.
        console: Optional Rich console override, primarily for testing.

    Raises:
        ValueError: If ``level`` is not a recognized log level name.

    Example:
        >>> from pathlib import Path
        >>> path = Path("/tmp/reposync-log-example")
        >>> configure_logging(level="debug", workspace_path=path)
        >>> logger = get_logger(__name__)
        >>> logger.info("configured", example=True)  # doctest: +ELLIPSIS
        >>> (path / "logs" / "reposync.log").exists()
        True
    """

    log_level = _normalize_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    _configure_structlog()

    handlers: list[logging.Handler] = [
        _build_console_handler(log_level, console=console)
    ]

    if workspace_path is not None:
        workspace = Path(workspace_path).expanduser().resolve(strict=False)
        log_dir = workspace / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            _build_file_handler(log_dir / _DEFAULT_LOG_FILENAME, log_level)
        )

    _reset_root_logger(root_logger, handlers)

    quiet_level = max(log_level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    logging.captureWarnings(True)


def get_logger(name: str | None = None, **initial_context: Any) -> Logger:
    """Return a structured logger bound to an optional context.

    Example:
        >>> logger = get_logger(__name__, component="orchestrator")
        >>> isinstance(logger, structlog.stdlib.BoundLogger)
        True
    """

    return structlog.get_logger(name).bind(**initial_context)


@contextmanager
def sync_log_context(**context: Any) -> Iterator[None]:
    """Tag every event emitted inside the block with ``context``.

    Collaborators own their loggers, so a sync run binds its ``job_id`` here
    and source, embedding and vector store events pick it up through
    ``merge_contextvars``. Worker threads start with an empty context and must
    run inside a copy taken on the calling thread.

    Example:
        >>> with sync_log_context(job_id="job-1"):
        ...     structlog.contextvars.get_contextvars()["job_id"]
        'job-1'
    """

    with structlog.contextvars.bound_contextvars(**context):
        yield


__all__ = ["Logger", "configure_logging", "get_logger", "sync_log_context"]
