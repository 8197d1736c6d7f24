"""Core utilities shared across :mod:`reposync` modules.

The core namespace provides configuration loading, logging setup, workspace
path resolution and the retry wrapper so pipeline modules stay lightweight.

Example:
    >>> from reposync.core import get_logger
    >>> logger = get_logger(__name__)
    >>> isinstance(logger, object)
    True
"""

from __future__ import annotations

from .config import AppConfig, SyncSettings, load_config
from .logging import configure_logging, get_logger
from .paths import WorkspacePaths, resolve_workspace
from .retry import RetryExhaustedError, run_with_retry

__all__ = [
    "AppConfig",
    "RetryExhaustedError",
    "SyncSettings",
    "WorkspacePaths",
    "configure_logging",
    "get_logger",
    "load_config",
    "resolve_workspace",
    "run_with_retry",
]
