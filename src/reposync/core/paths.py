"""Workspace path helpers for :mod:`reposync`."""

from __future__ import annotations

import shutil

from datetime import datetime, timezone
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable
from zipfile import ZIP_DEFLATED, ZipFile

__all__ = [
    "WorkspacePaths",
    "resolve_workspace",
    "archive_workspace",
]

CONFIG_FILENAME = "reposync.toml"


@dataclass(frozen=True, slots=True)
class WorkspacePaths:
    """Resolved locations for a reposync workspace.

    Example:
        >>> from pathlib import Path
        >>> paths = resolve_workspace(workspace_override=Path("/tmp/rs"))
        >>> paths.config_file.name
        'reposync.toml'
    """

    workspace: Path
    config_file: Path
    logs_dir: Path
    archives_dir: Path
    collections_dir: Path
    state_dir: Path

    def iter_all(self) -> Iterable[Path]:
        """Yield every path managed within the workspace."""

        yield from (
            self.workspace,
            self.config_file,
            self.logs_dir,
            self.archives_dir,
            self.collections_dir,
            self.state_dir,
        )

    def collection_dir(self, name: str) -> Path:
        """Return the directory holding local artifacts for ``name``."""

        return self.collections_dir / name

    @property
    def ledger_path(self) -> Path:
        """Return the path of the document sha ledger."""

        return self.state_dir / "ledger.json"


def resolve_workspace(
    *,
    workspace_override: Path | None = None,
    env_override: Path | None = None,
) -> WorkspacePaths:
    """Resolve canonical workspace locations.

    Args:
        workspace_override: Optional override provided by CLI flags.
        env_override: Optional override from environment variables.

    Returns:
        Resolved workspace paths after precedence rules are applied.

    Raises:
        ValueError: If the resolved workspace points to a regular file.
    """

    base = workspace_override or env_override or Path.home() / ".reposync"
    raw = Path(base).expanduser()
    if raw.is_absolute():
        workspace = raw.resolve(strict=False)
    else:
        workspace = (Path.cwd() / raw).resolve(strict=False)

    if workspace.exists() and workspace.is_file():
        raise ValueError(f"Workspace file path not allowed: {workspace}")

    return WorkspacePaths(
        workspace=workspace,
        config_file=workspace / CONFIG_FILENAME,
        logs_dir=workspace / "logs",
        archives_dir=workspace / "archives",
        collections_dir=workspace / "collections",
        state_dir=workspace / "state",
    )


def _generate_archive_name(archive_root: Path, timestamp: str) -> Path:
    suffix = 0
    while True:
        suffix_part = "" if suffix == 0 else f"-{suffix:02d}"
        candidate = archive_root / f"{timestamp}{suffix_part}.zip"
        if not candidate.exists():
            return candidate
        suffix += 1


def _write_path_to_zip(root: Path, path: Path, zf: ZipFile) -> None:
    relative = path.relative_to(root).as_posix()
    if path.is_dir():
        zf.writestr(relative.rstrip("/") + "/", "")
        for child in sorted(path.iterdir()):
            _write_path_to_zip(root, child, zf)
    else:
        zf.write(path, relative)


def archive_workspace(paths: WorkspacePaths) -> Path | None:
    """Move the workspace contents into a timestamped ZIP under ``archives``.

    Returns:
        The archive path when contents were moved, otherwise ``None``.
    """

    workspace = paths.workspace
    if not workspace.exists():
        return None

    if not workspace.is_dir():
        raise ValueError(
            f"Workspace path '{workspace}' exists but is not a directory."
        )

    archive_root = paths.archives_dir
    archive_root.mkdir(parents=True, exist_ok=True)

    entries = [entry for entry in workspace.iterdir() if entry != archive_root]
    if not entries:
        return None

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    archive_path = _generate_archive_name(archive_root, timestamp)

    with ZipFile(archive_path, mode="w", compression=ZIP_DEFLATED) as zf:
        for entry in sorted(entries):
            _write_path_to_zip(workspace, entry, zf)

    for entry in entries:
        if entry.is_dir():
            shutil.rmtree(entry)
        else:
            entry.unlink()

    return archive_path
