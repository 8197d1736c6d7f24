"""Per-document sha ledger used to skip unchanged documents."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from reposync.core.logging import Logger, get_logger
from reposync.sync.models import DocumentContent

__all__ = ["LEDGER_VERSION", "LedgerError", "ShaLedger"]

LEDGER_VERSION = 1


class LedgerError(RuntimeError):
    """Raised when the ledger file cannot be read or written."""


@dataclass(slots=True)
class ShaLedger:
    """JSON map of ``repository/file_path`` to the last synced content sha.

    The file is only rewritten through :meth:`record`, which the orchestrator
    calls after a fully successful upsert.
    """

    path: Path
    logger: Logger | None = None
    _entries: dict[str, str] | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        if self.logger is None:
            self.logger = get_logger(__name__, component="sha-ledger")

    def load(self) -> dict[str, str]:
        """Return a copy of the stored entries, reading the file on first use."""

        with self._lock:
            return dict(self._read())

    def filter_unchanged(
        self,
        documents: Sequence[DocumentContent],
    ) -> list[DocumentContent]:
        """Drop documents whose sha equals the recorded one.

        Documents without a sha are always kept.
        """

        with self._lock:
            entries = self._read()
        kept = [
            document
            for document in documents
            if not document.sha or entries.get(document.document_key) != document.sha
        ]
        skipped = len(documents) - len(kept)
        if skipped:
            self.logger.info(
                "ledger-unchanged-skipped",
                skipped=skipped,
                kept=len(kept),
            )
        return kept

    def record(self, documents: Iterable[DocumentContent]) -> int:
        """Store the sha of every document that has one and persist the file."""

        with self._lock:
            entries = dict(self._read())
            updated = 0
            for document in documents:
                if not document.sha:
                    continue
                if entries.get(document.document_key) != document.sha:
                    updated += 1
                entries[document.document_key] = document.sha
            self._write(entries)
            self._entries = entries
        self.logger.info("ledger-recorded", updated=updated, total=len(entries))
        return updated

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _read(self) -> dict[str, str]:
        if self._entries is not None:
            return self._entries
        if not self.path.exists():
            self._entries = {}
            return self._entries
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise LedgerError(f"Failed reading ledger {self.path}: {exc}") from exc
        documents = payload.get("documents") if isinstance(payload, dict) else None
        if not isinstance(documents, dict):
            raise LedgerError(f"Ledger {self.path} has no documents mapping")
        self._entries = {str(key): str(value) for key, value in documents.items()}
        return self._entries

    def _write(self, entries: dict[str, str]) -> None:
        payload = json.dumps(
            {
                "version": LEDGER_VERSION,
                "updated_at": datetime.now(timezone.utc).isoformat(),
                "documents": dict(sorted(entries.items())),
            },
            indent=2,
        )
        temp_path: Path | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=".ledger-",
                suffix=".tmp",
                delete=False,
            ) as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
                temp_path = Path(handle.name)
            os.replace(temp_path, self.path)
        except OSError as exc:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            raise LedgerError(f"Failed writing ledger {self.path}: {exc}") from exc
