"""Local FAISS backend storing each collection under the workspace.

A collection is a directory holding ``index.faiss`` (an ``IndexIDMap`` over a
flat inner-product index of L2-normalized vectors, i.e. cosine similarity)
and an ``index.faiss.meta.json`` sidecar that maps string ids to integer keys
and carries the metadata payloads and an index checksum.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import shutil
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence

import faiss
import numpy as np

from reposync.core.logging import Logger
from reposync.modules.vdb.errors import VectorBackendError

from . import ID_MAX_LENGTH, BackendInitContext, VectorRecord

__all__ = ["FaissVectorBackend", "faiss_backend_factory"]

_INDEX_FILENAME = "index.faiss"
_SIDECAR_SUFFIX = ".meta.json"
_SIDECAR_VERSION = 1
_METRIC = "cosine"
_COLLECTION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,254}$")


@dataclass(slots=True)
class _Sidecar:
    dim: int
    indexed: bool = False
    next_key: int = 0
    rows: dict[str, dict[str, Any]] = field(default_factory=dict)
    checksum: str = ""
    updated_at: str = ""

    def to_json(self) -> str:
        payload = {
            "version": _SIDECAR_VERSION,
            "dim": self.dim,
            "metric": _METRIC,
            "indexed": self.indexed,
            "next_key": self.next_key,
            "rows": self.rows,
            "checksum": self.checksum,
            "updated_at": self.updated_at,
        }
        return json.dumps(payload, ensure_ascii=False, indent=2) + "\n"

    @classmethod
    def from_json(cls, text: str) -> "_Sidecar":
        data = json.loads(text)
        if not isinstance(data, Mapping):
            raise ValueError("Sidecar JSON must decode to an object")
        if data.get("version") != _SIDECAR_VERSION:
            raise ValueError(f"Unsupported sidecar version {data.get('version')!r}")
        return cls(
            dim=int(data["dim"]),
            indexed=bool(data.get("indexed", False)),
            next_key=int(data.get("next_key", 0)),
            rows=dict(data.get("rows", {})),
            checksum=str(data.get("checksum", "")),
            updated_at=str(data.get("updated_at", "")),
        )


@dataclass(slots=True)
class _Collection:
    index: Any
    sidecar: _Sidecar


def _new_index(dim: int) -> Any:
    base = faiss.index_factory(dim, "Flat", faiss.METRIC_INNER_PRODUCT)
    return faiss.IndexIDMap(base)


def _serialize(index: Any) -> bytes:
    return faiss.serialize_index(index).tobytes()


def _deserialize(data: bytes) -> Any:
    index = faiss.deserialize_index(np.frombuffer(data, dtype="uint8"))
    if not isinstance(index, faiss.IndexIDMap):
        raise ValueError("Serialized index must wrap an IDMap")
    return index


def _atomic_write(path: Path, data: bytes) -> None:
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=path.parent,
            prefix=".faiss-",
            suffix=".tmp",
            delete=False,
        ) as handle:
            handle.write(data)
            temp_path = Path(handle.name)
        os.replace(temp_path, path)
    except OSError:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        raise


class FaissVectorBackend:
    """Persist collections as FAISS indexes on the local filesystem."""

    name = "faiss"

    def __init__(self, *, root: Path, logger: Logger) -> None:
        self.root = Path(root)
        self.logger = logger
        self._loaded: dict[str, _Collection] = {}
        self._served: set[str] = set()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------#
    # Backend interface
    # ------------------------------------------------------------------#
    def has_collection(self, name: str) -> bool:
        return self._sidecar_path(name).exists()

    def create_collection(self, name: str, dimension: int) -> None:
        if dimension < 1:
            raise self._error(name, f"Invalid vector dimension {dimension}")
        with self._lock:
            if self.has_collection(name):
                raise self._error(name, f"collection {name} already exists")
            self._dir(name).mkdir(parents=True, exist_ok=True)
            collection = _Collection(
                index=_new_index(dimension),
                sidecar=_Sidecar(dim=dimension),
            )
            self._persist(name, collection)
            self.logger.info("faiss-collection-created", collection=name, dim=dimension)

    def create_index(self, name: str) -> None:
        with self._lock:
            collection = self._open(name)
            if collection.sidecar.indexed:
                raise self._error(name, f"index {_METRIC} already exists")
            collection.sidecar.indexed = True
            self._persist(name, collection)

    def load_collection(self, name: str) -> None:
        with self._lock:
            if name in self._served:
                raise self._error(name, f"collection {name} already loaded")
            self._loaded[name] = self._read(name)
            self._served.add(name)

    def upsert(self, name: str, records: Sequence[VectorRecord]) -> int:
        if not records:
            return 0
        with self._lock:
            collection = self._open(name)
            dim = collection.sidecar.dim

            # Last write wins for ids repeated within one call.
            latest: dict[str, VectorRecord] = {}
            for record in records:
                if len(record.vector) != dim:
                    raise self._error(
                        name,
                        (
                            f"Vector for {record.id} has dimension "
                            f"{len(record.vector)}; collection expects {dim}"
                        ),
                    )
                if len(record.id.encode("utf-8")) > ID_MAX_LENGTH:
                    raise self._error(name, f"Id too long: {record.id[:40]}...")
                latest[record.id] = record

            rows = collection.sidecar.rows
            stale = [rows[key]["key"] for key in latest if key in rows]
            if stale:
                collection.index.remove_ids(np.asarray(stale, dtype="int64"))

            keys: list[int] = []
            for record_id, record in latest.items():
                entry = rows.get(record_id)
                if entry is None:
                    entry = {"key": collection.sidecar.next_key}
                    collection.sidecar.next_key += 1
                entry["metadata"] = dict(record.metadata)
                rows[record_id] = entry
                keys.append(int(entry["key"]))

            vectors = np.asarray(
                [record.vector for record in latest.values()],
                dtype="float32",
            )
            faiss.normalize_L2(vectors)
            collection.index.add_with_ids(vectors, np.asarray(keys, dtype="int64"))
            self._persist(name, collection)
            return len(latest)

    def drop_collection(self, name: str) -> None:
        with self._lock:
            directory = self._dir(name)
            if not directory.exists():
                raise self._error(name, f"collection {name} not found")
            shutil.rmtree(directory)
            self._loaded.pop(name, None)
            self._served.discard(name)
            self.logger.info("faiss-collection-dropped", collection=name)

    def count(self, name: str) -> int:
        with self._lock:
            return int(self._open(name).index.ntotal)

    def metadata(self, name: str, record_id: str) -> dict[str, str] | None:
        """Return the stored metadata for ``record_id`` if present."""

        with self._lock:
            entry = self._open(name).sidecar.rows.get(record_id)
            return None if entry is None else dict(entry["metadata"])

    # ------------------------------------------------------------------#
    # Internal helpers
    # ------------------------------------------------------------------#
    def _error(self, name: str | None, message: str) -> VectorBackendError:
        return VectorBackendError(message, backend=self.name, collection=name)

    def _dir(self, name: str) -> Path:
        if not _COLLECTION_NAME.match(name):
            raise self._error(name, f"Invalid collection name {name!r}")
        return self.root / name

    def _index_path(self, name: str) -> Path:
        return self._dir(name) / _INDEX_FILENAME

    def _sidecar_path(self, name: str) -> Path:
        return self._dir(name) / f"{_INDEX_FILENAME}{_SIDECAR_SUFFIX}"

    def _open(self, name: str) -> _Collection:
        collection = self._loaded.get(name)
        if collection is None:
            collection = self._read(name)
            self._loaded[name] = collection
        return collection

    def _read(self, name: str) -> _Collection:
        index_path = self._index_path(name)
        sidecar_path = self._sidecar_path(name)
        if not sidecar_path.exists() or not index_path.exists():
            raise self._error(name, f"collection {name} not found")
        try:
            sidecar = _Sidecar.from_json(sidecar_path.read_text(encoding="utf-8"))
            data = index_path.read_bytes()
        except (OSError, ValueError, KeyError) as exc:
            raise self._error(name, f"Failed reading collection: {exc}") from exc

        digest = hashlib.sha256(data).hexdigest()
        if digest != sidecar.checksum:
            raise self._error(
                name,
                f"Checksum mismatch between {index_path.name} and sidecar",
            )
        try:
            index = _deserialize(data)
        except (RuntimeError, ValueError) as exc:
            raise self._error(name, f"Failed deserializing index: {exc}") from exc
        if index.d != sidecar.dim:
            raise self._error(
                name,
                f"Index dimension {index.d} does not match sidecar {sidecar.dim}",
            )
        return _Collection(index=index, sidecar=sidecar)

    def _persist(self, name: str, collection: _Collection) -> None:
        data = _serialize(collection.index)
        collection.sidecar.checksum = hashlib.sha256(data).hexdigest()
        collection.sidecar.updated_at = (
            datetime.now(timezone.utc).isoformat(timespec="seconds")
        )
        try:
            _atomic_write(self._index_path(name), data)
            _atomic_write(
                self._sidecar_path(name),
                collection.sidecar.to_json().encode("utf-8"),
            )
        except OSError as exc:
            raise self._error(name, f"Failed persisting collection: {exc}") from exc


def faiss_backend_factory(context: BackendInitContext) -> FaissVectorBackend:
    """Factory registered with the backend registry as ``faiss``."""

    config = context.config or {}
    root = config.get("root")
    if not root:
        raise ValueError("faiss backend requires a 'root' directory")
    return FaissVectorBackend(root=Path(str(root)), logger=context.logger)
