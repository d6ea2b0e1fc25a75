"""Stores for uploads waiting to be ingested by the background worker."""
from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Protocol, Tuple

from filelock import FileLock, Timeout

from .ingest.models import PendingDocument

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from .config import Settings

LOGGER = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0


class PendingStoreError(RuntimeError):
    """The pending-document store could not be read or written."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


class PendingDocumentStore(Protocol):
    def save(self, document: PendingDocument) -> None:
        ...

    def list_pending(self, offset: int, limit: int) -> Tuple[List[PendingDocument], int]:
        ...

    def get(self, document_id: str) -> Optional[PendingDocument]:
        ...

    def remove(self, document_id: str) -> bool:
        ...


def _ordered(documents: Dict[str, PendingDocument]) -> List[PendingDocument]:
    return sorted(documents.values(), key=lambda doc: (doc.created_at, doc.id))


def _check_paging(offset: int, limit: int) -> None:
    if offset < 0 or limit < 0:
        raise ValueError("offset and limit must not be negative")


class InMemoryPendingStore:
    """Pending documents kept in a dict, oldest first.

    Only visible inside the current process, so it suits tests and
    deployments that run the worker next to the API.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, PendingDocument] = {}
        self._lock = threading.Lock()

    def save(self, document: PendingDocument) -> None:
        with self._lock:
            self._documents[document.id] = document

    def list_pending(self, offset: int, limit: int) -> Tuple[List[PendingDocument], int]:
        _check_paging(offset, limit)
        with self._lock:
            ordered = _ordered(self._documents)
        return ordered[offset : offset + limit], len(ordered)

    def get(self, document_id: str) -> Optional[PendingDocument]:
        with self._lock:
            return self._documents.get(document_id)

    def remove(self, document_id: str) -> bool:
        with self._lock:
            return self._documents.pop(document_id, None) is not None


class JsonFilePendingStore:
    """Pending store backed by a JSON file shared by the API and the workers.

    Nothing is cached between calls. Every operation takes an exclusive
    ``<path>.lock`` file lock and reads the file again, and writes go through
    read-modify-write, so several processes can share one queue.
    """

    def __init__(self, path: str | Path, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file_lock = FileLock(f"{self._path}.lock", timeout=lock_timeout)
        with self._locked():
            self._read()

    def save(self, document: PendingDocument) -> None:
        with self._locked():
            documents = self._read()
            documents[document.id] = document
            self._write(documents)

    def list_pending(self, offset: int, limit: int) -> Tuple[List[PendingDocument], int]:
        _check_paging(offset, limit)
        with self._locked():
            ordered = _ordered(self._read())
        return ordered[offset : offset + limit], len(ordered)

    def get(self, document_id: str) -> Optional[PendingDocument]:
        with self._locked():
            return self._read().get(document_id)

    def remove(self, document_id: str) -> bool:
        with self._locked():
            documents = self._read()
            removed = documents.pop(document_id, None) is not None
            if removed:
                self._write(documents)
        return removed

    @contextmanager
    def _locked(self) -> Iterator[None]:
        try:
            self._file_lock.acquire()
        except Timeout as exc:
            raise PendingStoreError(f"Timed out waiting for the lock on {self._path}", cause=exc) from exc
        try:
            yield
        finally:
            self._file_lock.release()

    def _read(self) -> Dict[str, PendingDocument]:
        documents: Dict[str, PendingDocument] = {}
        if not self._path.exists():
            return documents
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PendingStoreError(f"Failed to load pending documents from {self._path}", cause=exc) from exc

        for record in payload.get("documents", []):
            try:
                document = PendingDocument.from_dict(record)
            except (KeyError, TypeError, ValueError) as error:
                LOGGER.warning("Skipping malformed pending record in %s: %s", self._path, error)
                continue
            documents[document.id] = document
        return documents

    def _write(self, documents: Dict[str, PendingDocument]) -> None:
        payload = {"documents": [document.to_dict() for document in _ordered(documents)]}
        tmp_path = self._path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            raise PendingStoreError(f"Failed to write pending documents to {self._path}", cause=exc) from exc


def build_pending_store(settings: "Settings") -> PendingDocumentStore:
    if settings.pending_store_backend == "memory":
        LOGGER.warning(
            "Using the in-memory pending store; uploads are only visible to a worker in this process"
        )
        return InMemoryPendingStore()
    LOGGER.info("Using pending store file %s", settings.pending_store_path)
    return JsonFilePendingStore(settings.pending_store_path)


__all__ = [
    "InMemoryPendingStore",
    "JsonFilePendingStore",
    "PendingDocumentStore",
    "PendingStoreError",
    "build_pending_store",
]
