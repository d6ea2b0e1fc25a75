"""Background ingestion of pending documents."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from ..ingest.errors import IngestError, IngestionCancelledError
from ..ingest.language import LanguageDetector
from ..ingest.models import DocumentMetadata, PendingDocument
from ..ingest.pipeline import DocumentPipeline
from ..locks import LockError, LockService
from ..logging_config import AUDIT_LOGGER_NAME
from ..pending import PendingDocumentStore
from ..telemetry import emit_ingest_event
from ..vectorstore import ChunkVectorStore

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

DEFAULT_LOCK_TTL_SECONDS = 20 * 60
DEFAULT_FETCH_LIMIT = 100

STATUS_INDEXED = "indexed"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"


@dataclass(slots=True)
class DocumentOutcome:
    document_id: str
    document_name: str
    status: str
    chunks: int = 0
    error: Optional[str] = None


@dataclass(slots=True)
class IngestionRunReport:
    """What a single pass over the pending queue did."""

    fetched: int = 0
    total_pending: int = 0
    outcomes: List[DocumentOutcome] = field(default_factory=list)
    cancelled: bool = False

    def _count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def indexed(self) -> int:
        return self._count(STATUS_INDEXED)

    @property
    def skipped(self) -> int:
        return self._count(STATUS_SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(STATUS_FAILED)


class IngestionJobRunner:
    """Drain pending documents into the vector store.

    Each document is processed under a lease lock named after the document,
    so concurrent workers never index the same document at the same time.
    On failure the pending entry is kept and the lease is left to expire,
    which delays the retry by at most ``lock_ttl_seconds``.
    """

    def __init__(
        self,
        pending_store: PendingDocumentStore,
        lock_service: LockService,
        pipeline: DocumentPipeline,
        vector_store: ChunkVectorStore,
        *,
        language_detector: Optional[LanguageDetector] = None,
        lock_ttl_seconds: float = DEFAULT_LOCK_TTL_SECONDS,
        fetch_limit: int = DEFAULT_FETCH_LIMIT,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.pending_store = pending_store
        self.lock_service = lock_service
        self.pipeline = pipeline
        self.vector_store = vector_store
        self.language_detector = language_detector or LanguageDetector()
        self.lock_ttl_seconds = lock_ttl_seconds
        self.fetch_limit = fetch_limit
        self.cancel_event = cancel_event or threading.Event()

    def run_once(self) -> IngestionRunReport:
        documents, total = self.pending_store.list_pending(0, self.fetch_limit)
        report = IngestionRunReport(fetched=len(documents), total_pending=total)
        if not documents:
            LOGGER.debug("No pending documents")
            return report

        LOGGER.info("Processing %s of %s pending documents", len(documents), total)
        for document in documents:
            if self.cancel_event.is_set():
                LOGGER.info("Shutdown requested; stopping ingestion run")
                report.cancelled = True
                break
            outcome = self.process_document(document)
            report.outcomes.append(outcome)
            if outcome.status == STATUS_CANCELLED:
                report.cancelled = True
                break

        LOGGER.info(
            "Ingestion run finished: %s indexed, %s skipped, %s failed",
            report.indexed,
            report.skipped,
            report.failed,
        )
        return report

    def process_document(self, document: PendingDocument) -> DocumentOutcome:
        name = document.document_name
        try:
            acquired = self.lock_service.try_lock(name, self.lock_ttl_seconds)
        except LockError as error:
            LOGGER.warning("Could not acquire lock for %s: %s", name, error)
            return self._record(document, STATUS_SKIPPED, error=str(error))
        if not acquired:
            LOGGER.info("Document %s is locked by another worker; skipping", name)
            return self._record(document, STATUS_SKIPPED, error="locked")

        started = time.perf_counter()
        emit_ingest_event("ingest.document.start", document=name, logger=LOGGER, tool=document.tool.value)
        try:
            chunks = self.pipeline.process(document.document_path, document.tool, cancel_event=self.cancel_event)
        except IngestionCancelledError as error:
            self._release(name)
            return self._record(document, STATUS_CANCELLED, error=str(error))
        except IngestError as error:
            LOGGER.warning("Failed to process document %s: %s", name, error)
            return self._fail(document, error, started)
        except Exception as error:
            LOGGER.exception("Unexpected error while processing document %s", name)
            return self._fail(document, error, started)

        metadata = DocumentMetadata(
            title=name,
            tags=tuple(document.tags),
            file_path=document.document_path,
            language=self.language_detector.detect_chunks(chunks),
        )
        try:
            self.vector_store.remove_documents(metadata)
            self.vector_store.save_chunks(metadata, chunks)
            self.pending_store.remove(document.id)
        except Exception as error:
            LOGGER.exception("Failed to persist chunks of document %s", name)
            return self._fail(document, error, started)

        self._release(name)
        emit_ingest_event(
            "ingest.document.complete",
            document=name,
            logger=LOGGER,
            chunks=len(chunks),
            language=metadata.language,
            tool=document.tool.value,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return self._record(document, STATUS_INDEXED, chunks=len(chunks))

    def _release(self, name: str) -> None:
        try:
            self.lock_service.unlock(name)
        except LockError as error:
            LOGGER.warning("Failed to release lock for %s: %s", name, error)

    def _fail(self, document: PendingDocument, error: Exception, started: float) -> DocumentOutcome:
        emit_ingest_event(
            "ingest.document.error",
            document=document.document_name,
            logger=LOGGER,
            level="warning",
            tool=document.tool.value,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            error=error,
        )
        return self._record(document, STATUS_FAILED, error=str(error))

    def _record(
        self,
        document: PendingDocument,
        status: str,
        *,
        chunks: int = 0,
        error: Optional[str] = None,
    ) -> DocumentOutcome:
        outcome = DocumentOutcome(
            document_id=document.id,
            document_name=document.document_name,
            status=status,
            chunks=chunks,
            error=error,
        )
        AUDIT_LOGGER.info(
            {
                "event": "ingest.document",
                "document_id": document.id,
                "document_name": document.document_name,
                "status": status,
                "chunk_count": chunks,
                "error": error,
            }
        )
        return outcome


__all__ = ["DocumentOutcome", "IngestionJobRunner", "IngestionRunReport"]
