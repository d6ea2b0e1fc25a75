import logging
import threading

import pytest

from conftest import FakePipeline
from docingest.ingest.errors import ExtractionError, IngestionCancelledError
from docingest.ingest.models import DocumentChunk, ExtractionTool, PendingDocument
from docingest.locks import LockError
from docingest.logging_config import AUDIT_LOGGER_NAME
from docingest.services.ingestion import (
    STATUS_CANCELLED,
    STATUS_FAILED,
    STATUS_INDEXED,
    STATUS_SKIPPED,
    IngestionJobRunner,
)
from docingest.vectorstore import ChunkVectorStore, MockVectorStore


class StaticLanguageDetector:
    def detect_chunks(self, chunks):
        return "en"


class BrokenLockService:
    def try_lock(self, key, ttl_seconds):
        raise LockError("redis is down")

    def unlock(self, key):
        raise AssertionError("unlock must not be called")


class FailingEmbeddingModel:
    def embed_texts(self, texts):
        raise RuntimeError("embedding service unavailable")


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def audit_records():
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    handler = _ListHandler()
    previous_level = logger.level
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    yield handler.records
    logger.removeHandler(handler)
    logger.setLevel(previous_level)


def _document(name: str, created_at: float, tool: ExtractionTool = ExtractionTool.DIRECT_TEXT) -> PendingDocument:
    return PendingDocument(
        id=f"id-{name}",
        document_path=f"/uploads/{name}",
        document_name=name,
        tags=("law",),
        tool=tool,
        created_at=created_at,
    )


def _runner(pending_store, lock_service, pipeline, vector_store, **kwargs) -> IngestionJobRunner:
    return IngestionJobRunner(
        pending_store,
        lock_service,
        pipeline,
        vector_store,
        language_detector=StaticLanguageDetector(),
        **kwargs,
    )


def test_run_once_indexes_pending_documents(pending_store, lock_service, vector_store) -> None:
    pending_store.save(_document("b.pdf", 2.0))
    pending_store.save(_document("a.pdf", 1.0))
    pipeline = FakePipeline()

    report = _runner(pending_store, lock_service, pipeline, vector_store).run_once()

    assert report.fetched == 2
    assert report.total_pending == 2
    assert report.indexed == 2
    assert [outcome.document_name for outcome in report.outcomes] == ["a.pdf", "b.pdf"]
    assert pipeline.calls == ["/uploads/a.pdf", "/uploads/b.pdf"]
    assert pending_store.list_pending(0, 10) == ([], 0)
    assert vector_store.count() == 2
    assert not lock_service.is_locked("a.pdf")

    results = vector_store.query_by_text("Chunk text.", 5, title="a.pdf", tags=["law"])
    assert [result.title for result in results] == ["a.pdf"]
    assert results[0].metadata["language"] == "en"


def test_run_once_with_empty_queue(pending_store, lock_service, vector_store) -> None:
    report = _runner(pending_store, lock_service, FakePipeline(), vector_store).run_once()

    assert report.fetched == 0
    assert report.outcomes == []


def test_fetch_limit_bounds_a_single_run(pending_store, lock_service, vector_store) -> None:
    for index in range(3):
        pending_store.save(_document(f"doc-{index}.pdf", float(index)))

    report = _runner(pending_store, lock_service, FakePipeline(), vector_store, fetch_limit=2).run_once()

    assert report.fetched == 2
    assert report.total_pending == 3
    assert [doc.document_name for doc in pending_store.list_pending(0, 10)[0]] == ["doc-2.pdf"]


def test_locked_document_is_skipped(pending_store, lock_service, vector_store) -> None:
    document = _document("held.pdf", 1.0)
    pending_store.save(document)
    assert lock_service.try_lock("held.pdf", 60)
    pipeline = FakePipeline()

    report = _runner(pending_store, lock_service, pipeline, vector_store).run_once()

    assert report.skipped == 1
    assert report.outcomes[0].status == STATUS_SKIPPED
    assert pipeline.calls == []
    assert vector_store.count() == 0
    assert pending_store.get(document.id) == document


def test_lock_backend_error_skips_document(pending_store, vector_store) -> None:
    pending_store.save(_document("a.pdf", 1.0))

    report = _runner(pending_store, BrokenLockService(), FakePipeline(), vector_store).run_once()

    assert report.outcomes[0].status == STATUS_SKIPPED
    assert report.outcomes[0].error == "redis is down"


def test_failed_document_keeps_entry_and_lock(pending_store, lock_service, vector_store) -> None:
    bad = _document("bad.pdf", 1.0)
    good = _document("good.pdf", 2.0)
    pending_store.save(bad)
    pending_store.save(good)
    pipeline = FakePipeline(errors={"bad": ExtractionError("no text layer")})

    report = _runner(pending_store, lock_service, pipeline, vector_store).run_once()

    assert [outcome.status for outcome in report.outcomes] == [STATUS_FAILED, STATUS_INDEXED]
    assert report.outcomes[0].error == "no text layer"
    assert pending_store.get(bad.id) == bad
    assert pending_store.get(good.id) is None
    assert lock_service.is_locked("bad.pdf")
    assert not lock_service.is_locked("good.pdf")


def test_unexpected_error_is_reported_as_failure(pending_store, lock_service, vector_store) -> None:
    pending_store.save(_document("odd.pdf", 1.0))
    pipeline = FakePipeline(errors={"odd": KeyError("page")})

    report = _runner(pending_store, lock_service, pipeline, vector_store).run_once()

    assert report.failed == 1


def test_persistence_failure_keeps_pending_entry(pending_store, lock_service) -> None:
    document = _document("a.pdf", 1.0)
    pending_store.save(document)
    store = ChunkVectorStore(MockVectorStore(), FailingEmbeddingModel())

    report = _runner(pending_store, lock_service, FakePipeline(), store).run_once()

    assert report.failed == 1
    assert pending_store.get(document.id) == document


def test_reingesting_a_document_replaces_its_chunks(pending_store, lock_service, vector_store) -> None:
    chunks = [
        DocumentChunk(sequence=0, page=1, content="First chunk."),
        DocumentChunk(sequence=1, page=2, content="Second chunk."),
    ]
    runner = _runner(pending_store, lock_service, FakePipeline(chunks), vector_store)

    pending_store.save(_document("a.pdf", 1.0))
    runner.run_once()
    assert vector_store.count() == 2

    pending_store.save(_document("a.pdf", 5.0))
    runner.run_once()
    assert vector_store.count() == 2


def test_cancel_event_stops_before_next_document(pending_store, lock_service, vector_store) -> None:
    pending_store.save(_document("a.pdf", 1.0))
    cancel_event = threading.Event()
    cancel_event.set()

    report = _runner(pending_store, lock_service, FakePipeline(), vector_store, cancel_event=cancel_event).run_once()

    assert report.cancelled is True
    assert report.outcomes == []
    assert pending_store.list_pending(0, 10)[1] == 1


def test_cancelled_pipeline_releases_lock_and_stops_run(pending_store, lock_service, vector_store) -> None:
    pending_store.save(_document("a.pdf", 1.0))
    pending_store.save(_document("b.pdf", 2.0))
    pipeline = FakePipeline(errors={"a.pdf": IngestionCancelledError("shutdown requested")})

    report = _runner(pending_store, lock_service, pipeline, vector_store).run_once()

    assert report.cancelled is True
    assert [outcome.status for outcome in report.outcomes] == [STATUS_CANCELLED]
    assert pipeline.calls == ["/uploads/a.pdf"]
    assert not lock_service.is_locked("a.pdf")
    assert pending_store.list_pending(0, 10)[1] == 2


def test_outcomes_are_written_to_the_audit_log(pending_store, lock_service, vector_store, audit_records) -> None:
    pending_store.save(_document("a.pdf", 1.0))
    pending_store.save(_document("bad.pdf", 2.0))
    pipeline = FakePipeline(errors={"bad": ExtractionError("no text layer")})

    _runner(pending_store, lock_service, pipeline, vector_store).run_once()

    events = [record.msg for record in audit_records]
    assert [(event["document_name"], event["status"], event["chunk_count"]) for event in events] == [
        ("a.pdf", STATUS_INDEXED, 1),
        ("bad.pdf", STATUS_FAILED, 0),
    ]
    assert events[1]["error"] == "no text layer"
