"""Document uploads, previews and search on top of the ingestion pipeline."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from ..config import Settings, get_settings
from ..ingest.extractors import PageExtractor
from ..ingest.language import LanguageDetector
from ..ingest.models import (
    DocumentChunk,
    DocumentMetadata,
    ExtractionRequest,
    ExtractionTool,
    PendingDocument,
)
from ..ingest.pipeline import DocumentPipeline, build_page_extractor, build_pipeline
from ..logging_config import AUDIT_LOGGER_NAME
from ..pending import PendingDocumentStore, build_pending_store
from ..storage import UploadRejectedError, save_upload
from ..telemetry import emit_ingest_event, traced_duration
from ..vectorstore import ChunkSearchResult, ChunkVectorStore, get_vector_store

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

UPLOAD_STATUS_PENDING = "pending"
UPLOAD_STATUS_REJECTED = "rejected"
UPLOAD_STATUS_FAILED = "failed"


@dataclass(slots=True)
class UploadState:
    """Per-file result of a batch upload."""

    file_name: str
    status: str
    message: str = ""
    document_id: Optional[str] = None


@dataclass(slots=True)
class UploadResult:
    file_path: str
    chunks: int
    title: str
    language: Optional[str] = None


def normalize_tags(tags: Iterable[str] | str | None) -> Tuple[str, ...]:
    """Split comma separated tags, dropping blanks and duplicates in order."""

    if tags is None:
        return ()
    raw = tags.split(",") if isinstance(tags, str) else [part for tag in tags for part in str(tag).split(",")]
    seen: List[str] = []
    for tag in raw:
        cleaned = tag.strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return tuple(seen)


class DocumentService:
    """High level orchestration behind the ``/documents`` API."""

    def __init__(
        self,
        settings: Settings,
        *,
        pending_store: PendingDocumentStore,
        vector_store: ChunkVectorStore,
        extractor: Optional[PageExtractor] = None,
        pipeline: Optional[DocumentPipeline] = None,
        language_detector: Optional[LanguageDetector] = None,
    ) -> None:
        self.settings = settings
        self.pending_store = pending_store
        self.vector_store = vector_store
        self.extractor = extractor or build_page_extractor(settings)
        self.pipeline = pipeline or build_pipeline(settings, self.extractor)
        self.language_detector = language_detector or LanguageDetector()

    async def _save(self, upload: UploadFile, directory: Path) -> Path:
        return await save_upload(
            upload,
            directory,
            allowed_extensions=self.settings.allowed_extensions,
            max_bytes=self.settings.max_upload_bytes,
        )

    async def register_uploads(
        self,
        uploads: Sequence[UploadFile],
        *,
        tags: Iterable[str] | str | None = None,
        tool: ExtractionTool | str = ExtractionTool.DIRECT_TEXT,
    ) -> List[UploadState]:
        """Save every upload and queue it for the background worker."""

        extraction_tool = ExtractionTool.parse(tool)
        tag_tuple = normalize_tags(tags)
        states: List[UploadState] = []
        for upload in uploads:
            file_name = Path(upload.filename or "upload").name
            try:
                destination = await self._save(upload, self.settings.upload_dir)
            except UploadRejectedError as error:
                LOGGER.info("Rejected upload %s: %s", file_name, error)
                states.append(UploadState(file_name=file_name, status=UPLOAD_STATUS_REJECTED, message=str(error)))
                continue
            except OSError as error:
                LOGGER.warning("Failed to store upload %s: %s", file_name, error)
                states.append(UploadState(file_name=file_name, status=UPLOAD_STATUS_FAILED, message=str(error)))
                continue

            document = PendingDocument(
                id=uuid.uuid4().hex,
                document_path=str(destination),
                document_name=file_name,
                tags=tag_tuple,
                tool=extraction_tool,
                created_at=time.time(),
            )
            self.pending_store.save(document)
            AUDIT_LOGGER.info(
                {
                    "event": "upload.registered",
                    "document_id": document.id,
                    "document_name": file_name,
                    "tool": extraction_tool.value,
                }
            )
            states.append(
                UploadState(
                    file_name=file_name,
                    status=UPLOAD_STATUS_PENDING,
                    message="queued for ingestion",
                    document_id=document.id,
                )
            )
        return states

    async def upload_document(
        self,
        upload: UploadFile,
        *,
        title: str | None = None,
        tags: Iterable[str] | str | None = None,
        tool: ExtractionTool | str = ExtractionTool.DIRECT_TEXT,
    ) -> UploadResult:
        """Save, process and index a document before returning."""

        extraction_tool = ExtractionTool.parse(tool)
        destination = await self._save(upload, self.settings.upload_dir)
        document_title = (title or "").strip() or Path(upload.filename or destination.name).name
        size_bytes = destination.stat().st_size
        LOGGER.info("Saved upload %s (%s bytes) to %s", document_title, size_bytes, destination)

        started = time.perf_counter()
        chunks = await run_in_threadpool(self.pipeline.process, destination, extraction_tool)
        metadata = DocumentMetadata(
            title=document_title,
            tags=normalize_tags(tags),
            file_path=str(destination),
            language=self.language_detector.detect_chunks(chunks),
        )
        await run_in_threadpool(self._replace_chunks, metadata, chunks)

        emit_ingest_event(
            "ingest.upload.complete",
            document=document_title,
            logger=LOGGER,
            chunks=len(chunks),
            language=metadata.language,
            tool=extraction_tool.value,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        AUDIT_LOGGER.info(
            {
                "event": "ingest.upload",
                "document_name": document_title,
                "chunk_count": len(chunks),
            }
        )
        return UploadResult(
            file_path=str(destination),
            chunks=len(chunks),
            title=document_title,
            language=metadata.language,
        )

    def _replace_chunks(self, metadata: DocumentMetadata, chunks: List[DocumentChunk]) -> None:
        self.vector_store.remove_documents(metadata)
        self.vector_store.save_chunks(metadata, chunks)

    async def extract_text(
        self,
        upload: UploadFile,
        *,
        from_page: int,
        to_page: int,
        tool: ExtractionTool | str = ExtractionTool.DIRECT_TEXT,
    ) -> List[str]:
        """Return the raw text of ``from_page``..``to_page`` without indexing anything."""

        extraction_tool = ExtractionTool.parse(tool)
        destination = await self._save(upload, self.settings.work_dir)
        try:
            request = ExtractionRequest(
                tool=extraction_tool,
                file_path=destination,
                from_page=from_page,
                to_page=to_page,
            )
            with traced_duration(
                "ingest.preview", logger=LOGGER, file=destination.name, tool=extraction_tool.value
            ) as outcome:
                pages = await run_in_threadpool(self.extractor.extract_pages, request)
                outcome["pages"] = len(pages)
            return pages
        finally:
            destination.unlink(missing_ok=True)

    def search(
        self,
        query: str,
        *,
        title: str | None = None,
        tags: Iterable[str] | str | None = None,
        limit: int = 5,
    ) -> List[ChunkSearchResult]:
        return self.vector_store.query_by_text(query, limit, title=title or None, tags=normalize_tags(tags))

    def list_pending(self, offset: int = 0, limit: int = 20) -> Tuple[List[PendingDocument], int]:
        return self.pending_store.list_pending(offset, limit)


@lru_cache()
def get_document_service() -> DocumentService:
    """FastAPI dependency returning the shared :class:`DocumentService` instance."""

    settings = get_settings()
    return DocumentService(
        settings,
        pending_store=build_pending_store(settings),
        vector_store=get_vector_store(),
    )


def reset_document_service_cache() -> None:
    get_document_service.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "DocumentService",
    "UploadResult",
    "UploadState",
    "get_document_service",
    "normalize_tags",
    "reset_document_service_cache",
]
