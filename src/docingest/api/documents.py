"""API router exposing upload, preview, search and queue endpoints."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from ..ingest.errors import IngestError
from ..services.documents import DocumentService, get_document_service
from ..storage import FileTooLargeError, UnsupportedFileTypeError
from ..vectorstore import VectorStoreUnavailableError

router = APIRouter(prefix="/documents", tags=["documents"])


class UploadResponse(BaseModel):
    """Response body returned after a synchronous upload."""

    file_path: str
    chunks: int
    title: str
    language: Optional[str] = None


class UploadStateModel(BaseModel):
    file_name: str
    status: str
    message: str = ""
    document_id: Optional[str] = None


class BatchUploadResponse(BaseModel):
    upload_states: list[UploadStateModel]


class ExtractResponse(BaseModel):
    pages: list[str]


class SearchRequest(BaseModel):
    """Request body accepted by the search endpoint."""

    query: str = Field(..., min_length=1, description="Text to search for.")
    title: Optional[str] = Field(None, description="Only return chunks of this document.")
    tags: list[str] = Field(default_factory=list, description="Only return chunks carrying every tag.")
    limit: int = Field(5, ge=1, le=100, description="Maximum number of chunks to return.")


class ChunkModel(BaseModel):
    id: str
    content: str
    title: str
    page: int
    sequence: int
    distance: float
    metadata: dict[str, Any]


class SearchResponse(BaseModel):
    chunks: list[ChunkModel]


class PendingDocumentModel(BaseModel):
    id: str
    document_name: str
    document_path: str
    tags: list[str]
    tool: str
    created_at: float


class PendingListResponse(BaseModel):
    items: list[PendingDocumentModel]
    total: int


def _to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, UnsupportedFileTypeError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, FileTooLargeError):
        return HTTPException(status_code=413, detail=str(exc))
    if isinstance(exc, VectorStoreUnavailableError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=422, detail=str(exc))


@router.post("/upload", response_model=UploadResponse)
async def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    tool_use: Optional[str] = Form(None),
    service: DocumentService = Depends(get_document_service),
) -> UploadResponse:
    """Store a PDF and index it before responding."""

    try:
        result = await service.upload_document(
            file,
            title=title,
            tags=tags,
            tool=tool_use or service.settings.extraction_tool,
        )
    except (UnsupportedFileTypeError, FileTooLargeError, IngestError, VectorStoreUnavailableError) as exc:
        raise _to_http_error(exc) from exc
    return UploadResponse(
        file_path=result.file_path,
        chunks=result.chunks,
        title=result.title,
        language=result.language,
    )


@router.post("/batch-upload", response_model=BatchUploadResponse)
async def batch_upload(
    files: list[UploadFile] = File(...),
    tags: Optional[str] = Form(None),
    tool_use: Optional[str] = Form(None),
    service: DocumentService = Depends(get_document_service),
) -> BatchUploadResponse:
    """Store PDFs and queue them for the background worker."""

    if not files:
        raise HTTPException(status_code=400, detail="At least one file must be provided")
    try:
        states = await service.register_uploads(
            files,
            tags=tags,
            tool=tool_use or service.settings.extraction_tool,
        )
    except IngestError as exc:
        raise _to_http_error(exc) from exc
    return BatchUploadResponse(
        upload_states=[
            UploadStateModel(
                file_name=state.file_name,
                status=state.status,
                message=state.message,
                document_id=state.document_id,
            )
            for state in states
        ]
    )


@router.post("/extract", response_model=ExtractResponse)
async def extract_pages(
    file: UploadFile = File(...),
    from_page: int = Form(1),
    to_page: int = Form(1),
    tool_use: Optional[str] = Form(None),
    service: DocumentService = Depends(get_document_service),
) -> ExtractResponse:
    """Return the text of a page range without indexing the document."""

    try:
        pages = await service.extract_text(
            file,
            from_page=from_page,
            to_page=to_page,
            tool=tool_use or service.settings.extraction_tool,
        )
    except (UnsupportedFileTypeError, FileTooLargeError, IngestError) as exc:
        raise _to_http_error(exc) from exc
    return ExtractResponse(pages=pages)


@router.post("/search", response_model=SearchResponse)
def search_documents(
    request: SearchRequest,
    service: DocumentService = Depends(get_document_service),
) -> SearchResponse:
    """Similarity search over indexed chunks."""

    if not request.query.strip():
        raise HTTPException(status_code=422, detail="Query must not be empty")
    try:
        results = service.search(request.query, title=request.title, tags=request.tags, limit=request.limit)
    except VectorStoreUnavailableError as exc:
        raise _to_http_error(exc) from exc
    return SearchResponse(
        chunks=[
            ChunkModel(
                id=result.id,
                content=result.content,
                title=result.title,
                page=result.page,
                sequence=result.sequence,
                distance=result.distance,
                metadata=result.metadata,
            )
            for result in results
        ]
    )


@router.get("/pending", response_model=PendingListResponse)
def list_pending(
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    service: DocumentService = Depends(get_document_service),
) -> PendingListResponse:
    """Documents waiting for the background worker, oldest first."""

    items, total = service.list_pending(offset, limit)
    return PendingListResponse(
        items=[PendingDocumentModel(**document.to_dict()) for document in items],
        total=total,
    )
