"""Shared fakes and fixtures for the ingestion test-suite."""
from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

# Keep the JSON log files written at application import out of the working tree.
os.environ.setdefault("DOCINGEST_LOG_DIR", tempfile.mkdtemp(prefix="docingest-logs-"))

from docingest.config import Settings, reset_settings_cache
from docingest.embeddings import HashEmbeddingModel
from docingest.ingest.batching import BatchPageProcessor
from docingest.ingest.chunking import ChunkingConfig, ChunkSegmenter
from docingest.ingest.errors import ExtractionError, OcrError, PageCountError, RasterizationError
from docingest.ingest.extractors import DirectTextStrategy, OcrStrategy, PageExtractor
from docingest.ingest.models import DocumentChunk, ExtractionTool
from docingest.ingest.pipeline import DocumentPipeline
from docingest.locks import InMemoryLockService
from docingest.pending import InMemoryPendingStore
from docingest.vectorstore import ChunkVectorStore, MockVectorStore


class FakePageCounter:
    def __init__(self, total_pages: int = 1, *, error: Exception | None = None) -> None:
        self.total_pages = total_pages
        self.error = error
        self.calls: List[Path] = []

    def get_total_pages(self, path: Path) -> int:
        self.calls.append(Path(path))
        if self.error is not None:
            raise PageCountError(f"cannot count pages of {path}", cause=self.error)
        return self.total_pages


class FakeTextBackend:
    """Return canned page texts; pages listed in ``failing`` raise ``ExtractionError``."""

    def __init__(self, pages: Sequence[str], *, failing: Sequence[int] = ()) -> None:
        self.pages = list(pages)
        self.failing = set(failing)
        self.requested: List[int] = []
        self._lock = threading.Lock()

    def extract_page_text(self, path: Path, page_number: int) -> str:
        with self._lock:
            self.requested.append(page_number)
        if page_number in self.failing:
            raise ExtractionError(f"no text layer on page {page_number}")
        return self.pages[page_number - 1]


class FakeRasterizer:
    """Write one placeholder PNG per page the way ``pdftoppm`` names them."""

    def __init__(self, *, error: Exception | None = None, drop_last: bool = False) -> None:
        self.error = error
        self.drop_last = drop_last
        self.output_dirs: List[Path] = []

    def rasterize_pages(self, path: Path, output_dir: Path, first_page: int, last_page: int) -> List[Path]:
        self.output_dirs.append(Path(output_dir))
        if self.error is not None:
            raise RasterizationError("pdftoppm failed", cause=self.error)
        width = len(str(last_page))
        images = []
        for page in range(first_page, last_page + 1):
            image = Path(output_dir) / f"page-{page:0{width}d}.png"
            image.write_bytes(b"png")
            images.append(image)
        return images[:-1] if self.drop_last else images


class FakeOcrBackend:
    """Recognise ``page-N.png`` as ``"ocr text N"``; pages in ``failing`` raise ``OcrError``."""

    def __init__(self, *, failing: Sequence[int] = ()) -> None:
        self.failing = set(failing)

    def recognize_text(self, image_path: Path) -> str:
        page = int(Path(image_path).stem.split("-")[-1])
        if page in self.failing:
            raise OcrError(f"tesseract failed on page {page}")
        return f"ocr text {page}"


class FakePipeline:
    """Stand-in for :class:`DocumentPipeline` used by the runner tests."""

    def __init__(
        self,
        chunks: Optional[List[DocumentChunk]] = None,
        *,
        errors: Optional[Dict[str, Exception]] = None,
    ) -> None:
        self.chunks = chunks if chunks is not None else [DocumentChunk(sequence=0, page=1, content="Chunk text.")]
        self.errors = errors or {}
        self.calls: List[str] = []

    def process(self, file_path, tool, *, cancel_event=None) -> List[DocumentChunk]:
        self.calls.append(str(file_path))
        for marker, error in self.errors.items():
            if marker in str(file_path):
                raise error
        return list(self.chunks)


def make_extractor(
    pages: Sequence[str],
    *,
    batch_size: int = 2,
    failing: Sequence[int] = (),
    ocr_failing: Sequence[int] = (),
    work_dir: Path | None = None,
) -> PageExtractor:
    return PageExtractor(
        FakePageCounter(len(pages)),
        {
            ExtractionTool.DIRECT_TEXT: DirectTextStrategy(FakeTextBackend(pages, failing=failing)),
            ExtractionTool.OCR: OcrStrategy(
                FakeRasterizer(), FakeOcrBackend(failing=ocr_failing), work_dir=work_dir
            ),
        },
        BatchPageProcessor(batch_size),
    )


def make_pipeline(
    pages: Sequence[str],
    *,
    max_chunk_size: int = 1024,
    overlap_size: int = 128,
    flush_trailing_carry: bool = True,
) -> DocumentPipeline:
    extractor = make_extractor(pages)
    return DocumentPipeline(
        extractor.page_counter,
        extractor,
        ChunkSegmenter(ChunkingConfig(max_chunk_size=max_chunk_size, overlap_size=overlap_size)),
        flush_trailing_carry=flush_trailing_carry,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        work_dir=tmp_path / "work",
        upload_dir=tmp_path / "uploads",
        chroma_persist_dir=tmp_path / "chroma",
        log_dir=tmp_path / "logs",
        pending_store_path=tmp_path / "pending.json",
        ocr_stagger_seconds=0.0,
    )


@pytest.fixture
def vector_store() -> ChunkVectorStore:
    return ChunkVectorStore(MockVectorStore(), HashEmbeddingModel(dimension=16))


@pytest.fixture
def pending_store() -> InMemoryPendingStore:
    return InMemoryPendingStore()


@pytest.fixture
def lock_service() -> InMemoryLockService:
    return InMemoryLockService()


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    reset_settings_cache()
    yield
    reset_settings_cache()
