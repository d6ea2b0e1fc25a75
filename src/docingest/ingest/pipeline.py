"""High level ingestion pipeline entry point."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from ..telemetry import log_event
from .backends import (
    PageCounter,
    PdfMinerTextBackend,
    PdftoppmRasterizer,
    PdftotextBackend,
    PyPDFPageCounter,
    TesseractOcrBackend,
)
from .batching import BatchPageProcessor
from .chunking import ChunkingConfig, ChunkSegmenter
from .extractors import DirectTextStrategy, OcrStrategy, PageExtractor
from .models import DocumentChunk, ExtractionRequest, ExtractionTool
from .normalization import clean_text

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from ..config import Settings

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _CarryState:
    text: str = ""
    page: int = 0
    provisional_chunk: Optional[DocumentChunk] = None

    def reset(self) -> None:
        self.text = ""
        self.page = 0
        self.provisional_chunk = None


class DocumentPipeline:
    """Turn a PDF into ordered, page-attributed chunks.

    Pages are cleaned and segmented one at a time. The unfinished tail of a
    page is prefixed to the next page so that sentences crossing a page
    break end up in a single chunk.
    """

    def __init__(
        self,
        page_counter: PageCounter,
        extractor: PageExtractor,
        segmenter: ChunkSegmenter,
        *,
        flush_trailing_carry: bool = True,
    ) -> None:
        self.page_counter = page_counter
        self.extractor = extractor
        self.segmenter = segmenter
        self.flush_trailing_carry = flush_trailing_carry

    def process(
        self,
        file_path: Path | str,
        tool: ExtractionTool | str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> List[DocumentChunk]:
        """Return every chunk of ``file_path`` in sequence order."""

        started = time.perf_counter()
        path = Path(file_path)
        tool = ExtractionTool.parse(tool)
        total_pages = self.page_counter.get_total_pages(path)
        LOGGER.info("Processing %s (%s pages) with %s", path.name, total_pages, tool.value)

        request = ExtractionRequest(tool=tool, file_path=path, from_page=1, to_page=total_pages)
        pages = self.extractor.extract_pages(request, total_pages=total_pages, cancel_event=cancel_event)

        chunks = self.fold_pages(pages)
        log_event(
            LOGGER,
            "ingest.pipeline.complete",
            duration_ms=(time.perf_counter() - started) * 1000.0,
            file=path.name,
            tool=tool.value,
            pages=total_pages,
            chunks=len(chunks),
        )
        return chunks

    def fold_pages(self, pages: List[str], *, first_page: int = 1) -> List[DocumentChunk]:
        """Clean and segment page texts, carrying unfinished text forward."""

        chunks: List[DocumentChunk] = []
        carry = _CarryState()

        for offset, raw_text in enumerate(pages):
            page_number = first_page + offset
            cleaned = clean_text(raw_text or "")
            if not cleaned:
                LOGGER.debug("Page %s is empty after cleaning", page_number)
            text = " ".join(part for part in (carry.text, cleaned) if part)
            if not text:
                carry.reset()
                continue

            carry_prefix = len(carry.text) + 1 if carry.text else 0
            carry_page = carry.page if carry.text else page_number
            result = self.segmenter.segment(text, len(chunks), page_number)

            attributed = [
                _with_page(chunk, carry_page if span[0] < carry_prefix else page_number)
                for chunk, span in zip(result.chunks, result.spans)
            ]
            if not attributed:
                carry.reset()
                continue

            if result.carry_over:
                chunks.extend(attributed[:-1])
                carry.provisional_chunk = attributed[-1]
                carry.text = result.carry_over
                carry.page = attributed[-1].page
            else:
                chunks.extend(attributed)
                carry.reset()

        if carry.provisional_chunk is not None:
            if self.flush_trailing_carry:
                chunks.append(carry.provisional_chunk)
            else:
                LOGGER.info(
                    "Dropping trailing fragment of %s characters", len(carry.provisional_chunk.content)
                )
        return chunks


def _with_page(chunk: DocumentChunk, page: int) -> DocumentChunk:
    if chunk.page == page:
        return chunk
    return DocumentChunk(sequence=chunk.sequence, page=page, content=chunk.content)


def build_page_extractor(settings: "Settings") -> PageExtractor:
    """Wire the extraction backends selected by ``settings``."""

    text_backend = PdfMinerTextBackend() if settings.direct_text_backend == "pdfminer" else PdftotextBackend()
    ocr_strategy = OcrStrategy(
        PdftoppmRasterizer(dpi=settings.ocr_dpi),
        TesseractOcrBackend(
            settings.ocr_languages,
            oem=settings.ocr_oem,
            psm=settings.ocr_psm,
            dpi=settings.ocr_dpi,
            preprocess=settings.ocr_preprocess,
        ),
        work_dir=settings.work_dir,
        processor=BatchPageProcessor(settings.batch_size, stagger_seconds=settings.ocr_stagger_seconds),
    )
    return PageExtractor(
        PyPDFPageCounter(),
        {
            ExtractionTool.DIRECT_TEXT: DirectTextStrategy(text_backend),
            ExtractionTool.OCR: ocr_strategy,
        },
        BatchPageProcessor(settings.batch_size),
    )


def build_pipeline(settings: "Settings", extractor: Optional[PageExtractor] = None) -> DocumentPipeline:
    extractor = extractor or build_page_extractor(settings)
    segmenter = ChunkSegmenter(
        ChunkingConfig(max_chunk_size=settings.max_chunk_size, overlap_size=settings.overlap_size)
    )
    return DocumentPipeline(
        extractor.page_counter,
        extractor,
        segmenter,
        flush_trailing_carry=settings.flush_trailing_carry,
    )
