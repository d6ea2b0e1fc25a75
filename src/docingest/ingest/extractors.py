"""Extraction strategies turning a PDF page range into per-page text."""
from __future__ import annotations

import logging
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol

from ..telemetry import emit_extraction_event
from .backends import OcrBackend, PageCounter, Rasterizer, TextBackend
from .batching import BatchPageProcessor
from .errors import RasterizationError, UnsupportedToolError
from .models import ExtractionRequest, ExtractionTool

LOGGER = logging.getLogger(__name__)


class ExtractionStrategy(Protocol):
    def extract(
        self,
        request: ExtractionRequest,
        processor: BatchPageProcessor,
        cancel_event: threading.Event | None = None,
    ) -> List[str]:
        ...


class DirectTextStrategy:
    """Read the embedded text layer page by page."""

    def __init__(self, backend: TextBackend) -> None:
        self.backend = backend

    def extract(
        self,
        request: ExtractionRequest,
        processor: BatchPageProcessor,
        cancel_event: threading.Event | None = None,
    ) -> List[str]:
        pages = list(range(request.from_page, request.to_page + 1))
        return processor.process(
            pages,
            lambda page: self.backend.extract_page_text(request.file_path, page),
            first_page=request.from_page,
            cancel_event=cancel_event,
        )


class OcrStrategy:
    """Rasterize the range into a scratch directory and OCR every image.

    When ``processor`` is given it replaces the extractor's shared one, so
    OCR can stagger its ``tesseract`` launches without slowing text reads.
    """

    def __init__(
        self,
        rasterizer: Rasterizer,
        ocr_backend: OcrBackend,
        *,
        work_dir: Path | None = None,
        processor: BatchPageProcessor | None = None,
    ) -> None:
        self.rasterizer = rasterizer
        self.ocr_backend = ocr_backend
        self.work_dir = Path(work_dir) if work_dir is not None else None
        self.processor = processor

    def extract(
        self,
        request: ExtractionRequest,
        processor: BatchPageProcessor,
        cancel_event: threading.Event | None = None,
    ) -> List[str]:
        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(
            prefix=f"{Path(request.file_path).stem}-", dir=self.work_dir
        ) as tmpdir:
            images = self.rasterizer.rasterize_pages(
                request.file_path, Path(tmpdir), request.from_page, request.to_page
            )
            if len(images) != request.page_count:
                raise RasterizationError(
                    f"Expected {request.page_count} page images for {request.file_path}, got {len(images)}"
                )
            LOGGER.info("Rasterized %s pages of %s", len(images), request.file_path)
            return (self.processor or processor).process(
                images,
                self.ocr_backend.recognize_text,
                first_page=request.from_page,
                cancel_event=cancel_event,
            )


class PageExtractor:
    """Validate a page range and hand it to the strategy for the requested tool."""

    def __init__(
        self,
        page_counter: PageCounter,
        strategies: Mapping[ExtractionTool, ExtractionStrategy],
        processor: BatchPageProcessor,
    ) -> None:
        self.page_counter = page_counter
        self.strategies: Dict[ExtractionTool, ExtractionStrategy] = dict(strategies)
        self.processor = processor

    def extract_pages(
        self,
        request: ExtractionRequest,
        *,
        total_pages: Optional[int] = None,
        cancel_event: threading.Event | None = None,
    ) -> List[str]:
        """Return the text of every page in the request, in page order."""

        if total_pages is None:
            total_pages = self.page_counter.get_total_pages(Path(request.file_path))
        request.validate(total_pages)

        strategy = self.strategies.get(request.tool)
        if strategy is None:
            raise UnsupportedToolError(f"No extraction strategy configured for {request.tool.value!r}")

        LOGGER.info(
            "Extracting pages %s-%s of %s with %s",
            request.from_page,
            request.to_page,
            request.file_path,
            request.tool.value,
        )
        started = time.perf_counter()
        pages = strategy.extract(request, self.processor, cancel_event)
        emit_extraction_event(
            file_name=Path(request.file_path).name,
            tool=request.tool.value,
            first_page=request.from_page,
            pages=pages,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            logger=LOGGER,
        )
        return pages
