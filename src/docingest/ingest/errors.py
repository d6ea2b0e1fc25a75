"""Exceptions raised by the ingestion pipeline."""
from __future__ import annotations


class IngestError(RuntimeError):
    """Base class for failures that abort processing of a document."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


class PageCountError(IngestError):
    """The number of pages in a PDF could not be determined."""


class InvalidPageRangeError(IngestError):
    """The requested page range falls outside the document."""


class UnsupportedToolError(IngestError):
    """An unknown extraction tool was requested."""


class RasterizationError(IngestError):
    """Rendering PDF pages to images failed."""


class ExtractionError(IngestError):
    """Direct text extraction failed for a single page."""


class OcrError(IngestError):
    """OCR failed for a single page image."""


class IngestionCancelledError(IngestError):
    """Processing stopped because shutdown was requested."""


class ConfigurationError(ValueError):
    """Invalid tunables were supplied."""
