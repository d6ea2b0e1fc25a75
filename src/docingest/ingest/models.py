"""Data models used by the ingestion pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from .errors import InvalidPageRangeError, UnsupportedToolError


class ExtractionTool(str, Enum):
    """Supported strategies for turning PDF pages into text."""

    DIRECT_TEXT = "direct-text"
    OCR = "ocr"

    @classmethod
    def parse(cls, value: "str | ExtractionTool") -> "ExtractionTool":
        """Return the tool for ``value``.

        ``"pdftotext"`` is accepted as a legacy spelling of direct text
        extraction, since older clients still submit it.
        """

        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        if normalized == "pdftotext":
            return cls.DIRECT_TEXT
        try:
            return cls(normalized)
        except ValueError as exc:
            raise UnsupportedToolError(f"Unsupported extraction tool: {value!r}") from exc


@dataclass(frozen=True, slots=True)
class DocumentChunk:
    """A bounded slice of document text tagged with its position."""

    sequence: int
    page: int
    content: str


@dataclass(frozen=True, slots=True)
class ExtractionRequest:
    """Inclusive page range to extract from ``file_path`` with ``tool``."""

    tool: ExtractionTool
    file_path: Path
    from_page: int
    to_page: int

    @property
    def page_count(self) -> int:
        return self.to_page - self.from_page + 1

    def validate(self, total_pages: int) -> None:
        if self.from_page < 1 or self.to_page > total_pages or self.from_page > self.to_page:
            raise InvalidPageRangeError(
                f"Invalid page range {self.from_page}-{self.to_page} for {total_pages} pages"
            )


@dataclass(frozen=True, slots=True)
class SegmentResult:
    """Output of a single segmentation pass.

    ``spans`` holds the ``(start, end)`` offsets of each chunk inside the
    segmented text, in the same order as ``chunks``.
    """

    chunks: Tuple[DocumentChunk, ...]
    carry_over: str
    spans: Tuple[Tuple[int, int], ...] = ()


@dataclass(frozen=True, slots=True)
class PendingDocument:
    """A stored upload waiting for background ingestion."""

    id: str
    document_path: str
    document_name: str
    tags: Tuple[str, ...] = ()
    tool: ExtractionTool = ExtractionTool.DIRECT_TEXT
    created_at: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "document_path": self.document_path,
            "document_name": self.document_name,
            "tags": list(self.tags),
            "tool": self.tool.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "PendingDocument":
        return cls(
            id=str(payload["id"]),
            document_path=str(payload["document_path"]),
            document_name=str(payload["document_name"]),
            tags=tuple(str(tag) for tag in payload.get("tags", ())),
            tool=ExtractionTool.parse(payload.get("tool", ExtractionTool.DIRECT_TEXT)),
            created_at=float(payload.get("created_at", 0.0)),
        )


@dataclass(slots=True)
class DocumentMetadata:
    """Identity and labels of a document stored in the vector index."""

    title: str = ""
    tags: Tuple[str, ...] = field(default_factory=tuple)
    file_path: str = ""
    language: Optional[str] = None
