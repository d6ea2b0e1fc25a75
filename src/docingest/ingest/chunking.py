"""Chunking utilities for breaking page text into overlapping, embedding-friendly units."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

from .errors import ConfigurationError
from .models import DocumentChunk, SegmentResult

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_SIZE = 1024
DEFAULT_OVERLAP_SIZE = 128
SENTENCE_TERMINATORS = frozenset(".?!")
MAX_STUCK_ITERATIONS = 5


@dataclass(frozen=True, slots=True)
class ChunkingConfig:
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE
    overlap_size: int = DEFAULT_OVERLAP_SIZE

    def __post_init__(self) -> None:
        if self.max_chunk_size <= 0:
            raise ConfigurationError("max_chunk_size must be a positive integer")
        if self.overlap_size <= 0:
            raise ConfigurationError("overlap_size must be a positive integer")
        if self.overlap_size >= self.max_chunk_size:
            raise ConfigurationError("overlap_size must be smaller than max_chunk_size")

    @property
    def min_progress(self) -> int:
        return max(self.max_chunk_size // 10, 1)


class ChunkSegmenter:
    """Split text into overlapping chunks cut at sentence or word boundaries.

    Each cut prefers the last sentence terminator inside the window, then the
    last space, and otherwise falls back to half a window. The next chunk
    starts ``overlap_size`` characters before the cut. If the start position
    keeps failing to advance by ``min_progress``, the remaining text is
    flushed as one chunk so the loop always terminates.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def segment(self, text: str, start_number: int, page_number: int) -> SegmentResult:
        """Return the chunks of ``text`` and the tail that may still grow.

        The returned ``carry_over`` is empty only when the text was flushed
        by the stuck-loop guard.
        """

        max_size = self.config.max_chunk_size
        if len(text) <= max_size:
            content = text.strip()
            if not content:
                return SegmentResult(chunks=(), carry_over=text)
            start, end = _stripped_bounds(text, 0, len(text))
            chunk = DocumentChunk(sequence=start_number, page=page_number, content=content)
            return SegmentResult(chunks=(chunk,), carry_over=text, spans=((start, end),))

        chunks: List[DocumentChunk] = []
        spans: List[Tuple[int, int]] = []
        text_length = len(text)
        number = start_number
        carry_over = ""
        position = 0
        stuck_count = 0

        while position < text_length:
            previous_position = position
            window_end = position + max_size

            if window_end >= text_length:
                content = text[position:].strip()
                if content:
                    chunks.append(DocumentChunk(sequence=number, page=page_number, content=content))
                    spans.append(_stripped_bounds(text, position, text_length))
                    carry_over = content
                break

            cut = self._find_cut(text, position, window_end)
            content = text[position:cut].strip()
            if content:
                chunks.append(DocumentChunk(sequence=number, page=page_number, content=content))
                spans.append(_stripped_bounds(text, position, cut))
                number += 1

            position = max(cut - self.config.overlap_size, 0)

            min_progress = self.config.min_progress
            if position - previous_position < min_progress:
                position = previous_position + min_progress
                stuck_count += 1
                if stuck_count > MAX_STUCK_ITERATIONS:
                    LOGGER.warning(
                        "Chunking made no progress near offset %s on page %s; flushing remaining text",
                        position,
                        page_number,
                    )
                    remainder = text[position:].strip()
                    if remainder:
                        chunks.append(DocumentChunk(sequence=number, page=page_number, content=remainder))
                        spans.append(_stripped_bounds(text, position, text_length))
                    carry_over = ""
                    break
            else:
                stuck_count = 0

        LOGGER.debug(
            "Segmented %s characters of page %s into %s chunks", text_length, page_number, len(chunks)
        )
        return SegmentResult(chunks=tuple(chunks), carry_over=carry_over, spans=tuple(spans))

    def _find_cut(self, text: str, start: int, window_end: int) -> int:
        for index in range(window_end - 1, start, -1):
            if text[index] in SENTENCE_TERMINATORS:
                return index + 1
        for index in range(window_end, start, -1):
            if text[index] == " ":
                return index
        return start + self.config.max_chunk_size // 2


def _stripped_bounds(text: str, start: int, end: int) -> Tuple[int, int]:
    raw = text[start:end]
    leading = len(raw) - len(raw.lstrip())
    trailing = len(raw) - len(raw.rstrip())
    return start + leading, end - trailing
