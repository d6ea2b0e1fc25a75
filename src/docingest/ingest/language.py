"""Language detection helpers."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from langdetect import DetectorFactory, LangDetectException, detect

from .models import DocumentChunk

LOGGER = logging.getLogger(__name__)
DetectorFactory.seed = 0

SAMPLE_CHARS = 4000


class LanguageDetector:
    """Tags indexed documents with a best-effort language code."""

    def detect(self, text: str) -> Optional[str]:
        cleaned = text.strip()
        if not cleaned:
            return None
        try:
            language = detect(cleaned[:SAMPLE_CHARS])
            LOGGER.debug("Detected language: %s", language)
            return language
        except LangDetectException:
            LOGGER.info("Unable to determine language for text of length %s", len(text))
            return None

    def detect_chunks(self, chunks: Iterable[DocumentChunk]) -> Optional[str]:
        sample = []
        size = 0
        for chunk in chunks:
            sample.append(chunk.content)
            size += len(chunk.content)
            if size >= SAMPLE_CHARS:
                break
        return self.detect("\n".join(sample))
