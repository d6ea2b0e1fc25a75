"""Text normalisation utilities."""
from __future__ import annotations

import re

_REMOVED_CHARACTERS = ("\x00", "\ufffd", "\x1b", "\r")
# OCR picks these up from logos and footnote marks.
_GARBAGE_GLYPHS = ("\uf8ff", "\u2021", "\u2020")
_MULTIPLE_SPACES_RE = re.compile(r" {2,}")


def clean_text(text: str) -> str:
    """Strip control characters and OCR noise from extracted page text."""

    cleaned = text
    for character in _REMOVED_CHARACTERS:
        cleaned = cleaned.replace(character, "")
    cleaned = cleaned.replace("\f", "\n")
    for glyph in _GARBAGE_GLYPHS:
        cleaned = cleaned.replace(glyph, "")
    cleaned = _MULTIPLE_SPACES_RE.sub(" ", cleaned)
    return cleaned.strip()
