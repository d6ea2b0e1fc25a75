"""Utilities for persisting user uploads on disk."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Final, Sequence
from uuid import uuid4

from fastapi import UploadFile

_FILENAME_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^\w.-]+")
_READ_CHUNK_BYTES: Final[int] = 1024 * 1024


class UploadRejectedError(ValueError):
    """Base class for uploads refused before any processing."""


class UnsupportedFileTypeError(UploadRejectedError):
    """The upload's extension is not in the allowed list."""


class FileTooLargeError(UploadRejectedError):
    """The upload exceeds the configured size limit."""


def sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename preserving the extension when possible."""
    if not filename:
        filename = "upload"
    # Remove any path components and replace disallowed characters.
    sanitized = Path(filename).name
    sanitized = _FILENAME_SAFE_CHARS_RE.sub("_", sanitized)
    sanitized = sanitized.strip("._") or "upload"
    return sanitized


def check_extension(filename: str, allowed_extensions: Sequence[str]) -> str:
    suffix = Path(filename or "").suffix.lower()
    if suffix not in {extension.lower() for extension in allowed_extensions}:
        raise UnsupportedFileTypeError(f"Unsupported file type: {suffix or filename!r}")
    return suffix


async def save_upload(
    upload: UploadFile,
    directory: str | Path,
    *,
    allowed_extensions: Sequence[str] = (".pdf",),
    max_bytes: int | None = None,
) -> Path:
    """Validate and persist an uploaded file under ``directory`` with a unique name."""

    check_extension(upload.filename or "", allowed_extensions)
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)

    sanitized_name = sanitize_filename(upload.filename or "")
    base = Path(sanitized_name).stem or "upload"
    suffix = Path(sanitized_name).suffix
    destination = target_dir / f"{base}-{uuid4().hex}{suffix}"

    written = 0
    try:
        with destination.open("wb") as handle:
            while True:
                block = await upload.read(_READ_CHUNK_BYTES)
                if not block:
                    break
                written += len(block)
                if max_bytes is not None and written > max_bytes:
                    raise FileTooLargeError(
                        f"{upload.filename} exceeds the maximum upload size of {max_bytes} bytes"
                    )
                handle.write(block)
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    await upload.seek(0)

    return destination.resolve()
