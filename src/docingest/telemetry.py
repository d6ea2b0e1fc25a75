"""Structured events describing what happened to a document."""

from __future__ import annotations

import logging
import time
import traceback
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Sequence

LOGGER = logging.getLogger("docingest.telemetry")


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Log ``step`` as a dict; ``MinimalJSONFormatter`` turns it into one JSON object."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    event.update(payload)

    exc_info = None
    if isinstance(exc, BaseException):
        event["exc"] = _format_exception(exc)
        exc_info = (exc.__class__, exc, exc.__traceback__)
    elif exc is not None:
        event["exc"] = str(exc)

    getattr(logger, level.lower(), logger.info)(event, exc_info=exc_info)


def emit_ingest_event(
    step: str,
    *,
    document: str,
    logger: Optional[logging.Logger] = None,
    level: str = "info",
    pages: int | None = None,
    chunks: int | None = None,
    language: str | None = None,
    tool: str | None = None,
    duration_ms: float | None = None,
    error: BaseException | None = None,
) -> None:
    details = {
        "document": document,
        "pages": pages,
        "chunks": chunks,
        "language": language,
        "tool": tool,
    }
    log_event(logger, step, level=level, duration_ms=duration_ms, details=details, exc=error)


def emit_extraction_event(
    *,
    file_name: str,
    tool: str,
    first_page: int,
    pages: Sequence[str],
    duration_ms: float,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Report an extracted page range, listing the pages that came back empty.

    A range where every page is empty is logged as a warning; it usually
    means a scanned document was read with direct text extraction.
    """

    empty_pages = [first_page + offset for offset, text in enumerate(pages) if not text.strip()]
    all_empty = bool(pages) and len(empty_pages) == len(pages)
    log_event(
        logger,
        "ingest.extract",
        level="warning" if all_empty else "info",
        duration_ms=duration_ms,
        details={
            "file": file_name,
            "tool": tool,
            "first_page": first_page,
            "last_page": first_page + len(pages) - 1,
            "empty_pages": empty_pages,
        },
    )


@contextmanager
def traced_duration(
    step: str, *, logger: Optional[logging.Logger] = None, **fields: Any
) -> Iterator[Dict[str, Any]]:
    """Log a single ``step`` event with the outcome and duration of the block.

    Keys the block stores in the yielded dict are added to the event.
    """

    outcome: Dict[str, Any] = {}
    started = time.perf_counter()
    try:
        yield outcome
    except Exception as error:
        log_event(
            logger,
            step,
            level="error",
            duration_ms=(time.perf_counter() - started) * 1000.0,
            details=fields,
            exc=error,
            status="error",
            **outcome,
        )
        raise
    log_event(
        logger,
        step,
        duration_ms=(time.perf_counter() - started) * 1000.0,
        details=fields,
        status="ok",
        **outcome,
    )


__all__ = ["emit_extraction_event", "emit_ingest_event", "log_event", "traced_duration"]
