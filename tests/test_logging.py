import json
import logging

import pytest

from docingest.logging_config import (
    AUDIT_LOGGER_NAME,
    MinimalJSONFormatter,
    build_logging_config,
    configure_logging,
)
from docingest.telemetry import emit_extraction_event, emit_ingest_event, log_event, traced_duration


def _record(msg, **extra) -> logging.LogRecord:
    record = logging.LogRecord("docingest.test", logging.INFO, __file__, 1, msg, None, None)
    record.__dict__.update(extra)
    return record


def test_formatter_merges_dict_messages() -> None:
    payload = json.loads(MinimalJSONFormatter().format(_record({"step": "ingest.page", "pages": 3})))

    assert payload["step"] == "ingest.page"
    assert payload["pages"] == 3
    assert payload["level"] == "INFO"
    assert payload["logger"] == "docingest.test"
    assert payload["ts"].endswith("Z")


def test_formatter_keeps_plain_messages_and_extras() -> None:
    payload = json.loads(MinimalJSONFormatter().format(_record("hello", document="a.pdf")))

    assert payload["message"] == "hello"
    assert payload["document"] == "a.pdf"


def test_audit_events_are_written_as_json(tmp_path) -> None:
    configure_logging(tmp_path, "WARNING")
    logging.getLogger(AUDIT_LOGGER_NAME).info({"event": "ingest.document", "document_name": "a.pdf"})

    lines = (tmp_path / "ingest_audit.log").read_text(encoding="utf-8").splitlines()

    assert json.loads(lines[-1])["document_name"] == "a.pdf"
    assert json.loads(lines[-1])["event"] == "ingest.document"


def test_log_event_includes_duration_and_payload(caplog) -> None:
    logger = logging.getLogger("docingest.test.events")
    with caplog.at_level(logging.INFO, logger="docingest.test.events"):
        log_event(logger, "ingest.pipeline.complete", duration_ms=12.34567, chunks=4)

    event = caplog.records[-1].msg
    assert event == {
        "step": "ingest.pipeline.complete",
        "module": "docingest.test.events",
        "duration_ms": 12.346,
        "chunks": 4,
    }


def test_emit_ingest_event_attaches_error(caplog) -> None:
    logger = logging.getLogger("docingest.test.events")
    with caplog.at_level(logging.WARNING, logger="docingest.test.events"):
        emit_ingest_event(
            "ingest.document.error",
            document="a.pdf",
            logger=logger,
            level="warning",
            error=ValueError("no pages"),
        )

    event = caplog.records[-1].msg
    assert event["details"]["document"] == "a.pdf"
    assert "ValueError: no pages" in event["exc"]


def test_audit_handler_rotates(tmp_path) -> None:
    config = build_logging_config(tmp_path, "info")

    handler = config["handlers"]["ingest_audit"]
    assert handler["class"] == "logging.handlers.RotatingFileHandler"
    assert handler["filename"] == str(tmp_path / "ingest_audit.log")
    assert config["root"]["level"] == "INFO"
    assert config["loggers"][AUDIT_LOGGER_NAME]["propagate"] is False


def test_extraction_event_lists_empty_pages(caplog) -> None:
    logger = logging.getLogger("docingest.test.events")
    with caplog.at_level(logging.INFO, logger="docingest.test.events"):
        emit_extraction_event(
            file_name="scan.pdf",
            tool="ocr",
            first_page=3,
            pages=["text", "", "  "],
            duration_ms=5.0,
            logger=logger,
        )

    record = caplog.records[-1]
    assert record.levelno == logging.INFO
    assert record.msg["details"]["empty_pages"] == [4, 5]
    assert record.msg["details"]["last_page"] == 5


def test_extraction_event_warns_when_every_page_is_empty(caplog) -> None:
    logger = logging.getLogger("docingest.test.events")
    with caplog.at_level(logging.INFO, logger="docingest.test.events"):
        emit_extraction_event(
            file_name="scan.pdf", tool="direct-text", first_page=1, pages=["", ""], duration_ms=1.0, logger=logger
        )

    assert caplog.records[-1].levelno == logging.WARNING


def test_traced_duration_reports_outcome(caplog) -> None:
    logger = logging.getLogger("docingest.test.events")
    with caplog.at_level(logging.INFO, logger="docingest.test.events"):
        with traced_duration("ingest.preview", logger=logger, file="a.pdf") as outcome:
            outcome["pages"] = 2

    event = caplog.records[-1].msg
    assert event["step"] == "ingest.preview"
    assert event["status"] == "ok"
    assert event["pages"] == 2
    assert event["details"] == {"file": "a.pdf"}


def test_traced_duration_reports_errors(caplog) -> None:
    logger = logging.getLogger("docingest.test.events")
    with caplog.at_level(logging.INFO, logger="docingest.test.events"):
        with pytest.raises(ValueError):
            with traced_duration("ingest.preview", logger=logger):
                raise ValueError("bad range")

    record = caplog.records[-1]
    assert record.levelno == logging.ERROR
    assert record.msg["status"] == "error"
