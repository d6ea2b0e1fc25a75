"""JSON logging for the API and the worker."""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

AUDIT_LOGGER_NAME = "docingest.ingest.audit"
AUDIT_LOG_FILENAME = "ingest_audit.log"
AUDIT_LOG_MAX_BYTES = 10 * 1024 * 1024
AUDIT_LOG_BACKUPS = 5


class MinimalJSONFormatter(logging.Formatter):
    """Render a record as one line of JSON.

    Dict messages (see ``telemetry.log_event``) are merged into the output
    object. Attributes passed through ``extra=`` are copied as well.
    """

    _RESERVED_KEYS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited
        log_record: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
        }

        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        else:
            message = record.getMessage()
            if message:
                log_record["message"] = message

        if record.exc_info and "exc" not in log_record:
            log_record["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._RESERVED_KEYS and not key.startswith("_"):
                log_record[key] = value

        return json.dumps(log_record, ensure_ascii=False, default=str)


def build_logging_config(log_dir: str | Path, level: str = "INFO") -> dict[str, Any]:
    """Return the ``dictConfig`` mapping used by :func:`configure_logging`."""

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": MinimalJSONFormatter}},
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
            "ingest_audit": {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": str(Path(log_dir) / AUDIT_LOG_FILENAME),
                "maxBytes": AUDIT_LOG_MAX_BYTES,
                "backupCount": AUDIT_LOG_BACKUPS,
                "encoding": "utf-8",
                "formatter": "json",
            },
        },
        "root": {"level": level.upper(), "handlers": ["default"]},
        # Audit records go to their own file only, whatever the root level.
        "loggers": {
            AUDIT_LOGGER_NAME: {
                "level": "INFO",
                "handlers": ["ingest_audit"],
                "propagate": False,
            }
        },
    }


def configure_logging(log_dir: str | Path | None = None, level: str = "INFO") -> None:
    """Install JSON logging on stderr and the rotating ingestion audit log."""

    log_path = Path(log_dir) if log_dir is not None else Path("logs")
    log_path.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(log_path, level))


__all__ = ["AUDIT_LOGGER_NAME", "MinimalJSONFormatter", "build_logging_config", "configure_logging"]
