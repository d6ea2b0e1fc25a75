"""Background worker that periodically ingests pending documents."""
from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Optional, Sequence

from .config import Settings, get_settings
from .ingest.pipeline import build_pipeline
from .locks import build_lock_service
from .logging_config import configure_logging
from .pending import build_pending_store
from .services.ingestion import IngestionJobRunner
from .services.scheduler import IntervalScheduler
from .vectorstore import build_vector_store

LOGGER = logging.getLogger(__name__)

INGEST_JOB_NAME = "ingest-pending-documents"


def build_runner(settings: Settings, cancel_event: Optional[threading.Event] = None) -> IngestionJobRunner:
    return IngestionJobRunner(
        build_pending_store(settings),
        build_lock_service(settings),
        build_pipeline(settings),
        build_vector_store(settings),
        lock_ttl_seconds=settings.lock_ttl_seconds,
        fetch_limit=settings.pending_fetch_limit,
        cancel_event=cancel_event,
    )


def install_signal_handlers(stop_event: threading.Event) -> None:
    def _handle(signum: int, _frame: object) -> None:
        LOGGER.info("Received %s; shutting down", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ingest pending documents on a fixed interval.")
    parser.add_argument("--once", action="store_true", help="process the pending queue once and exit")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_dir, settings.log_level)

    stop_event = threading.Event()
    runner = build_runner(settings, cancel_event=stop_event)

    if args.once:
        report = runner.run_once()
        return 1 if report.failed else 0

    install_signal_handlers(stop_event)
    scheduler = IntervalScheduler(stop_event)
    scheduler.add_job(INGEST_JOB_NAME, runner.run_once, settings.poll_interval_seconds)
    LOGGER.info("Worker started; polling every %.0fs", settings.poll_interval_seconds)
    scheduler.run_forever()
    return 0


if __name__ == "__main__":  # pragma: no cover - manual entry point
    raise SystemExit(main())
