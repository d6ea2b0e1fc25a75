"""Bounded concurrent extraction of page artifacts."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence, TypeVar

from .errors import ConfigurationError, IngestionCancelledError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

PageWorker = Callable[[T], Optional[str]]


class BatchPageProcessor:
    """Run a page worker over artifacts in sequential, internally parallel batches.

    At most ``batch_size`` workers run at once. A batch only starts after
    every worker of the previous batch has returned, so external tools such
    as ``tesseract`` never see more than one batch of processes.
    """

    def __init__(self, batch_size: int, *, stagger_seconds: float = 0.0) -> None:
        if batch_size <= 0:
            raise ConfigurationError("batch_size must be a positive integer")
        self.batch_size = batch_size
        self.stagger_seconds = max(stagger_seconds, 0.0)

    def process(
        self,
        artifacts: Sequence[T],
        worker: PageWorker,
        *,
        first_page: int = 1,
        cancel_event: threading.Event | None = None,
    ) -> List[str]:
        """Return one text per artifact, ``results[i]`` belonging to ``artifacts[i]``.

        A failing worker yields an empty string for its page. ``first_page``
        is only used to report absolute page numbers in logs.
        """

        results: List[str] = [""] * len(artifacts)
        total = len(artifacts)
        for batch_start in range(0, total, self.batch_size):
            if cancel_event is not None and cancel_event.is_set():
                raise IngestionCancelledError(
                    f"Extraction cancelled before page {first_page + batch_start}"
                )
            batch_end = min(batch_start + self.batch_size, total)
            LOGGER.info("Processing batch %d-%d of %d pages", batch_start + 1, batch_end, total)

            with ThreadPoolExecutor(
                max_workers=batch_end - batch_start, thread_name_prefix="page-extract"
            ) as executor:
                futures = {
                    executor.submit(
                        self._run_worker,
                        worker,
                        artifacts[index],
                        first_page + index,
                        (index - batch_start) * self.stagger_seconds,
                    ): index
                    for index in range(batch_start, batch_end)
                }
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
        return results

    @staticmethod
    def _run_worker(worker: PageWorker, artifact: T, page_number: int, delay: float) -> str:
        if delay > 0:
            time.sleep(delay)
        try:
            text = worker(artifact)
        except Exception as error:
            LOGGER.warning("Failed to extract text from page %s: %s", page_number, error)
            return ""
        return text or ""
