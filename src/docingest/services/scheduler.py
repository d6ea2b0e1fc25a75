"""Fixed-interval job scheduler with cooperative shutdown."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ScheduledJob:
    name: str
    func: Callable[[], object]
    interval_seconds: float
    next_run: float = 0.0


class IntervalScheduler:
    """Run registered jobs every ``interval_seconds`` on one daemon thread.

    A job that raises is logged and runs again at its next tick. Jobs run one
    after another, so a slow job delays the others instead of overlapping
    with itself.
    """

    def __init__(
        self,
        stop_event: Optional[threading.Event] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.stop_event = stop_event or threading.Event()
        self._clock = clock
        self._jobs: List[ScheduledJob] = []
        self._thread: Optional[threading.Thread] = None

    def add_job(
        self,
        name: str,
        func: Callable[[], object],
        interval_seconds: float,
        *,
        run_immediately: bool = True,
    ) -> ScheduledJob:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        first_run = self._clock() if run_immediately else self._clock() + interval_seconds
        job = ScheduledJob(name=name, func=func, interval_seconds=interval_seconds, next_run=first_run)
        self._jobs.append(job)
        LOGGER.info("Registered job %s every %.1fs", name, interval_seconds)
        return job

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self.stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="interval-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                LOGGER.warning("Scheduler thread did not stop within %ss", timeout)
            else:
                self._thread = None

    def run_forever(self) -> None:
        """Tick until the stop event is set."""

        while not self.stop_event.is_set():
            self.run_pending()
            self.stop_event.wait(self._seconds_until_next_run())
        LOGGER.info("Scheduler stopped")

    def run_pending(self) -> int:
        """Run every job that is due and return how many ran."""

        ran = 0
        for job in self._jobs:
            if self.stop_event.is_set():
                break
            now = self._clock()
            if job.next_run > now:
                continue
            self._run_job(job)
            job.next_run += job.interval_seconds
            if job.next_run <= now:
                job.next_run = now + job.interval_seconds
            ran += 1
        return ran

    def _run_job(self, job: ScheduledJob) -> None:
        started = self._clock()
        try:
            job.func()
        except Exception:
            LOGGER.exception("Job %s failed", job.name)
            return
        LOGGER.debug("Job %s finished in %.3fs", job.name, self._clock() - started)

    def _seconds_until_next_run(self) -> float:
        if not self._jobs:
            return 1.0
        upcoming = min(job.next_run for job in self._jobs)
        return max(upcoming - self._clock(), 0.0)


__all__ = ["IntervalScheduler", "ScheduledJob"]
