from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from stockflow.core.dates import utc_now
from stockflow.core.errors import AlreadyRunning, StockflowError

logger = logging.getLogger(__name__)


@dataclass
class IntervalJob:
    name: str
    interval: timedelta
    func: Callable[[], None]
    jitter_seconds: int = 0
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None


class Scheduler:
    """Runs interval jobs from a single polling thread."""

    def __init__(self, *, poll_seconds: float = 1, clock: Callable[[], datetime] = utc_now):
        self._jobs: list[IntervalJob] = []
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._poll_seconds = max(0.01, float(poll_seconds))
        self._clock = clock

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add_interval_job(
        self,
        name: str,
        interval: timedelta,
        func: Callable[[], None],
        *,
        jitter_seconds: int = 0,
        run_immediately: bool = False,
    ) -> IntervalJob:
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")
        job = IntervalJob(
            name=name,
            interval=interval,
            func=func,
            jitter_seconds=max(0, int(jitter_seconds)),
        )
        job.next_run = self._clock() if run_immediately else self._schedule_next(job)
        with self._lock:
            self._jobs.append(job)
        return job

    def jobs(self) -> list[IntervalJob]:
        with self._lock:
            return list(self._jobs)

    def _schedule_next(self, job: IntervalJob) -> datetime:
        run_at = self._clock() + job.interval
        if job.jitter_seconds:
            run_at += timedelta(seconds=secrets.randbelow(job.jitter_seconds + 1))
        return run_at

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("Scheduler started with %d job(s).", len(self._jobs))

    def stop(self) -> None:
        if not self._thread:
            return
        self._stop_event.set()
        self._thread.join(timeout=self._poll_seconds + 1)
        self._thread = None
        logger.info("Scheduler stopped.")

    def run_pending(self) -> int:
        now = self._clock()
        ran = 0
        for job in self.jobs():
            if job.next_run and now >= job.next_run:
                self._safe_run(job)
                job.last_run = now
                job.next_run = self._schedule_next(job)
                ran += 1
        return ran

    @staticmethod
    def _safe_run(job: IntervalJob) -> None:
        logger.info("Running scheduled job: %s", job.name)
        try:
            job.func()
            job.last_error = None
        except (StockflowError, OSError, RuntimeError, ValueError) as exc:
            job.last_error = str(exc)
            logger.exception("Scheduled job failed: %s", job.name)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.run_pending()
            self._stop_event.wait(self._poll_seconds)


class AutoSyncScheduler:
    """Triggers a background sync on a fixed interval.

    A tick that finds a run already in flight is skipped; the next tick
    tries again.
    """

    JOB_NAME = "auto-sync"

    def __init__(
        self,
        *,
        sync_service,
        interval: timedelta,
        request_factory: Callable,
        scheduler: Optional[Scheduler] = None,
        run_immediately: bool = False,
    ) -> None:
        self._sync_service = sync_service
        self._request_factory = request_factory
        self._scheduler = scheduler or Scheduler(poll_seconds=5)
        self._scheduler.add_interval_job(self.JOB_NAME, interval, self.tick, run_immediately=run_immediately)
        self.skipped = 0
        self.triggered = 0

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def tick(self) -> Optional[int]:
        try:
            response = self._sync_service.trigger_sync(self._request_factory())
        except AlreadyRunning as exc:
            self.skipped += 1
            logger.info("Auto sync skipped: %s", exc)
            return None
        self.triggered += 1
        logger.info("Auto sync started run %s.", response.run_id, extra={"run_id": response.run_id})
        return response.run_id

    def start(self) -> None:
        self._scheduler.start()

    def stop(self) -> None:
        self._scheduler.stop()


__all__ = ["AutoSyncScheduler", "IntervalJob", "Scheduler"]
