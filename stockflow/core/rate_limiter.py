from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from stockflow.core.errors import QueueOverflow

logger = logging.getLogger(__name__)


@dataclass
class _QueuedCall:
    func: Callable[..., Any]
    args: tuple
    kwargs: dict
    future: Future = field(default_factory=Future)
    queued_at: float = 0.0


@dataclass
class CallRecord:
    started_at: datetime
    duration_ms: float
    waited_ms: float
    ok: bool


class RateLimiter:
    """Serialises outbound calls to a fixed dispatch rate.

    Calls are queued FIFO and executed one at a time on a dispatcher thread;
    consecutive dispatches are at least ``1 / requests_per_second`` apart.
    ``schedule`` returns a Future, ``call`` blocks for the result.
    """

    def __init__(
        self,
        *,
        requests_per_second: float = 2.0,
        max_queue: int = 100,
        history_size: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be greater than zero")
        self._interval = 1.0 / float(requests_per_second)
        self._rate = float(requests_per_second)
        self._max_queue = max(1, int(max_queue))
        self._clock = clock

        self._queue: deque[_QueuedCall] = deque()
        self._condition = threading.Condition()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._next_slot: Optional[float] = None
        self._in_flight = False

        self._history: deque[CallRecord] = deque(maxlen=max(1, int(history_size)))
        self._total_requests = 0
        self._total_failed = 0
        self._total_rejected = 0

    @classmethod
    def from_settings(cls, settings) -> "RateLimiter":
        return cls(
            requests_per_second=settings.RATE_LIMIT_PER_SECOND,
            max_queue=settings.RATE_LIMIT_MAX_QUEUE,
            history_size=settings.RATE_LIMIT_HISTORY,
        )

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._condition:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                name="rate-limiter",
                daemon=True,
            )
            self._thread.start()
        logger.info("Rate limiter started at %.2f request(s)/s.", self._rate)

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._condition:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            pending = list(self._queue)
            self._queue.clear()
            self._condition.notify_all()
        for entry in pending:
            entry.future.set_exception(RuntimeError("Rate limiter stopped"))
        thread.join(timeout=timeout if timeout is not None else self._interval + 5)
        self._thread = None
        logger.info("Rate limiter stopped (%d pending call(s) dropped).", len(pending))

    def schedule(self, func: Callable[..., Any], *args, **kwargs) -> Future:
        if not self.is_running:
            self.start()
        entry = _QueuedCall(func=func, args=args, kwargs=kwargs, queued_at=self._clock())
        with self._condition:
            depth = len(self._queue)
            if depth >= self._max_queue:
                self._total_rejected += 1
                raise QueueOverflow(depth, self._max_queue)
            self._queue.append(entry)
            self._condition.notify()
        return entry.future

    def call(self, func: Callable[..., Any], *args, **kwargs):
        return self.schedule(func, *args, **kwargs).result()

    def _next_entry(self) -> Optional[_QueuedCall]:
        with self._condition:
            while not self._queue and not self._stop_event.is_set():
                self._condition.wait()
            if self._stop_event.is_set():
                return None
            return self._queue.popleft()

    def _run(self) -> None:
        while True:
            entry = self._next_entry()
            if entry is None:
                return

            if self._next_slot is not None:
                delay = self._next_slot - self._clock()
                if delay > 0 and self._stop_event.wait(delay):
                    entry.future.set_exception(RuntimeError("Rate limiter stopped"))
                    return

            if not entry.future.set_running_or_notify_cancel():
                continue

            started = self._clock()
            self._next_slot = started + self._interval
            started_wall = datetime.now(timezone.utc)
            self._in_flight = True
            result = failure = None
            try:
                result = entry.func(*entry.args, **entry.kwargs)
            except Exception as exc:
                failure = exc
            finally:
                self._in_flight = False

            ok = failure is None
            finished = self._clock()
            with self._condition:
                self._total_requests += 1
                if not ok:
                    self._total_failed += 1
                self._history.append(
                    CallRecord(
                        started_at=started_wall,
                        duration_ms=round((finished - started) * 1000, 2),
                        waited_ms=round((started - entry.queued_at) * 1000, 2),
                        ok=ok,
                    )
                )

            # Counters are updated before the caller is released.
            if failure is not None:
                entry.future.set_exception(failure)
            else:
                entry.future.set_result(result)

    def stats(self) -> dict:
        with self._condition:
            history = list(self._history)
            queue_depth = len(self._queue)
            total_requests = self._total_requests
            total_failed = self._total_failed
            total_rejected = self._total_rejected

        observed_rate = None
        if len(history) >= 2:
            span = (history[-1].started_at - history[0].started_at).total_seconds()
            if span > 0:
                observed_rate = round((len(history) - 1) / span, 3)
        average_ms = None
        if history:
            average_ms = round(sum(record.duration_ms for record in history) / len(history), 2)

        return {
            "running": self.is_running,
            "queue_depth": queue_depth,
            "max_queue": self._max_queue,
            "in_flight": self._in_flight,
            "requests_per_second": self._rate,
            "observed_rate": observed_rate,
            "total_requests": total_requests,
            "total_failed": total_failed,
            "total_rejected": total_rejected,
            "average_duration_ms": average_ms,
            "last_request_at": history[-1].started_at.isoformat() if history else None,
            "recent_calls": [
                {
                    "started_at": record.started_at.isoformat(),
                    "duration_ms": record.duration_ms,
                    "waited_ms": record.waited_ms,
                    "ok": record.ok,
                }
                for record in history
            ],
        }


__all__ = ["CallRecord", "RateLimiter"]
