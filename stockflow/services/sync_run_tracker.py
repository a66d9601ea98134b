from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from stockflow.core.constants import (
    STUCK_RUN_REASON,
    SYNC_STATUS_COMPLETED,
    SYNC_STATUS_FAILED,
    SYNC_STATUS_RUNNING,
)
from stockflow.core.dates import ensure_utc, utc_now
from stockflow.core.errors import AlreadyRunning, NotFoundError
from stockflow.database import SessionLocal
from stockflow.models.sync_run import SyncRun
from stockflow.schemas.sync import SyncRunRead, SyncStats

logger = logging.getLogger(__name__)

DEFAULT_STALE_MINUTES = 30
DEFAULT_MAX_ERRORS = 50


@dataclass
class SyncCounts:
    processed: int = 0
    updated: int = 0
    new: int = 0
    skipped: int = 0
    failed: int = 0
    pages: int = 0

    def as_values(self) -> dict:
        return {
            "items_processed": self.processed,
            "items_updated": self.updated,
            "items_new": self.new,
            "items_skipped": self.skipped,
            "items_failed": self.failed,
            "pages_fetched": self.pages,
        }


def _truncate_error(value, limit: int = 1000) -> str:
    if value is None:
        return ""
    return str(value)[:limit]


class SyncRunTracker:
    """Persisted sync-run bookkeeping with single-flight enforcement.

    Exclusivity is keyed on the ``status`` column (a partial unique index
    allows one ``running`` row), so it holds across processes and restarts.
    """

    def __init__(
        self,
        *,
        session_factory=SessionLocal,
        stale_after: timedelta = timedelta(minutes=DEFAULT_STALE_MINUTES),
        max_errors: int = DEFAULT_MAX_ERRORS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._stale_after = stale_after
        self._max_errors = max(1, int(max_errors))
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, *, session_factory=SessionLocal) -> "SyncRunTracker":
        return cls(
            session_factory=session_factory,
            stale_after=timedelta(minutes=settings.SYNC_STALE_MINUTES),
            max_errors=settings.SYNC_MAX_ERRORS,
        )

    @property
    def stale_after(self) -> timedelta:
        return self._stale_after

    def is_stale(self, run: SyncRun, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        started_at = ensure_utc(run.started_at)
        return started_at is None or now - started_at > self._stale_after

    def _mark_stuck(self, db, run: SyncRun, now: datetime) -> bool:
        errors = list(run.errors or [])
        errors.append(STUCK_RUN_REASON)
        result = db.execute(
            update(SyncRun)
            .where(SyncRun.id == run.id, SyncRun.status == SYNC_STATUS_RUNNING)
            .values(
                status=SYNC_STATUS_FAILED,
                finished_at=now,
                error_message=STUCK_RUN_REASON,
                errors=errors[-self._max_errors:],
            )
        )
        if result.rowcount == 1:
            logger.warning(
                "Sync run %s was stuck since %s; marked failed.",
                run.id,
                run.started_at,
                extra={"run_id": run.id},
            )
            return True
        return False

    def begin(self, sync_type: str, *, strategy: Optional[str] = None, dry_run: bool = False) -> SyncRunRead:
        now = self._clock()
        db = self._session_factory()
        try:
            running = db.execute(
                select(SyncRun).where(SyncRun.status == SYNC_STATUS_RUNNING)
            ).scalars().all()
            for existing in running:
                if not self.is_stale(existing, now):
                    raise AlreadyRunning(existing.id)
                self._mark_stuck(db, existing, now)

            run = SyncRun(
                sync_type=str(sync_type),
                strategy=strategy,
                status=SYNC_STATUS_RUNNING,
                dry_run=dry_run,
                started_at=now,
                last_checkpoint_at=now,
                items_processed=0,
                items_updated=0,
                items_new=0,
                items_skipped=0,
                items_failed=0,
                pages_fetched=0,
                errors=[],
            )
            db.add(run)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise AlreadyRunning() from exc
        except AlreadyRunning:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info("Sync run %s started (%s).", run.id, sync_type, extra={"run_id": run.id, "sync_type": sync_type})
        return SyncRunRead.model_validate(run)

    def _append_errors(self, run: SyncRun, errors: Iterable[str]) -> list[str]:
        merged = list(run.errors or [])
        merged.extend(_truncate_error(message) for message in errors)
        return merged[: self._max_errors]

    def _transition(self, run_id: int, values: dict, errors: Iterable[str], *, terminal: bool) -> bool:
        now = self._clock()
        db = self._session_factory()
        try:
            run = db.get(SyncRun, run_id)
            if run is None:
                raise NotFoundError("Sync run {} not found".format(run_id))
            if run.status != SYNC_STATUS_RUNNING:
                logger.debug("Sync run %s already %s; ignoring update.", run_id, run.status)
                return False

            values = dict(values)
            values["errors"] = self._append_errors(run, errors)
            if terminal:
                values["finished_at"] = now
                started_at = ensure_utc(run.started_at)
                if started_at is not None:
                    values["duration_ms"] = int((now - started_at).total_seconds() * 1000)
            else:
                values["last_checkpoint_at"] = now

            result = db.execute(
                update(SyncRun)
                .where(SyncRun.id == run_id, SyncRun.status == SYNC_STATUS_RUNNING)
                .values(**values)
            )
            db.commit()
            return result.rowcount == 1
        finally:
            db.close()

    def checkpoint(self, run_id: int, counts: SyncCounts, errors: Iterable[str] = ()) -> bool:
        return self._transition(run_id, counts.as_values(), errors, terminal=False)

    def complete(self, run_id: int, counts: SyncCounts, errors: Iterable[str] = ()) -> bool:
        values = counts.as_values()
        values["status"] = SYNC_STATUS_COMPLETED
        changed = self._transition(run_id, values, errors, terminal=True)
        if changed:
            logger.info(
                "Sync run %s completed: %s processed, %s updated, %s new, %s failed.",
                run_id,
                counts.processed,
                counts.updated,
                counts.new,
                counts.failed,
                extra={"run_id": run_id},
            )
        return changed

    def fail(self, run_id: int, errors: Iterable[str], counts: Optional[SyncCounts] = None) -> bool:
        errors = [_truncate_error(message) for message in errors]
        values = counts.as_values() if counts is not None else {}
        values["status"] = SYNC_STATUS_FAILED
        values["error_message"] = errors[0] if errors else "failed"
        changed = self._transition(run_id, values, errors, terminal=True)
        if changed:
            logger.error("Sync run %s failed: %s", run_id, values["error_message"], extra={"run_id": run_id})
        return changed

    def cleanup_stuck(self) -> int:
        now = self._clock()
        cleaned = 0
        db = self._session_factory()
        try:
            running = db.execute(
                select(SyncRun).where(SyncRun.status == SYNC_STATUS_RUNNING)
            ).scalars().all()
            for run in running:
                if self.is_stale(run, now) and self._mark_stuck(db, run, now):
                    cleaned += 1
            db.commit()
        finally:
            db.close()
        return cleaned

    def get(self, run_id: int) -> SyncRunRead:
        db = self._session_factory()
        try:
            run = db.get(SyncRun, run_id)
            if run is None:
                raise NotFoundError("Sync run {} not found".format(run_id))
            return SyncRunRead.model_validate(run)
        finally:
            db.close()

    def _first(self, stmt) -> Optional[SyncRunRead]:
        db = self._session_factory()
        try:
            run = db.execute(stmt.limit(1)).scalars().first()
            return SyncRunRead.model_validate(run) if run is not None else None
        finally:
            db.close()

    def running(self) -> Optional[SyncRunRead]:
        return self._first(
            select(SyncRun)
            .where(SyncRun.status == SYNC_STATUS_RUNNING)
            .order_by(SyncRun.started_at.desc())
        )

    def last_finished(self) -> Optional[SyncRunRead]:
        return self._first(
            select(SyncRun)
            .where(SyncRun.status != SYNC_STATUS_RUNNING)
            .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
        )

    def last_completed(self) -> Optional[SyncRunRead]:
        return self._first(
            select(SyncRun)
            .where(SyncRun.status == SYNC_STATUS_COMPLETED)
            .order_by(SyncRun.finished_at.desc(), SyncRun.id.desc())
        )

    def recent(self, limit: int = 10) -> list[SyncRunRead]:
        db = self._session_factory()
        try:
            runs = db.execute(
                select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit)
            ).scalars().all()
            return [SyncRunRead.model_validate(run) for run in runs]
        finally:
            db.close()

    def stats(self, days: int = 7) -> SyncStats:
        since = self._clock() - timedelta(days=days)
        db = self._session_factory()
        try:
            rows = db.execute(
                select(
                    SyncRun.status,
                    func.count(SyncRun.id),
                    func.avg(SyncRun.duration_ms),
                    func.coalesce(func.sum(SyncRun.items_processed), 0),
                )
                .where(SyncRun.started_at >= since)
                .group_by(SyncRun.status)
            ).all()
        finally:
            db.close()

        counts = {status: count for status, count, _avg, _items in rows}
        durations = [(avg, count) for status, count, avg, _items in rows if avg is not None]
        weighted = sum(avg * count for avg, count in durations)
        weight = sum(count for _avg, count in durations)
        return SyncStats(
            days=days,
            total=sum(counts.values()),
            completed=counts.get(SYNC_STATUS_COMPLETED, 0),
            failed=counts.get(SYNC_STATUS_FAILED, 0),
            running=counts.get(SYNC_STATUS_RUNNING, 0),
            average_duration_ms=round(weighted / weight, 2) if weight else None,
            total_items_processed=int(sum(items for _status, _count, _avg, items in rows)),
        )


__all__ = ["SyncCounts", "SyncRunTracker"]
