from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from stockflow.clients.inventory_api import InventoryFilters, InventoryPage
from stockflow.core.dates import ensure_utc, utc_now
from stockflow.core.errors import (
    AuthError,
    InventoryApiError,
    RateLimitedError,
    TransientError,
    ValidationError,
)
from stockflow.database import SessionLocal
from stockflow.schemas.sync import SyncRequest, SyncResult, SyncRunRead, SyncStrategy, SyncType
from stockflow.services import inventory_store
from stockflow.services.change_detector import (
    SIGNIFICANT_FIELDS,
    STOCK_FIELDS,
    change_rate,
    diff,
    efficiency_gain,
)
from stockflow.services.sync_run_tracker import SyncCounts, SyncRunTracker

logger = logging.getLogger(__name__)

INVENTORY_WINDOW = timedelta(hours=6)
CRITICAL_WINDOW = timedelta(hours=24)
PREVIEW_LIMIT = 100


class PageFetchFailed(Exception):
    pass


@dataclass(frozen=True)
class SyncPlan:
    strategy: SyncStrategy
    fields: tuple = SIGNIFICANT_FIELDS
    include_vendors: bool = False
    create_missing: bool = True
    critical_only: bool = False
    active_only: bool = False
    modified_since: Optional[datetime] = None

    @property
    def filters(self) -> InventoryFilters:
        return InventoryFilters(modified_since=self.modified_since, active_only=self.active_only)


def _smart_strategy(last_completed: Optional[SyncRunRead], now: datetime) -> SyncStrategy:
    if last_completed is None:
        return SyncStrategy.FULL
    finished_at = ensure_utc(last_completed.finished_at or last_completed.started_at)
    age = now - finished_at
    if age < INVENTORY_WINDOW:
        return SyncStrategy.INVENTORY
    if age < CRITICAL_WINDOW:
        return SyncStrategy.CRITICAL
    return SyncStrategy.FULL


def resolve_sync_plan(
    options: SyncRequest,
    last_completed: Optional[SyncRunRead],
    now: Optional[datetime] = None,
) -> SyncPlan:
    """Turn a requested strategy into the concrete plan the orchestrator follows."""
    now = now or utc_now()
    strategy = options.strategy
    if strategy == SyncStrategy.SMART:
        strategy = _smart_strategy(last_completed, now)

    modified_since = ensure_utc(options.modified_since)
    if modified_since is None and options.sync_type == SyncType.INCREMENTAL and last_completed is not None:
        modified_since = ensure_utc(last_completed.started_at)

    if strategy == SyncStrategy.INVENTORY:
        return SyncPlan(
            strategy=strategy,
            fields=STOCK_FIELDS,
            create_missing=False,
            modified_since=modified_since,
        )
    if strategy == SyncStrategy.CRITICAL:
        return SyncPlan(strategy=strategy, critical_only=True, modified_since=modified_since)
    if strategy == SyncStrategy.ACTIVE:
        return SyncPlan(strategy=strategy, active_only=True, modified_since=modified_since)
    return SyncPlan(strategy=SyncStrategy.FULL, include_vendors=True, modified_since=modified_since)


class SyncOrchestrator:
    """Runs one synchronisation pass against the external inventory API.

    Pages are fetched in cursor order, each record is diffed against the
    local row, and only changed rows are written. Transient page failures
    are retried with capped exponential backoff; a page that keeps failing
    is counted as failed and the pass moves on. Bad credentials abort the
    run immediately.
    """

    def __init__(
        self,
        *,
        client,
        tracker: SyncRunTracker,
        session_factory=SessionLocal,
        max_pages: int = 500,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._tracker = tracker
        self._session_factory = session_factory
        self._max_pages = max(1, int(max_pages))
        self._max_attempts = max(1, int(max_attempts))
        self._backoff_base = float(backoff_base)
        self._backoff_max = float(backoff_max)
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, *, client, tracker, session_factory=SessionLocal) -> "SyncOrchestrator":
        return cls(
            client=client,
            tracker=tracker,
            session_factory=session_factory,
            max_pages=settings.SYNC_MAX_PAGES,
            max_attempts=settings.SYNC_PAGE_MAX_ATTEMPTS,
            backoff_base=settings.SYNC_BACKOFF_BASE_SECONDS,
            backoff_max=settings.SYNC_BACKOFF_MAX_SECONDS,
        )

    def plan(self, options: SyncRequest) -> SyncPlan:
        return resolve_sync_plan(options, self._tracker.last_completed(), self._clock())

    def run(self, options: Optional[SyncRequest] = None) -> SyncResult:
        options = options or SyncRequest()
        plan = self.plan(options)
        run = self._tracker.begin(options.sync_type.value, strategy=plan.strategy.value, dry_run=options.dry_run)
        return self.execute(run, plan)

    def backoff_delay(self, attempt: int, exc: Optional[Exception] = None) -> float:
        delay = min(self._backoff_max, self._backoff_base * (2 ** attempt))
        if isinstance(exc, RateLimitedError) and exc.retry_after:
            delay = max(delay, exc.retry_after)
        return delay

    def execute(self, run: SyncRunRead, plan: SyncPlan) -> SyncResult:
        run_id = run.id
        log_extra = {"run_id": run_id, "strategy": plan.strategy.value}
        started = time.monotonic()
        counts = SyncCounts()
        errors: list[str] = []
        reported = 0
        would_update: list[str] = []
        would_create: list[str] = []
        vendors_synced = 0

        logger.info("Sync run %s executing %s strategy.", run_id, plan.strategy.value, extra=log_extra)
        try:
            if plan.include_vendors:
                vendors_synced = self._sync_vendors(run.dry_run, errors)

            critical = None
            if plan.critical_only:
                db = self._session_factory()
                try:
                    critical = inventory_store.critical_skus(db)
                finally:
                    db.close()

            cursor = 0
            offset_cursor = True
            for page_number in range(1, self._max_pages + 1):
                try:
                    page = self._fetch_page(cursor, plan, page_number, errors)
                except PageFetchFailed:
                    # The page's contents are unknown: count a full page as failed.
                    page_size = getattr(self._client, "page_size", 0)
                    counts.failed += page_size
                    counts.pages += 1
                    if not page_size or not offset_cursor:
                        # An opaque cursor cannot be stepped past a page we never read.
                        errors.append("pagination stopped: cannot skip failed page at cursor {}".format(cursor))
                        break
                    cursor += page_size
                    continue

                self._process_page(page, plan, run.dry_run, critical, counts, errors, would_update, would_create)
                counts.pages += 1
                self._tracker.checkpoint(run_id, counts, errors[reported:])
                reported = len(errors)

                if page.next_cursor is None:
                    break
                if page.next_cursor <= cursor:
                    logger.warning(
                        "Cursor did not advance (%s -> %s); stopping pagination.",
                        cursor,
                        page.next_cursor,
                        extra=log_extra,
                    )
                    errors.append("pagination stopped: cursor did not advance at {}".format(cursor))
                    break
                offset_cursor = page.next_cursor == cursor + page.size
                cursor = page.next_cursor
            else:
                logger.warning("Page ceiling of %s reached; stopping pagination.", self._max_pages, extra=log_extra)
                errors.append("pagination stopped: page ceiling {} reached".format(self._max_pages))

            self._tracker.complete(run_id, counts, errors[reported:])
            status = "completed"
        except AuthError as exc:
            errors.append("authentication failed: {}".format(exc))
            self._tracker.fail(run_id, errors[reported:], counts)
            raise
        except Exception as exc:
            logger.exception("Sync run %s aborted.", run_id, extra=log_extra)
            errors.append("{}: {}".format(type(exc).__name__, exc))
            self._tracker.fail(run_id, errors[reported:], counts)
            raise

        duration = max(time.monotonic() - started, 1e-6)
        changed = counts.updated + counts.new + len(would_update) + len(would_create)
        return SyncResult(
            run_id=run_id,
            status=status,
            sync_type=run.sync_type,
            strategy=plan.strategy.value,
            dry_run=run.dry_run,
            items_processed=counts.processed,
            items_updated=counts.updated,
            items_new=counts.new,
            items_skipped=counts.skipped,
            items_failed=counts.failed,
            pages_fetched=counts.pages,
            vendors_synced=vendors_synced,
            change_rate=change_rate(counts.processed, changed),
            efficiency_gain=efficiency_gain(counts.processed, changed),
            items_per_second=round(counts.processed / duration, 2),
            duration_ms=int(duration * 1000),
            would_update=would_update[:PREVIEW_LIMIT],
            would_create=would_create[:PREVIEW_LIMIT],
            errors=errors,
        )

    def _with_retry(self, label: str, func, errors: list[str]):
        for attempt in range(self._max_attempts):
            try:
                return func()
            except AuthError:
                raise
            except TransientError as exc:
                message = "{} attempt {}/{}: {}".format(label, attempt + 1, self._max_attempts, exc)
                errors.append(message)
                logger.warning(message)
                if attempt + 1 >= self._max_attempts:
                    raise PageFetchFailed(label) from exc
                self._sleep(self.backoff_delay(attempt, exc))
            except InventoryApiError as exc:
                message = "{} rejected: {}".format(label, exc)
                errors.append(message)
                logger.warning(message)
                raise PageFetchFailed(label) from exc
        raise PageFetchFailed(label)

    def _fetch_page(self, cursor: int, plan: SyncPlan, page_number: int, errors: list[str]) -> InventoryPage:
        label = "page {} (cursor {})".format(page_number, cursor)
        return self._with_retry(label, lambda: self._client.fetch_inventory_page(cursor, plan.filters), errors)

    def _sync_vendors(self, dry_run: bool, errors: list[str]) -> int:
        try:
            vendors = self._with_retry("vendors", self._client.fetch_vendors, errors)
        except PageFetchFailed:
            return 0
        if dry_run:
            return len(vendors)

        written = 0
        db = self._session_factory()
        try:
            for vendor in vendors:
                try:
                    with db.begin_nested():
                        if inventory_store.upsert_vendor(db, vendor):
                            written += 1
                except SQLAlchemyError as exc:
                    errors.append("vendor {}: {}".format(vendor.vendor_id, exc))
                    logger.warning("Vendor %s could not be saved: %s", vendor.vendor_id, exc)
            db.commit()
        finally:
            db.close()
        logger.info("Vendor refresh: %s fetched, %s written.", len(vendors), written)
        return written

    def _process_page(
        self,
        page: InventoryPage,
        plan: SyncPlan,
        dry_run: bool,
        critical: Optional[set],
        counts: SyncCounts,
        errors: list[str],
        would_update: list[str],
        would_create: list[str],
    ) -> None:
        for rejected in page.rejected:
            counts.processed += 1
            counts.failed += 1
            errors.append("SKU {}: {}".format(rejected.sku or "?", rejected.message))

        if not page.records:
            return

        now = self._clock()
        db = self._session_factory()
        try:
            existing = inventory_store.items_by_sku(db, (record.sku for record in page.records))
            vendors = inventory_store.load_vendor_index(db)
            for record in page.records:
                counts.processed += 1
                if critical is not None and record.sku not in critical:
                    counts.skipped += 1
                    continue
                if plan.active_only and not record.active:
                    counts.skipped += 1
                    continue

                previous = existing.get(record.sku)
                overrides = {}
                if record.vendor_id is None and record.vendor_name:
                    match = vendors.match_name(record.vendor_name)
                    if match.vendor is not None:
                        overrides["vendor_id"] = match.vendor.id
                change = diff(previous, record, fields=plan.fields, overrides=overrides)

                if not change.has_changes or (previous is None and not plan.create_missing):
                    counts.skipped += 1
                    continue
                if dry_run:
                    (would_create if previous is None else would_update).append(record.sku)
                    counts.skipped += 1
                    continue

                try:
                    with db.begin_nested():
                        item = inventory_store.apply_change(db, previous, record, change, synced_at=now)
                        db.flush()
                except (ValidationError, SQLAlchemyError) as exc:
                    counts.failed += 1
                    errors.append("SKU {}: {}".format(record.sku, exc))
                    logger.warning("SKU %s could not be saved: %s", record.sku, exc)
                    continue

                existing[record.sku] = item
                if previous is None:
                    counts.new += 1
                else:
                    counts.updated += 1
            db.commit()
        finally:
            db.close()


__all__ = ["PageFetchFailed", "SyncOrchestrator", "SyncPlan", "resolve_sync_plan"]
