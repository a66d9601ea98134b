from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from stockflow.clients.inventory_api import InventoryApiClient
from stockflow.core.constants import PO_STATUS_DRAFT
from stockflow.core.dates import utc_now
from stockflow.core.errors import AuthError, ValidationError
from stockflow.core.rate_limiter import RateLimiter
from stockflow.database import SessionLocal
from stockflow.schemas.purchase_order import PurchaseOrderRead, PurchaseOrderSuggestion
from stockflow.schemas.sync import SyncRequest, SyncResult, SyncStatus, SyncTriggerResponse
from stockflow.services.po_aggregator import POAggregator
from stockflow.services.sync_orchestrator import SyncOrchestrator
from stockflow.services.sync_run_tracker import SyncRunTracker

logger = logging.getLogger(__name__)

EVENT_SYNC_COMPLETED = "sync.completed"
EVENT_SYNC_FAILED = "sync.failed"

Listener = Callable[[str, dict], None]


class SyncService:
    """Application-facing entry points for sync and replenishment.

    Sync runs are started on a background thread and polled through the
    run tracker; ``trigger_sync`` returns as soon as the run row exists.
    """

    def __init__(
        self,
        *,
        tracker: SyncRunTracker,
        aggregator: POAggregator,
        orchestrator: Optional[SyncOrchestrator] = None,
        client=None,
        rate_limiter=None,
    ) -> None:
        self._tracker = tracker
        self._aggregator = aggregator
        self._orchestrator = orchestrator
        self._client = client
        self._rate_limiter = rate_limiter
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._accepting = False

    @classmethod
    def from_settings(cls, settings, *, session_factory=SessionLocal) -> "SyncService":
        rate_limiter = RateLimiter.from_settings(settings)
        tracker = SyncRunTracker.from_settings(settings, session_factory=session_factory)
        aggregator = POAggregator.from_settings(settings, session_factory=session_factory)
        try:
            client = InventoryApiClient.from_settings(settings, rate_limiter)
        except AuthError as exc:
            logger.warning("External inventory API disabled: %s", exc)
            return cls(tracker=tracker, aggregator=aggregator, rate_limiter=rate_limiter)

        orchestrator = SyncOrchestrator.from_settings(
            settings,
            client=client,
            tracker=tracker,
            session_factory=session_factory,
        )
        return cls(
            tracker=tracker,
            aggregator=aggregator,
            orchestrator=orchestrator,
            client=client,
            rate_limiter=rate_limiter,
        )

    @property
    def tracker(self) -> SyncRunTracker:
        return self._tracker

    @property
    def is_running(self) -> bool:
        return self._accepting

    def start(self) -> None:
        if self._rate_limiter is not None:
            self._rate_limiter.start()
        self._accepting = True
        logger.info("Sync service started.")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._accepting = False
        with self._lock:
            worker = self._worker
        if worker is not None and worker.is_alive():
            # A run still in flight keeps its row in "running"; a later begin()
            # reclassifies it once it goes stale.
            worker.join(timeout=timeout)
        if self._rate_limiter is not None:
            self._rate_limiter.stop()
        logger.info("Sync service stopped.")

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: str, payload: dict) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Sync event listener failed for %s.", event)

    def _require_orchestrator(self) -> SyncOrchestrator:
        if self._orchestrator is None:
            raise AuthError("External inventory API credentials are not configured")
        return self._orchestrator

    def trigger_sync(self, options: Optional[SyncRequest] = None) -> SyncTriggerResponse:
        """Start a background run; raises AlreadyRunning if one is in flight."""
        orchestrator = self._require_orchestrator()
        if not self._accepting:
            raise RuntimeError("Sync service is not started")
        options = options or SyncRequest()
        plan = orchestrator.plan(options)
        run = self._tracker.begin(options.sync_type.value, strategy=plan.strategy.value, dry_run=options.dry_run)

        worker = threading.Thread(
            target=self._execute,
            args=(orchestrator, run, plan),
            name="sync-run-{}".format(run.id),
            daemon=True,
        )
        with self._lock:
            self._worker = worker
        worker.start()
        return SyncTriggerResponse(run_id=run.id, status=run.status)

    def run_sync(self, options: Optional[SyncRequest] = None) -> SyncResult:
        """Run a sync on the calling thread (CLI and one-shot use)."""
        orchestrator = self._require_orchestrator()
        options = options or SyncRequest()
        plan = orchestrator.plan(options)
        run = self._tracker.begin(options.sync_type.value, strategy=plan.strategy.value, dry_run=options.dry_run)
        return self._execute(orchestrator, run, plan, reraise=True)

    def _execute(self, orchestrator: SyncOrchestrator, run, plan, *, reraise: bool = False) -> Optional[SyncResult]:
        try:
            result = orchestrator.execute(run, plan)
        except Exception as exc:
            # Already logged and recorded on the run row by the orchestrator.
            self._emit(
                EVENT_SYNC_FAILED,
                {"run_id": run.id, "strategy": plan.strategy.value, "error": str(exc)},
            )
            if reraise:
                raise
            return None
        self._emit(EVENT_SYNC_COMPLETED, result.model_dump())
        return result

    def wait(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            worker = self._worker
        if worker is not None:
            worker.join(timeout=timeout)

    def get_sync_status(self) -> SyncStatus:
        running = self._tracker.running()
        return SyncStatus(
            has_running_sync=running is not None,
            running_run=running,
            last_run=self._tracker.last_finished(),
        )

    def cleanup_stuck_syncs(self) -> dict:
        cleaned = self._tracker.cleanup_stuck()
        if cleaned:
            logger.warning("Reclassified %s stuck sync run(s) as failed.", cleaned)
        return {"cleaned": cleaned}

    def rate_limiter_stats(self) -> Optional[dict]:
        if self._rate_limiter is None:
            return None
        return self._rate_limiter.stats()

    def get_reorder_suggestions(self) -> list[PurchaseOrderSuggestion]:
        return self._aggregator.generate_suggestions()

    def create_purchase_order(
        self,
        suggestion: PurchaseOrderSuggestion,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> PurchaseOrderRead:
        return self._aggregator.create_purchase_order(suggestion, created_by, notes=notes)

    def list_draft_orders(self, limit: int = 50) -> list[PurchaseOrderRead]:
        return self._aggregator.list_drafts(limit)

    def submit_purchase_order(self, po_id: int) -> PurchaseOrderRead:
        """Push a draft to the external system and mark it submitted."""
        if self._client is None:
            raise AuthError("External inventory API credentials are not configured")
        order = self._aggregator.get_purchase_order(po_id)
        if order.status != PO_STATUS_DRAFT:
            raise ValidationError("Purchase order {} is already {}".format(order.po_number, order.status))

        response = self._client.push_purchase_order(order.model_dump())
        external_id = response.get("orderId") or response.get("orderUrl") or order.po_number
        submitted = self._aggregator.mark_submitted(po_id, str(external_id), submitted_at=utc_now())
        logger.info("Purchase order %s submitted as %s.", order.po_number, external_id)
        return submitted


__all__ = ["EVENT_SYNC_COMPLETED", "EVENT_SYNC_FAILED", "SyncService"]
