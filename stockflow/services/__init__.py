from stockflow.services.po_aggregator import POAggregator
from stockflow.services.sync_orchestrator import SyncOrchestrator, resolve_sync_plan
from stockflow.services.sync_run_tracker import SyncRunTracker
from stockflow.services.sync_service import SyncService

__all__ = [
    "POAggregator",
    "SyncOrchestrator",
    "SyncRunTracker",
    "SyncService",
    "resolve_sync_plan",
]
