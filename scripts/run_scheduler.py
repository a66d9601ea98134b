import argparse
import logging
import signal
import threading
from datetime import timedelta

from stockflow.config import get_settings
from stockflow.core.errors import AlreadyRunning, StockflowError
from stockflow.core.logging import setup_logging
from stockflow.core.scheduler import AutoSyncScheduler
from stockflow.database import Base, engine, ensure_sqlite_schema
from stockflow.models import import_all_models
from stockflow.schemas.sync import SyncRequest, SyncStrategy, SyncType
from stockflow.services.sync_service import SyncService

logger = logging.getLogger(__name__)


def parse_args():
    parser = argparse.ArgumentParser(description="Run the inventory auto-sync worker.")
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Run a single sync in the foreground and exit.",
    )
    parser.add_argument(
        "--strategy",
        choices=[strategy.value for strategy in SyncStrategy],
        default=None,
        help="Override AUTO_SYNC_STRATEGY.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without writing.",
    )
    return parser.parse_args()


def main():
    setup_logging()
    args = parse_args()
    settings = get_settings()

    import_all_models()
    Base.metadata.create_all(bind=engine)
    ensure_sqlite_schema()

    strategy = SyncStrategy(args.strategy or settings.AUTO_SYNC_STRATEGY)

    def build_request() -> SyncRequest:
        return SyncRequest(sync_type=SyncType.INCREMENTAL, strategy=strategy, dry_run=args.dry_run)

    service = SyncService.from_settings(settings)
    service.start()
    try:
        if args.run_once:
            try:
                result = service.run_sync(build_request())
            except AlreadyRunning as exc:
                logger.info("Nothing to do: %s", exc)
                return 0
            except StockflowError:
                logger.exception("Sync failed.")
                return 1
            logger.info(
                "Sync run %s %s: %s processed, %s updated, %s new, %s failed.",
                result.run_id,
                result.status,
                result.items_processed,
                result.items_updated,
                result.items_new,
                result.items_failed,
            )
            return 0

        if not settings.AUTO_SYNC_ENABLED:
            logger.info("Auto sync disabled by AUTO_SYNC_ENABLED.")
            return 0

        stop_event = threading.Event()
        signal.signal(signal.SIGTERM, lambda *_: stop_event.set())
        signal.signal(signal.SIGINT, lambda *_: stop_event.set())

        auto_sync = AutoSyncScheduler(
            sync_service=service,
            interval=timedelta(minutes=settings.AUTO_SYNC_INTERVAL_MINUTES),
            request_factory=build_request,
            run_immediately=True,
        )
        auto_sync.start()
        stop_event.wait()
        auto_sync.stop()
        return 0
    finally:
        service.stop()


if __name__ == "__main__":
    raise SystemExit(main())
