from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from stockflow.config import Settings, get_settings
from stockflow.core.logging import setup_logging
from stockflow.core.scheduler import AutoSyncScheduler
from stockflow.database import Base, engine, ensure_sqlite_schema
from stockflow.models import import_all_models
from stockflow.routers import health_router, purchase_orders_router, sync_router
from stockflow.schemas.sync import SyncRequest, SyncStrategy, SyncType
from stockflow.services.sync_service import SyncService

setup_logging()
settings: Settings = get_settings()

import_all_models()
Base.metadata.create_all(bind=engine)
ensure_sqlite_schema()


def auto_sync_request() -> SyncRequest:
    return SyncRequest(sync_type=SyncType.INCREMENTAL, strategy=SyncStrategy(settings.AUTO_SYNC_STRATEGY))


@asynccontextmanager
async def lifespan(app: FastAPI):
    sync_service = SyncService.from_settings(settings)
    sync_service.start()
    app.state.sync_service = sync_service

    auto_sync = None
    if settings.AUTO_SYNC_ENABLED:
        auto_sync = AutoSyncScheduler(
            sync_service=sync_service,
            interval=timedelta(minutes=settings.AUTO_SYNC_INTERVAL_MINUTES),
            request_factory=auto_sync_request,
        )
        auto_sync.start()
    try:
        yield
    finally:
        if auto_sync is not None:
            auto_sync.stop()
        sync_service.stop()
        app.state.sync_service = None


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.include_router(health_router)
app.include_router(sync_router)
app.include_router(purchase_orders_router)


__all__ = ["app", "auto_sync_request"]
