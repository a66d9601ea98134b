from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from stockflow.core.errors import StockflowError
from stockflow.dependencies import get_sync_service, require_auth
from stockflow.routers.errors import http_error
from stockflow.schemas.sync import SyncRequest, SyncTriggerResponse

router = APIRouter(prefix="/sync", tags=["Sync"])


@router.post("/trigger", status_code=status.HTTP_202_ACCEPTED, response_model=SyncTriggerResponse)
def trigger_sync(
    payload: Optional[SyncRequest] = None,
    service=Depends(get_sync_service),
    _auth=Depends(require_auth),
):
    try:
        return service.trigger_sync(payload)
    except StockflowError as exc:
        raise http_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/status")
def sync_status(service=Depends(get_sync_service)):
    return service.get_sync_status()


@router.post("/cleanup-stuck")
def cleanup_stuck(service=Depends(get_sync_service), _auth=Depends(require_auth)):
    return service.cleanup_stuck_syncs()


@router.get("/runs")
def recent_runs(
    limit: int = Query(10, ge=1, le=100),
    service=Depends(get_sync_service),
):
    return {"runs": service.tracker.recent(limit)}


@router.get("/runs/{run_id}")
def get_run(run_id: int, service=Depends(get_sync_service)):
    try:
        return service.tracker.get(run_id)
    except StockflowError as exc:
        raise http_error(exc) from exc


@router.get("/stats")
def sync_stats(
    days: int = Query(7, ge=1, le=365),
    service=Depends(get_sync_service),
):
    return service.tracker.stats(days)


@router.get("/rate-limiter")
def rate_limiter_stats(service=Depends(get_sync_service)):
    stats = service.rate_limiter_stats()
    if stats is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rate limiter is not configured")
    return stats
