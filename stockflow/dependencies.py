from fastapi import HTTPException, Request, status

from stockflow.config import get_settings
from stockflow.core.security import authenticate_request
from stockflow.services.sync_service import SyncService


def require_auth(request: Request):
    header = get_settings().API_KEY_HEADER
    api_key = request.headers.get(header) or request.headers.get("api-key")
    return authenticate_request(api_key)


def get_sync_service(request: Request) -> SyncService:
    service = getattr(request.app.state, "sync_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync service is not running",
        )
    return service


__all__ = ["get_sync_service", "require_auth"]
