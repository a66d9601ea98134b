from fastapi import HTTPException, status

from stockflow.core.errors import (
    AlreadyRunning,
    AuthError,
    InventoryApiError,
    NotFoundError,
    QueueOverflow,
    StockflowError,
    ValidationError,
)

_STATUS_BY_ERROR = (
    (AlreadyRunning, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AuthError, status.HTTP_502_BAD_GATEWAY),
    (QueueOverflow, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InventoryApiError, status.HTTP_502_BAD_GATEWAY),
)


def http_error(exc: StockflowError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
