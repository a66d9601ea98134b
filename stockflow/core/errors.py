from typing import Optional


class StockflowError(Exception):
    """Base class for errors raised by the replenishment and sync core."""


class InventoryApiError(StockflowError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(InventoryApiError):
    """Credentials were rejected. Never retried."""


class TransientError(InventoryApiError):
    """Timeout, connection reset or 5xx. Safe to retry."""


class RateLimitedError(TransientError):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class QueueOverflow(StockflowError):
    def __init__(self, depth: int, max_depth: int) -> None:
        super().__init__(
            "Rate limiter queue is full ({}/{} pending requests)".format(depth, max_depth)
        )
        self.depth = depth
        self.max_depth = max_depth


class AlreadyRunning(StockflowError):
    def __init__(self, run_id: Optional[int] = None) -> None:
        message = "A sync run is already in progress"
        if run_id is not None:
            message = "{} (run {})".format(message, run_id)
        super().__init__(message)
        self.run_id = run_id


class ValidationError(StockflowError):
    def __init__(self, message: str, *, sku: Optional[str] = None) -> None:
        super().__init__(message)
        self.sku = sku


class NotFoundError(StockflowError):
    pass


__all__ = [
    "AlreadyRunning",
    "AuthError",
    "InventoryApiError",
    "NotFoundError",
    "QueueOverflow",
    "RateLimitedError",
    "StockflowError",
    "TransientError",
    "ValidationError",
]
