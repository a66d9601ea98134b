from stockflow.routers.health import router as health_router
from stockflow.routers.purchase_orders import router as purchase_orders_router
from stockflow.routers.sync import router as sync_router

__all__ = [
    "health_router",
    "purchase_orders_router",
    "sync_router",
]
