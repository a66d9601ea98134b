import importlib

from stockflow.models.inventory_item import InventoryItem
from stockflow.models.purchase_order import PurchaseOrder
from stockflow.models.sync_run import SyncRun
from stockflow.models.vendor import Vendor


def import_all_models() -> None:
    for module_name in (
        "stockflow.models.inventory_item",
        "stockflow.models.purchase_order",
        "stockflow.models.sync_run",
        "stockflow.models.vendor",
    ):
        importlib.import_module(module_name)


__all__ = [
    "InventoryItem",
    "PurchaseOrder",
    "SyncRun",
    "Vendor",
    "import_all_models",
]
