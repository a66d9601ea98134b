from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stockflow.clients.inventory_api import InventoryPage, RejectedRecord
from stockflow.core.errors import AuthError, TransientError
from stockflow.database.base import Base
from stockflow.models import import_all_models
from stockflow.schemas.inventory import ExternalRecord, ExternalVendor


def memory_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    import_all_models()
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def product_rows(count, vendors=5, **overrides):
    rows = []
    for index in range(count):
        row = {
            "productSku": "SKU-{:04d}".format(index),
            "productName": "Product {}".format(index),
            "quantityOnHand": 10 + index,
            "reorderPoint": 20,
            "reorderQuantity": 50,
            "averageCost": 4.5,
            "primarySupplierId": "V{}".format(index % vendors),
            "primarySupplierName": "Vendor {}".format(index % vendors),
            "statusId": "PRODUCT_ACTIVE",
        }
        row.update(overrides)
        rows.append(row)
    return rows


class FakeInventoryClient:
    """In-memory stand-in for the external API with scripted failures."""

    def __init__(self, rows, *, page_size=25, failures=None, vendors=None, auth_error=False):
        self.rows = list(rows)
        self.page_size = page_size
        self.failures = dict(failures or {})
        self.vendors = list(vendors or [])
        self.auth_error = auth_error
        self.calls = []
        self.pushed = []

    def fetch_inventory_page(self, cursor=0, filters=None):
        self.calls.append((cursor, filters))
        if self.auth_error:
            raise AuthError("Inventory API error: HTTP 401", status_code=401)
        if self.failures.get(cursor, 0) > 0:
            self.failures[cursor] -= 1
            raise TransientError("Inventory API error: HTTP 503", status_code=503)

        chunk = self.rows[cursor:cursor + self.page_size]
        page = InventoryPage(cursor=cursor)
        for row in chunk:
            try:
                page.records.append(ExternalRecord.model_validate(row))
            except ValueError as exc:
                page.rejected.append(RejectedRecord(sku=row.get("productSku"), message=str(exc)))
        if cursor + self.page_size < len(self.rows):
            page.next_cursor = cursor + self.page_size
        return page

    def fetch_vendors(self):
        return [ExternalVendor.model_validate(row) for row in self.vendors]

    def push_purchase_order(self, order):
        self.pushed.append(order)
        return {"orderId": "EXT-{}".format(len(self.pushed))}
