from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String

from stockflow.database.base import Base
from stockflow.core.reorder_calculator import days_until_stockout


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True)
    sku = Column(String(120), nullable=False, unique=True)
    product_name = Column(String, nullable=False, default="")

    current_stock = Column(Integer, nullable=False, default=0)
    reorder_point = Column(Integer, nullable=False, default=0)
    reorder_quantity = Column(Integer, nullable=False, default=0)
    minimum_stock = Column(Integer)
    unit_cost = Column(Float, nullable=False, default=0)
    lead_time_days = Column(Integer)

    sales_velocity_30d = Column(Float, nullable=False, default=0)
    sales_velocity_90d = Column(Float, nullable=False, default=0)

    vendor_id = Column(String(120))
    vendor_name = Column(String)

    active = Column(Boolean, nullable=False, default=True)
    discontinued = Column(Boolean, nullable=False, default=False)

    content_hash = Column(String(32))
    last_synced_at = Column(DateTime(timezone=True))
    external_modified_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_inventory_items_vendor", "vendor_id"),
        Index("idx_inventory_items_reorder", "active", "current_stock", "reorder_point"),
    )

    @property
    def days_until_stockout(self):
        # Always derived; never persisted.
        return days_until_stockout(self.current_stock, self.sales_velocity_30d)


__all__ = ["InventoryItem"]
