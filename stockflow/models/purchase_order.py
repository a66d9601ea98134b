from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, String

from stockflow.database.base import Base


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(Integer, primary_key=True)
    po_number = Column(String(20), nullable=False, unique=True)

    vendor_id = Column(String(120))
    vendor_name = Column(String, nullable=False)
    vendor_email = Column(String)

    status = Column(String(20), nullable=False, default="draft")
    items = Column(JSON, nullable=False, default=list)
    total_amount = Column(Float, nullable=False, default=0)
    total_items = Column(Integer, nullable=False, default=0)
    urgency_level = Column(String(20), nullable=False)
    estimated_stockout_days = Column(Integer)

    created_by = Column(String)
    notes = Column(String)
    external_order_id = Column(String)
    submitted_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("idx_purchase_orders_status", "status", "created_at"),
    )


__all__ = ["PurchaseOrder"]
