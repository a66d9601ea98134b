from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReorderLineItem(BaseModel):
    sku: str
    product_name: str
    vendor_name: Optional[str] = None
    suggested_quantity: int
    unit_cost: float
    line_total: float
    current_stock: int
    reorder_point: int
    sales_velocity_30d: float
    days_until_stockout: Optional[int] = None
    urgency_level: str
    trend: str = "stable"

    # Line items are rebuilt on every aggregation; never edited in place.
    model_config = ConfigDict(frozen=True)


class PurchaseOrderSuggestion(BaseModel):
    vendor_id: Optional[str] = None
    vendor_name: str
    vendor_email: Optional[str] = None
    items: List[ReorderLineItem]
    total_amount: float
    total_items: int
    urgency_level: str
    estimated_stockout_days: Optional[int] = None
    data_quality_flags: List[str] = Field(default_factory=list)


class CreatePurchaseOrderRequest(BaseModel):
    suggestion: PurchaseOrderSuggestion
    created_by: Optional[str] = None
    notes: Optional[str] = None


class PurchaseOrderRead(BaseModel):
    id: int
    po_number: str
    vendor_id: Optional[str] = None
    vendor_name: str
    vendor_email: Optional[str] = None
    status: str
    items: List[dict] = Field(default_factory=list)
    total_amount: float
    total_items: int
    urgency_level: str
    estimated_stockout_days: Optional[int] = None
    created_by: Optional[str] = None
    notes: Optional[str] = None
    external_order_id: Optional[str] = None
    submitted_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
