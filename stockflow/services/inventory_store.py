from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from stockflow.core.errors import ValidationError
from stockflow.models.inventory_item import InventoryItem
from stockflow.models.vendor import Vendor
from stockflow.schemas.inventory import ExternalRecord, ExternalVendor
from stockflow.services.change_detector import ChangeRecord

logger = logging.getLogger(__name__)

_NON_NEGATIVE_FIELDS = ("reorder_point", "reorder_quantity", "unit_cost", "lead_time_days")


def _name_key(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None
    key = " ".join(str(name).split()).casefold()
    return key or None


@dataclass
class VendorMatch:
    vendor: Optional[Vendor] = None
    ambiguous: bool = False
    candidates: int = 0


@dataclass
class VendorIndex:
    by_id: dict = field(default_factory=dict)
    by_name: dict = field(default_factory=dict)

    @classmethod
    def build(cls, vendors: Iterable[Vendor]) -> "VendorIndex":
        index = cls()
        for vendor in vendors:
            index.by_id[vendor.id] = vendor
            key = _name_key(vendor.name)
            if key:
                index.by_name.setdefault(key, []).append(vendor)
        return index

    def match_name(self, name: Optional[str]) -> VendorMatch:
        key = _name_key(name)
        if key is None:
            return VendorMatch()
        matches = self.by_name.get(key, [])
        if len(matches) == 1:
            return VendorMatch(vendor=matches[0], candidates=1)
        if len(matches) > 1:
            return VendorMatch(ambiguous=True, candidates=len(matches))
        return VendorMatch()


def load_vendor_index(db: Session) -> VendorIndex:
    return VendorIndex.build(db.execute(select(Vendor)).scalars().all())


def items_by_sku(db: Session, skus: Iterable[str]) -> dict[str, InventoryItem]:
    skus = list(dict.fromkeys(skus))
    if not skus:
        return {}
    rows = db.execute(select(InventoryItem).where(InventoryItem.sku.in_(skus))).scalars().all()
    return {item.sku: item for item in rows}


def reorder_candidates_query():
    """Active items at or below their reorder point (or under minimum stock)."""
    return (
        select(InventoryItem)
        .where(
            InventoryItem.active.is_(True),
            InventoryItem.discontinued.is_(False),
            or_(
                InventoryItem.current_stock <= InventoryItem.reorder_point,
                InventoryItem.current_stock < InventoryItem.minimum_stock,
            ),
        )
        .order_by(InventoryItem.current_stock.asc(), InventoryItem.sku.asc())
    )


def critical_skus(db: Session) -> set[str]:
    return set(db.execute(reorder_candidates_query().with_only_columns(InventoryItem.sku)).scalars().all())


def upsert_vendor(db: Session, incoming: ExternalVendor) -> bool:
    """Insert or refresh one vendor row; returns True when something was written."""
    vendor = db.get(Vendor, incoming.vendor_id)
    values = {
        "name": incoming.name,
        "contact_name": incoming.contact_name,
        "contact_email": incoming.email,
        "phone": incoming.phone,
        "active": incoming.active,
    }
    if incoming.lead_time_days is not None:
        values["lead_time_days"] = incoming.lead_time_days

    if vendor is None:
        db.add(Vendor(id=incoming.vendor_id, **values))
        return True

    changed = False
    for name, value in values.items():
        if getattr(vendor, name) != value:
            setattr(vendor, name, value)
            changed = True
    return changed


def _validate_change(change: ChangeRecord) -> None:
    for name in _NON_NEGATIVE_FIELDS:
        value = change.values.get(name)
        if value is not None and value < 0:
            raise ValidationError("{} must not be negative (got {})".format(name, value), sku=change.sku)


def apply_change(
    db: Session,
    previous: Optional[InventoryItem],
    incoming: ExternalRecord,
    change: ChangeRecord,
    *,
    synced_at: datetime,
) -> InventoryItem:
    """Write only the fields the sync owns and that actually changed.

    Manual edits to other columns of the same row are left untouched.
    """
    _validate_change(change)
    if previous is None:
        values = {name: value for name, value in change.values.items() if value is not None}
        values.setdefault("product_name", "")
        values.setdefault("sales_velocity_30d", 0.0)
        values.setdefault("sales_velocity_90d", 0.0)
        item = InventoryItem(sku=change.sku, **values)
        db.add(item)
    else:
        item = previous
        for name in change.changed_fields:
            setattr(item, name, change.values[name])

    if change.content_hash is not None:
        item.content_hash = change.content_hash
    item.last_synced_at = synced_at
    if incoming.last_modified is not None:
        item.external_modified_at = incoming.last_modified
    return item


__all__ = [
    "VendorIndex",
    "VendorMatch",
    "apply_change",
    "critical_skus",
    "items_by_sku",
    "load_vendor_index",
    "reorder_candidates_query",
    "upsert_vendor",
]
