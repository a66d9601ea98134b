import hashlib
import json
import math
from dataclasses import dataclass, field
from typing import Optional

from stockflow.schemas.inventory import ExternalRecord

# Fields whose change justifies a local write. Timestamps and view counters
# from the provider are deliberately absent.
SIGNIFICANT_FIELDS = (
    "product_name",
    "current_stock",
    "unit_cost",
    "reorder_point",
    "reorder_quantity",
    "lead_time_days",
    "vendor_id",
    "vendor_name",
    "active",
    "sales_velocity_30d",
    "sales_velocity_90d",
)
STOCK_FIELDS = ("current_stock",)

# Only compared when the provider actually sent a value.
_OPTIONAL_FIELDS = {"lead_time_days", "sales_velocity_30d", "sales_velocity_90d"}
_FLOAT_FIELDS = {"unit_cost", "sales_velocity_30d", "sales_velocity_90d"}
_TEXT_FIELDS = {"product_name", "vendor_id", "vendor_name"}


@dataclass
class ChangeRecord:
    sku: str
    is_new: bool
    changed_fields: list[str] = field(default_factory=list)
    values: dict = field(default_factory=dict)
    previous_values: dict = field(default_factory=dict)
    # None for partial field sets; the stored full-record hash is kept.
    content_hash: Optional[str] = None

    @property
    def has_changes(self) -> bool:
        return self.is_new or bool(self.changed_fields)

    def changes(self) -> dict:
        return {name: self.values[name] for name in self.changed_fields}


def _normalize(name: str, value):
    if value is None:
        return None
    if name in _TEXT_FIELDS:
        text = str(value).strip()
        return text or None
    if name in _FLOAT_FIELDS:
        return float(value)
    if name == "active":
        return bool(value)
    return int(value)


def _same(name: str, left, right) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if name in _FLOAT_FIELDS:
        return math.isclose(left, right, rel_tol=1e-9, abs_tol=1e-6)
    if name == "vendor_name":
        return left.casefold() == right.casefold()
    return left == right


def incoming_values(record: ExternalRecord, fields=SIGNIFICANT_FIELDS, overrides: Optional[dict] = None) -> dict:
    overrides = overrides or {}
    values = {}
    for name in fields:
        value = overrides[name] if name in overrides else getattr(record, name, None)
        if value is None and name in _OPTIONAL_FIELDS:
            continue
        values[name] = _normalize(name, value)
    return values


def content_hash(values: dict) -> str:
    payload = json.dumps(values, sort_keys=True, default=str)
    return hashlib.md5(payload.encode("utf-8"), usedforsecurity=False).hexdigest()


def diff(
    previous,
    incoming: ExternalRecord,
    *,
    fields=SIGNIFICANT_FIELDS,
    overrides: Optional[dict] = None,
) -> ChangeRecord:
    """Compare the stored item (or None) with a freshly fetched record."""
    values = incoming_values(incoming, fields, overrides)
    record = ChangeRecord(
        sku=incoming.sku,
        is_new=previous is None,
        values=values,
        content_hash=content_hash(values) if tuple(fields) == SIGNIFICANT_FIELDS else None,
    )
    if previous is None:
        record.changed_fields = list(values)
        return record

    for name, value in values.items():
        old_value = _normalize(name, getattr(previous, name, None))
        if not _same(name, old_value, value):
            record.changed_fields.append(name)
            record.previous_values[name] = old_value
    return record


def efficiency_gain(total: int, changed: int) -> float:
    """Share of records that did not need a write, as a percentage."""
    if total <= 0:
        return 0.0
    return round((1 - (changed / total)) * 100, 2)


def change_rate(total: int, changed: int) -> float:
    if total <= 0:
        return 0.0
    return round((changed / total) * 100, 2)


__all__ = [
    "ChangeRecord",
    "SIGNIFICANT_FIELDS",
    "STOCK_FIELDS",
    "change_rate",
    "content_hash",
    "diff",
    "efficiency_gain",
    "incoming_values",
]
