from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from stockflow.core.constants import (
    PO_STATUS_DRAFT,
    PO_STATUS_SUBMITTED,
    UNKNOWN_VENDOR_NAME,
    URGENCY_LOW,
    URGENCY_RANK,
)
from stockflow.core.dates import utc_now
from stockflow.core.errors import NotFoundError, ValidationError
from stockflow.core.reorder_calculator import (
    DEFAULT_POLICY,
    ReorderPolicy,
    calculate_suggested_quantity,
    calculate_trend,
    days_until_stockout,
    determine_urgency,
)
from stockflow.database import SessionLocal
from stockflow.models.purchase_order import PurchaseOrder
from stockflow.schemas.purchase_order import (
    PurchaseOrderRead,
    PurchaseOrderSuggestion,
    ReorderLineItem,
)
from stockflow.services import inventory_store

logger = logging.getLogger(__name__)

PO_NUMBER_ATTEMPTS = 5
_UNKNOWN_KEY = ("unknown", None)


def _stockout_sort_key(days: Optional[int]):
    # Items without an estimate sort after every numeric value.
    return (days is None, days if days is not None else 0)


def suggestion_sort_key(suggestion: PurchaseOrderSuggestion):
    return (
        URGENCY_RANK.get(suggestion.urgency_level, len(URGENCY_RANK)),
        _stockout_sort_key(suggestion.estimated_stockout_days),
        suggestion.vendor_name.casefold(),
    )


def _line_sort_key(line: ReorderLineItem):
    return (
        URGENCY_RANK.get(line.urgency_level, len(URGENCY_RANK)),
        _stockout_sort_key(line.days_until_stockout),
        line.sku,
    )


def build_line_item(item, *, policy: ReorderPolicy = DEFAULT_POLICY, lead_time_days: Optional[int] = None) -> ReorderLineItem:
    days = days_until_stockout(item.current_stock, item.sales_velocity_30d)
    quantity = calculate_suggested_quantity(item, policy=policy, lead_time_days=lead_time_days)
    unit_cost = float(item.unit_cost or 0)
    return ReorderLineItem(
        sku=item.sku,
        product_name=item.product_name or "",
        vendor_name=item.vendor_name,
        suggested_quantity=quantity,
        unit_cost=unit_cost,
        line_total=round(quantity * unit_cost, 2),
        current_stock=int(item.current_stock or 0),
        reorder_point=int(item.reorder_point or 0),
        sales_velocity_30d=float(item.sales_velocity_30d or 0),
        days_until_stockout=days,
        urgency_level=determine_urgency(days),
        trend=calculate_trend(item.sales_velocity_30d, item.sales_velocity_90d),
    )


def _most_severe(levels) -> str:
    return min(levels, key=lambda level: URGENCY_RANK.get(level, len(URGENCY_RANK)), default=URGENCY_LOW)


class POAggregator:
    """Groups reorder candidates by vendor into purchase-order suggestions.

    Read-only: suggestions are rebuilt from the item table on every call.
    Persisting one is the separate ``create_purchase_order`` step.
    """

    def __init__(self, *, session_factory=SessionLocal, policy: ReorderPolicy = DEFAULT_POLICY) -> None:
        self._session_factory = session_factory
        self._policy = policy

    @classmethod
    def from_settings(cls, settings, *, session_factory=SessionLocal) -> "POAggregator":
        return cls(session_factory=session_factory, policy=ReorderPolicy.from_settings(settings))

    def generate_suggestions(self) -> list[PurchaseOrderSuggestion]:
        db = self._session_factory()
        try:
            items = db.execute(inventory_store.reorder_candidates_query()).scalars().all()
            vendors = inventory_store.load_vendor_index(db)
        finally:
            db.close()

        groups: dict = {}
        for item in items:
            vendor = None
            flag = None
            if item.vendor_id:
                vendor = vendors.by_id.get(item.vendor_id)
                key = ("id", item.vendor_id)
            else:
                match = vendors.match_name(item.vendor_name)
                vendor = match.vendor
                key = ("id", vendor.id) if vendor is not None else _UNKNOWN_KEY
                if match.ambiguous:
                    flag = "SKU {}: vendor name '{}' matches {} vendors".format(
                        item.sku, item.vendor_name, match.candidates
                    )
                elif vendor is None and item.vendor_name:
                    flag = "SKU {}: vendor '{}' not found".format(item.sku, item.vendor_name)
                elif vendor is None:
                    flag = "SKU {}: no vendor on record".format(item.sku)

            group = groups.setdefault(key, {"vendor": vendor, "items": [], "flags": [], "vendor_id": None})
            if key != _UNKNOWN_KEY:
                group["vendor_id"] = key[1]
                if group["vendor"] is None:
                    group["vendor"] = vendor
                if not group.get("name") and item.vendor_name:
                    group["name"] = item.vendor_name
            if flag:
                group["flags"].append(flag)

            lead_time = vendor.lead_time_days if vendor is not None and vendor.lead_time_days else None
            group["items"].append(build_line_item(item, policy=self._policy, lead_time_days=lead_time))

        suggestions = [self._build_suggestion(key, group) for key, group in groups.items()]
        suggestions.sort(key=suggestion_sort_key)
        logger.info("Built %s purchase-order suggestions from %s reorder candidates.", len(suggestions), len(items))
        return suggestions

    def _build_suggestion(self, key, group) -> PurchaseOrderSuggestion:
        vendor = group["vendor"]
        lines = sorted(group["items"], key=_line_sort_key)
        if key == _UNKNOWN_KEY:
            name = UNKNOWN_VENDOR_NAME
        elif vendor is not None:
            name = vendor.name
        else:
            name = group.get("name") or group["vendor_id"]

        known_days = [line.days_until_stockout for line in lines if line.days_until_stockout is not None]
        return PurchaseOrderSuggestion(
            vendor_id=group["vendor_id"],
            vendor_name=name,
            vendor_email=vendor.contact_email if vendor is not None else None,
            items=lines,
            total_amount=round(sum(line.line_total for line in lines), 2),
            total_items=len(lines),
            urgency_level=_most_severe(line.urgency_level for line in lines),
            estimated_stockout_days=min(known_days) if known_days else None,
            data_quality_flags=group["flags"],
        )

    def create_purchase_order(
        self,
        suggestion: PurchaseOrderSuggestion,
        created_by: Optional[str] = None,
        *,
        notes: Optional[str] = None,
        token: Callable[[int], int] = secrets.randbelow,
    ) -> PurchaseOrderRead:
        """Persist a suggestion as a draft order under a freshly minted number."""
        if not suggestion.items:
            raise ValidationError("A purchase order needs at least one line item")

        year = utc_now().year
        db = self._session_factory()
        try:
            for _attempt in range(PO_NUMBER_ATTEMPTS):
                po_number = "PO-{}-{:06d}".format(year, token(1_000_000))
                order = PurchaseOrder(
                    po_number=po_number,
                    vendor_id=suggestion.vendor_id,
                    vendor_name=suggestion.vendor_name,
                    vendor_email=suggestion.vendor_email,
                    status=PO_STATUS_DRAFT,
                    items=[line.model_dump() for line in suggestion.items],
                    total_amount=suggestion.total_amount,
                    total_items=suggestion.total_items,
                    urgency_level=suggestion.urgency_level,
                    estimated_stockout_days=suggestion.estimated_stockout_days,
                    created_by=created_by,
                    notes=notes,
                )
                db.add(order)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    logger.warning("PO number %s already taken; drawing another.", po_number)
                    continue
                logger.info("Draft purchase order %s created for %s.", po_number, suggestion.vendor_name)
                return PurchaseOrderRead.model_validate(order)
        finally:
            db.close()
        raise ValidationError("Could not allocate a unique purchase order number")

    def list_drafts(self, limit: int = 50) -> list[PurchaseOrderRead]:
        db = self._session_factory()
        try:
            orders = db.execute(
                select(PurchaseOrder)
                .where(PurchaseOrder.status == PO_STATUS_DRAFT)
                .order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
                .limit(limit)
            ).scalars().all()
            return [PurchaseOrderRead.model_validate(order) for order in orders]
        finally:
            db.close()

    def get_purchase_order(self, po_id: int) -> PurchaseOrderRead:
        db = self._session_factory()
        try:
            order = db.get(PurchaseOrder, po_id)
            if order is None:
                raise NotFoundError("Purchase order {} not found".format(po_id))
            return PurchaseOrderRead.model_validate(order)
        finally:
            db.close()

    def mark_submitted(self, po_id: int, external_order_id: str, *, submitted_at: datetime) -> PurchaseOrderRead:
        db = self._session_factory()
        try:
            order = db.get(PurchaseOrder, po_id)
            if order is None:
                raise NotFoundError("Purchase order {} not found".format(po_id))
            order.status = PO_STATUS_SUBMITTED
            order.external_order_id = external_order_id
            order.submitted_at = submitted_at
            db.commit()
            return PurchaseOrderRead.model_validate(order)
        finally:
            db.close()


__all__ = ["POAggregator", "build_line_item", "suggestion_sort_key"]
