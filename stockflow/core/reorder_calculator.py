"""Order-size and urgency rules for a single stock item.

Everything here is pure: the functions take plain numbers or any object
exposing the inventory item attributes (an ORM row, a schema, a test double)
and never touch the database.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from stockflow.core.constants import (
    URGENCY_CRITICAL,
    URGENCY_HIGH,
    URGENCY_LOW,
    URGENCY_MEDIUM,
)

DAYS_PER_YEAR = 365
ROUNDING_THRESHOLD = 100
ROUNDING_STEP = 10
TREND_THRESHOLD = 0.1


@dataclass(frozen=True)
class ReorderPolicy:
    order_cost: float = 50.0
    holding_cost_rate: float = 0.25
    default_unit_cost: float = 10.0
    default_lead_time_days: int = 7
    safety_factor: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> "ReorderPolicy":
        return cls(
            order_cost=settings.REORDER_ORDER_COST,
            holding_cost_rate=settings.REORDER_HOLDING_COST_RATE,
            default_unit_cost=settings.REORDER_DEFAULT_UNIT_COST,
            default_lead_time_days=settings.REORDER_DEFAULT_LEAD_TIME_DAYS,
            safety_factor=settings.REORDER_SAFETY_FACTOR,
        )


DEFAULT_POLICY = ReorderPolicy()


def _number(value, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def _ceil(value: float) -> int:
    # Products of huge inputs can overflow to inf; treat them as no signal.
    if not math.isfinite(value):
        return 0
    return int(math.ceil(value))


def calculate_eoq(annual_demand: float, order_cost: float, holding_cost_per_unit: float) -> int:
    """Economic order quantity: ceil(sqrt(2DS / H)), or 0 without demand."""
    if annual_demand is None or annual_demand <= 0:
        return 0
    if holding_cost_per_unit is None or holding_cost_per_unit <= 0:
        raise ValueError("holding_cost_per_unit must be greater than zero")
    return _ceil(math.sqrt((2 * annual_demand * order_cost) / holding_cost_per_unit))


def round_order_quantity(quantity: int) -> int:
    if quantity > ROUNDING_THRESHOLD:
        return int(math.ceil(quantity / ROUNDING_STEP) * ROUNDING_STEP)
    return quantity


def calculate_suggested_quantity(
    item,
    *,
    policy: ReorderPolicy = DEFAULT_POLICY,
    lead_time_days: Optional[int] = None,
) -> int:
    """Units to order for one item; always at least 1.

    ``lead_time_days`` overrides the item's own lead time (vendor-level
    override). Without a 30-day demand signal the vendor lot size is used.
    """
    reorder_quantity = max(0, int(_number(getattr(item, "reorder_quantity", None))))
    velocity_30d = _number(getattr(item, "sales_velocity_30d", None))

    if velocity_30d <= 0:
        return max(1, reorder_quantity)

    unit_cost = _number(getattr(item, "unit_cost", None))
    if unit_cost <= 0:
        unit_cost = policy.default_unit_cost
    holding_cost = unit_cost * policy.holding_cost_rate
    eoq = calculate_eoq(velocity_30d * DAYS_PER_YEAR, policy.order_cost, holding_cost)

    if lead_time_days is None:
        lead_time_days = getattr(item, "lead_time_days", None)
    lead_days = _number(lead_time_days)
    if lead_days <= 0:
        lead_days = policy.default_lead_time_days
    lead_time_coverage = _ceil(velocity_30d * lead_days)

    velocity_90d = _number(getattr(item, "sales_velocity_90d", None))
    if velocity_90d <= 0:
        velocity_90d = velocity_30d
    safety_stock = _ceil(abs(velocity_30d - velocity_90d) * lead_days * policy.safety_factor)

    # Backorders (negative stock) have to be covered on top of the regular order.
    backorder = max(0, -int(_number(getattr(item, "current_stock", None))))

    quantity = max(eoq, lead_time_coverage) + safety_stock + backorder
    quantity = max(quantity, reorder_quantity)
    return max(1, round_order_quantity(quantity))


def days_until_stockout(stock, velocity) -> Optional[int]:
    """Whole days of stock left, or None when there is no demand estimate.

    Zero or negative stock is already out: 0 days regardless of velocity.
    """
    stock_value = _number(stock)
    velocity_value = _number(velocity)
    if stock_value <= 0:
        return 0
    if velocity_value <= 0:
        return None
    days = stock_value / velocity_value
    if not math.isfinite(days):
        return None
    return int(math.floor(days))


def determine_urgency(days: Optional[float]) -> str:
    if days is None:
        return URGENCY_CRITICAL
    if days <= 7:
        return URGENCY_CRITICAL
    if days <= 14:
        return URGENCY_HIGH
    if days <= 30:
        return URGENCY_MEDIUM
    return URGENCY_LOW


def calculate_trend(velocity_30d, velocity_90d) -> str:
    recent = _number(velocity_30d)
    baseline = _number(velocity_90d)
    if baseline <= 0:
        return "stable"
    change_ratio = (recent - baseline) / baseline
    if change_ratio > TREND_THRESHOLD:
        return "increasing"
    if change_ratio < -TREND_THRESHOLD:
        return "decreasing"
    return "stable"


__all__ = [
    "DEFAULT_POLICY",
    "ReorderPolicy",
    "calculate_eoq",
    "calculate_suggested_quantity",
    "calculate_trend",
    "days_until_stockout",
    "determine_urgency",
    "round_order_quantity",
]
