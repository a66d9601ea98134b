import unittest
from types import SimpleNamespace

from stockflow.core.reorder_calculator import (
    ReorderPolicy,
    calculate_eoq,
    calculate_suggested_quantity,
    calculate_trend,
    days_until_stockout,
    determine_urgency,
    round_order_quantity,
)


def make_item(**overrides):
    values = {
        "current_stock": 5,
        "reorder_point": 20,
        "reorder_quantity": 50,
        "unit_cost": 0.0,
        "lead_time_days": 7,
        "sales_velocity_30d": 10.0,
        "sales_velocity_90d": 0.0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class EoqTest(unittest.TestCase):
    def test_zero_demand_gives_zero(self):
        for order_cost, holding in ((50, 2.5), (1, 100), (0, 1)):
            self.assertEqual(calculate_eoq(0, order_cost, holding), 0)
        self.assertEqual(calculate_eoq(-10, 50, 2.5), 0)

    def test_formula(self):
        # sqrt(2 * 3650 * 50 / 2.5) = 382.1
        self.assertEqual(calculate_eoq(3650, 50, 2.5), 383)

    def test_monotonic_in_demand_and_holding_cost(self):
        demands = [calculate_eoq(demand, 50, 2.5) for demand in (1, 10, 100, 1000, 10000)]
        self.assertEqual(demands, sorted(demands))
        holdings = [calculate_eoq(1000, 50, holding) for holding in (0.5, 1, 2, 5, 25)]
        self.assertEqual(holdings, sorted(holdings, reverse=True))

    def test_rejects_non_positive_holding_cost(self):
        with self.assertRaises(ValueError):
            calculate_eoq(100, 50, 0)


class SuggestedQuantityTest(unittest.TestCase):
    def test_scenario_low_stock_fast_mover(self):
        item = make_item()
        quantity = calculate_suggested_quantity(item)
        eoq = calculate_eoq(10 * 365, 50, 10 * 0.25)

        self.assertEqual(days_until_stockout(item.current_stock, item.sales_velocity_30d), 0)
        self.assertEqual(determine_urgency(0), "critical")
        self.assertGreaterEqual(quantity, max(eoq, 10 * 7))
        self.assertGreaterEqual(quantity, 50)
        self.assertEqual(quantity % 10, 0)

    def test_never_below_one(self):
        cases = [
            make_item(sales_velocity_30d=0, reorder_quantity=0),
            make_item(current_stock=-40, sales_velocity_30d=0, reorder_quantity=0),
            make_item(current_stock=-5, sales_velocity_30d=0.01, reorder_quantity=0, lead_time_days=0),
            make_item(sales_velocity_30d=None, reorder_quantity=None, unit_cost=None),
        ]
        for item in cases:
            self.assertGreaterEqual(calculate_suggested_quantity(item), 1)

    def test_non_finite_inputs_do_not_raise(self):
        inf = float("inf")
        self.assertEqual(calculate_suggested_quantity(make_item(sales_velocity_30d=inf)), 50)
        self.assertEqual(calculate_suggested_quantity(make_item(sales_velocity_30d=float("nan"))), 50)
        # Finite inputs whose products overflow.
        self.assertEqual(calculate_suggested_quantity(make_item(sales_velocity_30d=1e308)), 50)
        cases = [
            make_item(current_stock=-inf, unit_cost=inf, lead_time_days=inf),
            make_item(reorder_quantity=inf, sales_velocity_90d=-inf),
        ]
        for item in cases:
            self.assertGreaterEqual(calculate_suggested_quantity(item), 1)
        self.assertEqual(calculate_eoq(inf, 50, 2.5), 0)
        self.assertIsNone(days_until_stockout(1e308, 1e-308))
        self.assertEqual(calculate_trend(inf, 10), "decreasing")

    def test_without_demand_uses_lot_size(self):
        self.assertEqual(calculate_suggested_quantity(make_item(sales_velocity_30d=0, reorder_quantity=24)), 24)

    def test_negative_stock_adds_backorder(self):
        base = calculate_suggested_quantity(make_item(current_stock=0, sales_velocity_30d=1, reorder_quantity=0))
        backordered = calculate_suggested_quantity(
            make_item(current_stock=-30, sales_velocity_30d=1, reorder_quantity=0)
        )
        self.assertGreaterEqual(backordered, base + 30)

    def test_large_quantities_are_multiples_of_ten(self):
        for velocity in (3.3, 7.7, 12.1, 41.0, 99.9):
            quantity = calculate_suggested_quantity(make_item(sales_velocity_30d=velocity, unit_cost=3.7))
            if quantity > 100:
                self.assertEqual(quantity % 10, 0, velocity)

    def test_rounding_only_above_threshold(self):
        self.assertEqual(round_order_quantity(100), 100)
        self.assertEqual(round_order_quantity(97), 97)
        self.assertEqual(round_order_quantity(101), 110)
        self.assertEqual(round_order_quantity(110), 110)

    def test_velocity_divergence_adds_safety_stock(self):
        steady = calculate_suggested_quantity(make_item(sales_velocity_30d=2, sales_velocity_90d=2, reorder_quantity=0))
        volatile = calculate_suggested_quantity(make_item(sales_velocity_30d=2, sales_velocity_90d=6, reorder_quantity=0))
        self.assertGreater(volatile, steady)

    def test_vendor_lead_time_override(self):
        item = make_item(sales_velocity_30d=20, unit_cost=500, lead_time_days=3, reorder_quantity=0)
        short = calculate_suggested_quantity(item)
        long = calculate_suggested_quantity(item, lead_time_days=30)
        self.assertGreaterEqual(long, 20 * 30)
        self.assertLess(short, long)

    def test_policy_is_configurable(self):
        item = make_item(sales_velocity_30d=1, reorder_quantity=0, unit_cost=10)
        cheap_orders = calculate_suggested_quantity(item, policy=ReorderPolicy(order_cost=1))
        costly_orders = calculate_suggested_quantity(item, policy=ReorderPolicy(order_cost=500))
        self.assertLess(cheap_orders, costly_orders)


class UrgencyTest(unittest.TestCase):
    def test_boundaries(self):
        self.assertEqual(determine_urgency(None), "critical")
        self.assertEqual(determine_urgency(0), "critical")
        self.assertEqual(determine_urgency(7), "critical")
        self.assertEqual(determine_urgency(8), "high")
        self.assertEqual(determine_urgency(14), "high")
        self.assertEqual(determine_urgency(15), "medium")
        self.assertEqual(determine_urgency(30), "medium")
        self.assertEqual(determine_urgency(31), "low")

    def test_days_until_stockout_conventions(self):
        self.assertEqual(days_until_stockout(0, 0), 0)
        self.assertEqual(days_until_stockout(-3, 0), 0)
        self.assertEqual(days_until_stockout(-3, 5), 0)
        self.assertIsNone(days_until_stockout(10, 0))
        self.assertIsNone(days_until_stockout(10, None))
        self.assertEqual(days_until_stockout(25, 10), 2)

    def test_trend(self):
        self.assertEqual(calculate_trend(12, 10), "increasing")
        self.assertEqual(calculate_trend(8, 10), "decreasing")
        self.assertEqual(calculate_trend(10.5, 10), "stable")
        self.assertEqual(calculate_trend(5, 0), "stable")


if __name__ == "__main__":
    unittest.main()
