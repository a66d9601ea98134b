import re
import unittest

from stockflow.core.errors import NotFoundError, ValidationError
from stockflow.models.inventory_item import InventoryItem
from stockflow.models.vendor import Vendor
from stockflow.services.po_aggregator import POAggregator
from tests.support import memory_session_factory


def make_item(sku, **overrides):
    values = {
        "sku": sku,
        "product_name": "Item {}".format(sku),
        "current_stock": 5,
        "reorder_point": 20,
        "reorder_quantity": 10,
        "unit_cost": 2.0,
        "lead_time_days": 7,
        "sales_velocity_30d": 1.0,
        "sales_velocity_90d": 1.0,
        "vendor_id": "V1",
        "vendor_name": "Acme Supply",
        "active": True,
        "discontinued": False,
    }
    values.update(overrides)
    return InventoryItem(**values)


class POAggregatorTest(unittest.TestCase):
    def setUp(self):
        self.session_factory = memory_session_factory()
        self.aggregator = POAggregator(session_factory=self.session_factory)
        self.add(
            Vendor(id="V1", name="Acme Supply", contact_email="orders@acme.test"),
            Vendor(id="V2", name="Bolt Traders"),
        )

    def add(self, *rows):
        db = self.session_factory()
        try:
            db.add_all(rows)
            db.commit()
        finally:
            db.close()

    def test_groups_vendor_items_with_most_severe_urgency(self):
        self.add(
            make_item("A-1", current_stock=4, reorder_point=10, sales_velocity_30d=2),
            make_item("A-2", current_stock=60, reorder_point=100, sales_velocity_30d=1),
        )
        suggestions = self.aggregator.generate_suggestions()

        self.assertEqual(len(suggestions), 1)
        suggestion = suggestions[0]
        self.assertEqual(suggestion.vendor_id, "V1")
        self.assertEqual(suggestion.vendor_email, "orders@acme.test")
        self.assertEqual(suggestion.urgency_level, "critical")
        self.assertEqual(suggestion.estimated_stockout_days, 2)
        self.assertEqual(len(suggestion.items), 2)
        self.assertEqual([line.urgency_level for line in suggestion.items], ["critical", "low"])
        self.assertEqual(suggestion.total_items, 2)
        self.assertGreater(sum(line.suggested_quantity for line in suggestion.items), suggestion.total_items)
        self.assertAlmostEqual(suggestion.total_amount, sum(line.line_total for line in suggestion.items))

    def test_suggestions_cover_exactly_the_reorder_candidates(self):
        self.add(
            make_item("LOW-1", current_stock=3),
            make_item("LOW-2", current_stock=20, vendor_id="V2", vendor_name="Bolt Traders"),
            make_item("NEG-1", current_stock=-4, vendor_id=None, vendor_name=None),
            make_item("MIN-1", current_stock=30, minimum_stock=40),
            make_item("OK-1", current_stock=21),
            make_item("OFF-1", current_stock=1, active=False),
            make_item("DISC-1", current_stock=1, discontinued=True),
        )
        suggestions = self.aggregator.generate_suggestions()
        skus = [line.sku for suggestion in suggestions for line in suggestion.items]

        self.assertEqual(len(skus), len(set(skus)))
        self.assertEqual(set(skus), {"LOW-1", "LOW-2", "NEG-1", "MIN-1"})
        for suggestion in suggestions:
            for line in suggestion.items:
                self.assertGreaterEqual(line.suggested_quantity, 1)

    def test_sorted_by_urgency_then_stockout_days(self):
        self.add(
            make_item("L", vendor_id="V-LOW", vendor_name="Low Co", current_stock=50, reorder_point=60, sales_velocity_30d=1),
            make_item("M", vendor_id="V-MED", vendor_name="Med Co", current_stock=20, sales_velocity_30d=1),
            make_item("H", vendor_id="V-HIGH", vendor_name="High Co", current_stock=10, sales_velocity_30d=1),
            make_item("C5", vendor_id="V-C5", vendor_name="Crit Five", current_stock=5, sales_velocity_30d=1),
            make_item("C1", vendor_id="V-C1", vendor_name="Crit One", current_stock=1, sales_velocity_30d=1),
            make_item("CN", vendor_id="V-CN", vendor_name="No Demand", current_stock=5, sales_velocity_30d=0),
        )
        suggestions = self.aggregator.generate_suggestions()

        self.assertEqual(
            [suggestion.vendor_id for suggestion in suggestions],
            ["V-C1", "V-C5", "V-CN", "V-HIGH", "V-MED", "V-LOW"],
        )
        self.assertEqual(
            [suggestion.urgency_level for suggestion in suggestions],
            ["critical", "critical", "critical", "high", "medium", "low"],
        )
        self.assertIsNone(suggestions[2].estimated_stockout_days)
        # Vendor known only by id keeps the item's vendor name.
        self.assertEqual(suggestions[0].vendor_name, "Crit One")

    def test_vendor_name_fallback(self):
        self.add(make_item("N-1", vendor_id=None, vendor_name="  bolt   TRADERS "))
        suggestion = self.aggregator.generate_suggestions()[0]
        self.assertEqual(suggestion.vendor_id, "V2")
        self.assertEqual(suggestion.vendor_name, "Bolt Traders")
        self.assertEqual(suggestion.data_quality_flags, [])

    def test_ambiguous_and_unknown_vendors_are_flagged(self):
        self.add(
            Vendor(id="V3", name="Twin Co"),
            Vendor(id="V4", name="twin co"),
            make_item("T-1", vendor_id=None, vendor_name="Twin Co"),
            make_item("U-1", vendor_id=None, vendor_name="Nobody Ltd"),
            make_item("U-2", vendor_id=None, vendor_name=None),
        )
        suggestions = self.aggregator.generate_suggestions()

        self.assertEqual(len(suggestions), 1)
        unknown = suggestions[0]
        self.assertEqual(unknown.vendor_name, "Unknown Vendor")
        self.assertIsNone(unknown.vendor_id)
        self.assertEqual(len(unknown.items), 3)
        self.assertEqual(len(unknown.data_quality_flags), 3)
        self.assertTrue(any("matches 2 vendors" in flag for flag in unknown.data_quality_flags))

    def test_vendor_lead_time_overrides_item(self):
        self.add(make_item("LT-1", sales_velocity_30d=20, unit_cost=500, lead_time_days=2, reorder_quantity=0))
        before = self.aggregator.generate_suggestions()[0].items[0].suggested_quantity

        db = self.session_factory()
        try:
            db.get(Vendor, "V1").lead_time_days = 30
            db.commit()
        finally:
            db.close()

        after = self.aggregator.generate_suggestions()[0].items[0].suggested_quantity
        self.assertGreaterEqual(after, 600)
        self.assertLess(before, after)

    def test_create_purchase_order_mints_unique_numbers(self):
        self.add(make_item("PO-1", current_stock=2))
        suggestion = self.aggregator.generate_suggestions()[0]

        first = self.aggregator.create_purchase_order(suggestion, "buyer@example.com", token=lambda _upper: 123456)
        tokens = iter([123456, 654321])
        second = self.aggregator.create_purchase_order(suggestion, token=lambda _upper: next(tokens))

        self.assertRegex(first.po_number, r"^PO-\d{4}-123456$")
        self.assertRegex(second.po_number, r"^PO-\d{4}-654321$")
        self.assertTrue(re.match(r"^PO-\d{4}-\d{6}$", self.aggregator.create_purchase_order(suggestion).po_number))
        self.assertEqual(first.status, "draft")
        self.assertEqual(first.created_by, "buyer@example.com")
        self.assertEqual(first.items[0]["sku"], "PO-1")
        self.assertEqual(len(self.aggregator.list_drafts()), 3)

    def test_create_purchase_order_requires_items(self):
        self.add(make_item("PO-2", current_stock=2))
        suggestion = self.aggregator.generate_suggestions()[0].model_copy(update={"items": []})
        with self.assertRaises(ValidationError):
            self.aggregator.create_purchase_order(suggestion)

    def test_mark_submitted(self):
        self.add(make_item("PO-3", current_stock=2))
        order = self.aggregator.create_purchase_order(self.aggregator.generate_suggestions()[0])
        submitted = self.aggregator.mark_submitted(order.id, "EXT-9", submitted_at=order.created_at)
        self.assertEqual(submitted.status, "submitted")
        self.assertEqual(submitted.external_order_id, "EXT-9")
        self.assertEqual(self.aggregator.list_drafts(), [])
        with self.assertRaises(NotFoundError):
            self.aggregator.get_purchase_order(999)


if __name__ == "__main__":
    unittest.main()
