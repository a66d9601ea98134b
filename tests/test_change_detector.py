import unittest
from types import SimpleNamespace

from stockflow.schemas.inventory import ExternalRecord
from stockflow.services.change_detector import (
    STOCK_FIELDS,
    change_rate,
    content_hash,
    diff,
    efficiency_gain,
    incoming_values,
)


def make_record(**overrides):
    row = {
        "productSku": "SKU-1",
        "productName": "Linen Shirt",
        "quantityOnHand": 12,
        "reorderPoint": 5,
        "reorderQuantity": 24,
        "averageCost": 7.25,
        "primarySupplierId": "V1",
        "primarySupplierName": "Acme Supply",
        "statusId": "PRODUCT_ACTIVE",
        "lastModifiedDate": "2024-03-01T10:00:00Z",
    }
    row.update(overrides)
    return ExternalRecord.model_validate(row)


def stored_copy(record, **overrides):
    values = {
        "product_name": record.product_name,
        "current_stock": record.current_stock,
        "reorder_point": record.reorder_point,
        "reorder_quantity": record.reorder_quantity,
        "unit_cost": record.unit_cost,
        "lead_time_days": 10,
        "vendor_id": record.vendor_id,
        "vendor_name": record.vendor_name,
        "active": record.active,
        "sales_velocity_30d": 1.5,
        "sales_velocity_90d": 1.0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class ChangeDetectorTest(unittest.TestCase):
    def test_new_item_always_has_changes(self):
        change = diff(None, make_record())
        self.assertTrue(change.is_new)
        self.assertTrue(change.has_changes)

    def test_identical_record_has_no_changes(self):
        record = make_record()
        change = diff(stored_copy(record), record)
        self.assertFalse(change.has_changes)
        self.assertEqual(change.changed_fields, [])

    def test_detects_stock_and_cost_changes(self):
        record = make_record(quantityOnHand=3, averageCost=8.0)
        change = diff(stored_copy(make_record()), record)
        self.assertEqual(set(change.changed_fields), {"current_stock", "unit_cost"})
        self.assertEqual(change.previous_values["current_stock"], 12)
        self.assertEqual(change.changes(), {"current_stock": 3, "unit_cost": 8.0})

    def test_ignores_volatile_fields(self):
        record = make_record(lastModifiedDate="2024-03-05T08:00:00Z")
        self.assertFalse(diff(stored_copy(make_record()), record).has_changes)

    def test_vendor_name_comparison_ignores_case(self):
        record = make_record(primarySupplierName="ACME SUPPLY ")
        self.assertFalse(diff(stored_copy(make_record()), record).has_changes)

    def test_missing_velocity_is_not_a_change(self):
        # The product listing carries no velocity; stored values stay authoritative.
        record = make_record()
        self.assertIsNone(record.sales_velocity_30d)
        change = diff(stored_copy(record, sales_velocity_30d=9.0), record)
        self.assertNotIn("sales_velocity_30d", change.changed_fields)

    def test_float_noise_is_not_a_change(self):
        record = make_record(averageCost=7.2500000001)
        self.assertFalse(diff(stored_copy(make_record()), record).has_changes)

    def test_active_flag(self):
        record = make_record(statusId="PRODUCT_INACTIVE")
        self.assertEqual(diff(stored_copy(make_record()), record).changed_fields, ["active"])

    def test_stock_only_field_set(self):
        record = make_record(quantityOnHand=1, averageCost=99)
        change = diff(stored_copy(make_record()), record, fields=STOCK_FIELDS)
        self.assertEqual(change.changed_fields, ["current_stock"])
        self.assertIsNone(change.content_hash)

    def test_overrides_replace_incoming_values(self):
        record = make_record(primarySupplierId=None)
        change = diff(stored_copy(make_record()), record, overrides={"vendor_id": "V1"})
        self.assertNotIn("vendor_id", change.changed_fields)

    def test_content_hash_is_stable(self):
        first = incoming_values(make_record())
        second = incoming_values(make_record(lastModifiedDate="2025-01-01T00:00:00Z"))
        self.assertEqual(content_hash(first), content_hash(second))
        self.assertNotEqual(content_hash(first), content_hash(incoming_values(make_record(quantityOnHand=1))))
        self.assertEqual(len(content_hash(first)), 32)

    def test_metrics(self):
        self.assertEqual(efficiency_gain(200, 50), 75.0)
        self.assertEqual(change_rate(200, 50), 25.0)
        self.assertEqual(efficiency_gain(0, 0), 0.0)
        self.assertEqual(efficiency_gain(10, 0), 100.0)


if __name__ == "__main__":
    unittest.main()
