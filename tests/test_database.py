import unittest

from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import StaticPool

from stockflow.database.engine import build_engine, ensure_sqlite_schema


class EnsureSqliteSchemaTest(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        with self.engine.begin() as conn:
            conn.exec_driver_sql(
                "CREATE TABLE inventory_items (id INTEGER PRIMARY KEY, sku TEXT, current_stock INTEGER)"
            )

    def test_adds_change_detection_columns_to_legacy_table(self):
        added = ensure_sqlite_schema(self.engine)

        self.assertIn(("inventory_items", "content_hash"), added)
        self.assertIn(("inventory_items", "last_synced_at"), added)
        columns = {column["name"] for column in inspect(self.engine).get_columns("inventory_items")}
        self.assertTrue({"content_hash", "last_synced_at", "external_modified_at", "discontinued"} <= columns)

    def test_missing_tables_are_left_alone(self):
        added = ensure_sqlite_schema(self.engine)
        self.assertFalse(any(table == "vendors" for table, _ in added))

    def test_second_pass_is_a_no_op(self):
        ensure_sqlite_schema(self.engine)
        self.assertEqual(ensure_sqlite_schema(self.engine), [])


class BuildEngineTest(unittest.TestCase):
    def test_memory_database_shares_one_connection(self):
        engine = build_engine("sqlite:///:memory:")
        self.assertIsInstance(engine.pool, StaticPool)


if __name__ == "__main__":
    unittest.main()
