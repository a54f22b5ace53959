import unittest
from unittest import mock

from sqlalchemy.exc import OperationalError

from storefront.db import PostgresDbClient
from storefront.errors import (
    BackendUnavailable,
    DanglingReferenceError,
    HostedApiError,
    NotFoundError,
    UniquenessViolation,
    ValidationFailure,
)
from storefront.hosted import SqlHostedApi, SupabaseDbClient
from storefront.schemas import InsertCartItem, InsertOrder, InsertUser
from storefront.tables import Base


def make_user(username="erin", email="erin@example.com"):
    return InsertUser(username=username, email=email, password="hashed", name="Erin")


class LaggingUserSequenceApi(SqlHostedApi):
    """Hosted API whose users id sequence hands out an id already in use."""

    def insert(self, table, values):
        if table == "users":
            raise HostedApiError(
                'duplicate key value violates unique constraint "users_pkey"',
                code=HostedApiError.UNIQUE_VIOLATION_CODE,
            )
        return super().insert(table, values)


class HostedTestCase(unittest.TestCase):
    """Hosted API and direct SQL share one SQLite database, as in production."""

    def setUp(self):
        self.direct = PostgresDbClient(
            "sqlite+pysqlite:///:memory:", create_schema=False, seed=False
        )
        self.api = SqlHostedApi(self.direct.engine)
        self.db = SupabaseDbClient(self.api, self.direct)

    def tearDown(self):
        self.direct.dispose()


class HostedInitializationTests(HostedTestCase):
    def test_missing_tables_trigger_migration(self):
        self.db.initialize()
        self.assertTrue(self.db.hosted_ready)
        self.assertEqual(len(self.db.get_all_categories()), 3)
        # Migrated from the in-memory catalog.
        self.assertEqual(len(self.db.get_featured_products()), 4)

    def test_empty_tables_are_seeded_with_sample_catalog(self):
        Base.metadata.create_all(self.direct.engine)
        self.db.initialize()
        self.assertTrue(self.db.hosted_ready)
        self.assertEqual(len(self.db.get_all_products()), 6)
        self.assertEqual(len(self.db.get_featured_products()), 5)

    def test_lagging_schema_cache_degrades_to_direct_sql(self):
        self.api.unavailable = {"categories"}
        self.db.initialize()
        self.assertFalse(self.db.hosted_ready)
        self.assertEqual(len(self.db.get_all_categories()), 3)
        self.assertEqual(self.direct.count_rows("categories"), 3)

    def test_initialize_never_raises_when_everything_fails(self):
        self.api.fail_all = True
        with mock.patch.object(
            self.direct, "has_catalog", side_effect=OperationalError("SELECT", {}, Exception("down"))
        ):
            self.db.initialize()
        self.assertFalse(self.db.hosted_ready)


class HostedOperationTests(HostedTestCase):
    def setUp(self):
        super().setUp()
        self.db.initialize()

    def test_reads_fall_back_when_table_unavailable(self):
        self.api.unavailable = {"products"}
        self.assertEqual(len(self.db.get_all_products()), 6)
        self.assertIn(("select", "products"), self.api.calls)

    def test_missing_rows_return_none_on_hosted_path(self):
        self.assertIsNone(self.db.get_product_by_id(999))
        self.assertIsNone(self.db.get_user(999))
        self.assertIsNone(self.db.get_user_by_username("nobody"))

    def test_create_user_falls_back_with_next_id(self):
        first = self.db.create_user(make_user())
        self.api.fail_all = True
        second = self.db.create_user(make_user(username="finn", email="finn@example.com"))
        self.assertEqual(second.id, first.id + 1)
        self.assertEqual(self.db.get_user(second.id).username, "finn")

    def test_duplicate_user_rejected_on_both_paths(self):
        existing = self.db.create_user(make_user())
        before = self.direct.get_user(existing.id)
        with self.assertRaises(UniquenessViolation):
            self.db.create_user(make_user(email="erin2@example.com"))
        self.api.fail_all = True
        with self.assertRaises(UniquenessViolation):
            self.db.create_user(make_user(username="erin2"))
        self.assertEqual(self.direct.count_rows("users"), 1)
        self.assertEqual(self.direct.get_user(existing.id), before)

    def test_hosted_insert_reports_unique_violation_code(self):
        self.db.create_user(make_user())
        with self.assertRaises(HostedApiError) as ctx:
            self.api.insert(
                "users",
                {
                    "username": "erin",
                    "email": "erin@example.com",
                    "password": "x",
                    "name": "Erin",
                    "role": "user",
                    "created_at": "2026-01-01T00:00:00+00:00",
                },
            )
        self.assertTrue(ctx.exception.is_unique_violation)

    def test_cart_merge_and_join(self):
        self.db.add_to_cart(InsertCartItem(user_id=1, product_id=1, quantity=1))
        self.db.add_to_cart(InsertCartItem(user_id=1, product_id=1, quantity=2))
        self.db.add_to_cart(InsertCartItem(user_id=1, product_id=3, quantity=1))
        items = self.db.get_cart_items(1)
        self.assertEqual(len(items), 2)
        self.assertEqual(items[0].quantity, 3)
        self.assertEqual(items[1].product.id, 3)

    def test_cart_join_restarts_on_direct_sql(self):
        self.db.add_to_cart(InsertCartItem(user_id=2, product_id=2))
        self.db.add_to_cart(InsertCartItem(user_id=2, product_id=4))
        self.api.unavailable = {"products"}
        items = self.db.get_cart_items(2)
        self.assertEqual([i.product.id for i in items], [2, 4])

    def test_cart_with_missing_product_raises(self):
        self.db.add_to_cart(InsertCartItem(user_id=1, product_id=5))
        self.api.delete("products", filters={"id": 5})
        with self.assertRaises(DanglingReferenceError):
            self.db.get_cart_items(1)

    def test_primary_key_collision_falls_back_to_next_id(self):
        existing = self.db.create_user(make_user())
        db = SupabaseDbClient(LaggingUserSequenceApi(self.direct.engine), self.direct)
        created = db.create_user(make_user(username="fresh", email="fresh@example.com"))
        self.assertEqual(created.id, existing.id + 1)
        self.assertEqual(created.username, "fresh")
        self.assertEqual(self.direct.get_user(existing.id).username, existing.username)

    def test_missing_in_stock_reads_as_true_on_hosted_path(self):
        self.api.upsert(
            "products",
            {
                "id": 70,
                "name": "Legacy Balm",
                "tagline": "Older row",
                "description": "Written before stock tracking",
                "price": 12.0,
                "image_url": "/img/balm.jpg",
                "category_id": 1,
                "is_featured": False,
                "in_stock": None,
            },
        )
        self.assertTrue(self.db.get_product_by_id(70).in_stock)

    def test_cart_item_updates(self):
        item = self.db.add_to_cart(InsertCartItem(user_id=1, product_id=1, quantity=2))
        for quantity in (0, -1):
            with self.assertRaises(ValidationFailure):
                self.db.update_cart_item(item.id, quantity)
        self.assertEqual(self.db.get_cart_items(1)[0].quantity, 2)
        with self.assertRaises(NotFoundError):
            self.db.update_cart_item(999, 2)
        self.assertEqual(self.db.update_cart_item(item.id, 6).quantity, 6)
        self.db.remove_cart_item(item.id)
        self.db.remove_cart_item(item.id)
        self.db.clear_cart(1)
        self.assertEqual(self.db.get_cart_items(1), [])

    def test_orders_round_trip(self):
        order = self.db.create_order(
            InsertOrder(
                user_id=4,
                items=[{"productId": 1, "quantity": 1}],
                total_amount=34.0,
                shipping_address="3 Elm St",
            )
        )
        self.assertEqual(self.db.get_order_by_id(order.id).items, order.items)
        self.api.fail_all = True
        self.assertEqual([o.id for o in self.db.get_user_orders(4)], [order.id])

    def test_both_paths_failing_raises_backend_unavailable(self):
        self.api.fail_all = True
        with mock.patch.object(
            self.direct,
            "get_all_testimonials",
            side_effect=OperationalError("SELECT", {}, Exception("down")),
        ):
            with self.assertRaises(BackendUnavailable) as ctx:
                self.db.get_all_testimonials()
        self.assertIn("get_all_testimonials", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, OperationalError)

    def test_shares_direct_session_store(self):
        self.assertIs(self.db.session_store, self.direct.session_store)


if __name__ == "__main__":
    unittest.main()
