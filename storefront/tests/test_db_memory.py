import unittest

from storefront.db import InMemoryDbClient
from storefront.errors import (
    DanglingReferenceError,
    NotFoundError,
    UniquenessViolation,
    ValidationFailure,
)
from storefront.schemas import InsertCartItem, InsertOrder, InsertProduct, InsertUser


def make_user(username="alice", email="alice@example.com"):
    return InsertUser(username=username, email=email, password="hashed", name="Alice")


class InMemoryDbClientTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()

    def test_seeded_catalog(self):
        self.assertEqual(len(self.db.get_all_categories()), 3)
        self.assertEqual(len(self.db.get_all_products()), 6)
        self.assertEqual(len(self.db.get_featured_products()), 4)
        self.assertEqual(len(self.db.get_all_testimonials()), 3)

    def test_products_by_category(self):
        facial = self.db.get_all_categories()[0]
        products = self.db.get_products_by_category(facial.id)
        self.assertTrue(products)
        self.assertTrue(all(p.category_id == facial.id for p in products))

    def test_add_to_cart_merges_quantities(self):
        first = self.db.add_to_cart(InsertCartItem(user_id=1, product_id=1, quantity=2))
        second = self.db.add_to_cart(InsertCartItem(user_id=1, product_id=1, quantity=3))
        self.assertEqual(first.id, second.id)
        self.assertEqual(second.quantity, 5)
        self.assertEqual(len(self.db.get_cart_items(1)), 1)

    def test_update_cart_item_rejects_quantity_below_one(self):
        item = self.db.add_to_cart(InsertCartItem(user_id=1, product_id=1, quantity=2))
        for quantity in (0, -1):
            with self.assertRaises(ValidationFailure):
                self.db.update_cart_item(item.id, quantity)
        self.assertEqual(self.db.get_cart_items(1)[0].quantity, 2)

    def test_update_missing_cart_item(self):
        with self.assertRaises(NotFoundError):
            self.db.update_cart_item(999, 1)

    def test_deletes_are_idempotent(self):
        item = self.db.add_to_cart(InsertCartItem(user_id=1, product_id=1))
        self.db.remove_cart_item(item.id)
        self.db.remove_cart_item(item.id)
        self.db.clear_cart(1)
        self.db.clear_cart(1)
        self.assertEqual(self.db.get_cart_items(1), [])

    def test_cart_join_returns_products(self):
        self.db.add_to_cart(InsertCartItem(user_id=7, product_id=1, quantity=1))
        self.db.add_to_cart(InsertCartItem(user_id=7, product_id=2, quantity=4))
        self.db.add_to_cart(InsertCartItem(user_id=8, product_id=3, quantity=1))
        items = self.db.get_cart_items(7)
        self.assertEqual(len(items), 2)
        self.assertEqual({i.product.id for i in items}, {1, 2})
        self.assertEqual(items[1].product.name, self.db.get_product_by_id(2).name)

    def test_empty_cart(self):
        self.assertEqual(self.db.get_cart_items(42), [])

    def test_cart_with_missing_product_raises(self):
        self.db.add_to_cart(InsertCartItem(user_id=1, product_id=1))
        del self.db.products[1]
        with self.assertRaises(DanglingReferenceError):
            self.db.get_cart_items(1)

    def test_duplicate_user_rejected_without_mutation(self):
        existing = self.db.create_user(make_user())
        before = existing.model_copy()
        with self.assertRaises(UniquenessViolation):
            self.db.create_user(make_user(email="other@example.com"))
        with self.assertRaises(UniquenessViolation):
            self.db.create_user(make_user(username="other"))
        self.assertEqual(len(self.db.users), 1)
        self.assertEqual(self.db.get_user(existing.id), before)

    def test_product_round_trip(self):
        created = self.db.create_product(
            InsertProduct(
                name="Rose Toner",
                tagline="Refresh",
                description="Rosewater toner",
                price=19.999,
                original_price=25.0,
                image_url="/img/toner.jpg",
                category_id=1,
                is_new_arrival=True,
            )
        )
        fetched = self.db.get_product_by_id(created.id)
        self.assertEqual(fetched, created)
        self.assertEqual(fetched.price, 20.0)
        self.assertEqual(fetched.rating, 5.0)
        self.assertFalse(fetched.is_featured)

    def test_order_items_are_copied(self):
        items = [{"productId": 1, "quantity": 2}]
        order = self.db.create_order(
            InsertOrder(user_id=1, items=items, total_amount=68.0, shipping_address="1 Main St")
        )
        items[0]["quantity"] = 99
        self.assertEqual(self.db.get_order_by_id(order.id).items[0]["quantity"], 2)
        self.assertEqual(order.status, "pending")
        self.assertEqual(len(self.db.get_user_orders(1)), 1)

    def test_reset_restores_seed(self):
        self.db.create_user(make_user())
        self.db.reset()
        self.assertEqual(self.db.users, {})
        self.assertEqual(len(self.db.get_all_products()), 6)


if __name__ == "__main__":
    unittest.main()
