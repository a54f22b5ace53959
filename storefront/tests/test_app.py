import unittest

from fastapi.testclient import TestClient

from storefront.app import create_app
from storefront.db import InMemoryDbClient, PostgresDbClient
from storefront.dependencies import StorageSelector
from storefront.hosted import SqlHostedApi, SupabaseDbClient


class StorefrontApiTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.selector = StorageSelector(self.db)
        self.client = TestClient(create_app(self.selector))

    def register(self, username="gina", email="gina@example.com", password="s3cret!"):
        return self.client.post(
            "/api/register",
            json={"username": username, "email": email, "password": password, "name": "Gina"},
        )

    def test_health_reports_backend(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "backend": "InMemoryDbClient"})

    def test_catalog_uses_camel_case(self):
        products = self.client.get("/api/products").json()
        self.assertEqual(len(products), 6)
        self.assertIn("imageUrl", products[0])
        self.assertIn("isFeatured", products[0])
        self.assertEqual(len(self.client.get("/api/products/featured").json()), 4)
        self.assertEqual(len(self.client.get("/api/categories").json()), 3)
        self.assertEqual(len(self.client.get("/api/testimonials").json()), 3)

    def test_missing_catalog_rows_are_404(self):
        self.assertEqual(self.client.get("/api/products/999").status_code, 404)
        self.assertEqual(self.client.get("/api/categories/999").status_code, 404)

    def test_create_product_and_review(self):
        response = self.client.post(
            "/api/products",
            json={
                "name": "Bath Salts",
                "tagline": "Soak",
                "description": "Epsom salts",
                "price": 18,
                "imageUrl": "/img/salts.jpg",
                "categoryId": 2,
            },
        )
        self.assertEqual(response.status_code, 201)
        product_id = response.json()["id"]
        review = self.client.post(
            f"/api/products/{product_id}/reviews",
            json={"userName": "Hal", "userImageUrl": "/img/hal.jpg", "rating": 5, "comment": "Great"},
        )
        self.assertEqual(review.status_code, 201)
        reviews = self.client.get(f"/api/products/{product_id}/reviews").json()
        self.assertEqual([r["comment"] for r in reviews], ["Great"])
        self.assertEqual(
            self.client.post(
                "/api/products/999/reviews",
                json={"userName": "Hal", "userImageUrl": "/x", "rating": 5, "comment": "?"},
            ).status_code,
            404,
        )

    def test_cart_flow(self):
        first = self.client.post("/api/cart", json={"userId": 1, "productId": 1, "quantity": 2})
        self.assertEqual(first.status_code, 201)
        second = self.client.post("/api/cart", json={"userId": 1, "productId": 1})
        self.assertEqual(second.json()["data"]["quantity"], 3)
        item_id = second.json()["data"]["id"]

        cart = self.client.get("/api/cart", params={"userId": 1}).json()
        self.assertEqual(len(cart), 1)
        self.assertEqual(cart[0]["product"]["id"], 1)

        self.assertEqual(
            self.client.put(f"/api/cart/{item_id}", json={"quantity": 0}).status_code, 400
        )
        self.assertEqual(
            self.client.put("/api/cart/999", json={"quantity": 1}).status_code, 404
        )
        updated = self.client.put(f"/api/cart/{item_id}", json={"quantity": 5})
        self.assertEqual(updated.json()["data"]["quantity"], 5)

        for _ in range(2):
            removed = self.client.delete(f"/api/cart/{item_id}")
            self.assertEqual(removed.status_code, 200)
            self.assertTrue(removed.json()["success"])
        self.assertEqual(self.client.delete("/api/cart", params={"userId": 1}).status_code, 200)
        self.assertEqual(self.client.get("/api/cart", params={"userId": 1}).json(), [])

    def test_cart_requires_user_and_product(self):
        self.assertEqual(self.client.get("/api/cart").status_code, 400)
        self.assertEqual(
            self.client.post("/api/cart", json={"productId": 1}).status_code, 400
        )
        self.assertEqual(
            self.client.post("/api/cart", json={"userId": 1, "productId": 999}).status_code,
            404,
        )

    def test_dangling_cart_row_is_500(self):
        self.client.post("/api/cart", json={"userId": 1, "productId": 2})
        del self.db.products[2]
        response = self.client.get("/api/cart", params={"userId": 1})
        self.assertEqual(response.status_code, 500)
        self.assertIn("Product with id 2 not found", response.json()["message"])

    def test_orders(self):
        response = self.client.post(
            "/api/orders",
            json={
                "userId": 1,
                "items": [{"productId": 1, "quantity": 2}],
                "totalAmount": 68.0,
                "shippingAddress": "1 Main St",
            },
        )
        self.assertEqual(response.status_code, 201)
        order = response.json()
        self.assertEqual(order["status"], "pending")
        self.assertEqual(self.client.get(f"/api/orders/{order['id']}").json()["id"], order["id"])
        self.assertEqual(len(self.client.get("/api/orders", params={"userId": 1}).json()), 1)
        self.assertEqual(self.client.get("/api/orders/999").status_code, 404)

    def test_register_login_logout(self):
        response = self.register()
        self.assertEqual(response.status_code, 201)
        self.assertNotIn("password", response.json())
        self.assertNotEqual(self.db.get_user_by_username("gina").password, "s3cret!")

        me = self.client.get("/api/user")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["username"], "gina")

        self.assertEqual(self.register(email="other@example.com").status_code, 400)

        self.assertEqual(self.client.post("/api/logout").status_code, 200)
        self.assertEqual(self.client.get("/api/user").status_code, 401)

        bad = self.client.post("/api/login", json={"username": "gina", "password": "nope"})
        self.assertEqual(bad.status_code, 401)
        good = self.client.post("/api/login", json={"username": "gina", "password": "s3cret!"})
        self.assertEqual(good.status_code, 200)
        self.assertEqual(self.client.get("/api/user").status_code, 200)

    def test_session_user_owns_cart(self):
        user_id = self.register().json()["id"]
        self.client.post("/api/cart", json={"productId": 3})
        self.assertEqual(len(self.db.get_cart_items(user_id)), 1)

    def test_register_validation(self):
        response = self.register(password="123")
        self.assertEqual(response.status_code, 400)
        self.assertIn("errors", response.json())

    def test_migrate_without_hosted_config_is_500(self):
        response = self.client.post("/api/supabase/migrate")
        self.assertEqual(response.status_code, 500)
        self.assertFalse(response.json()["success"])


class HostedSwitchApiTests(unittest.TestCase):
    def setUp(self):
        self.direct = PostgresDbClient(
            "sqlite+pysqlite:///:memory:", create_schema=False, seed=False
        )
        hosted = SupabaseDbClient(SqlHostedApi(self.direct.engine), self.direct)
        self.selector = StorageSelector(InMemoryDbClient(), hosted_factory=lambda: hosted)
        self.client = TestClient(create_app(self.selector))

    def tearDown(self):
        self.direct.dispose()

    def test_migrate_switches_backend(self):
        before = self.client.get("/api/products").json()
        response = self.client.post("/api/supabase/migrate")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])
        self.assertEqual(self.client.get("/api/health").json()["backend"], "SupabaseDbClient")
        after = self.client.get("/api/products").json()
        self.assertEqual([p["name"] for p in after], [p["name"] for p in before])


if __name__ == "__main__":
    unittest.main()
