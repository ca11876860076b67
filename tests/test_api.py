import unittest

import httpx

from dbcase import DatabaseTestCase

from storefront.main import create_app

GUEST = {"x-session-id": "guest-api-a"}


class ApiTestCase(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        transport = httpx.ASGITransport(app=create_app())
        self.client = httpx.AsyncClient(transport=transport, base_url="http://test")

    async def asyncTearDown(self):
        await self.client.aclose()

    async def _register(self, email="api@example.com", password="secret1"):
        resp = await self.client.post(
            "/api/auth/register",
            json={"email": email, "password": password, "firstName": "Api", "lastName": "User"},
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        body = resp.json()
        return body["user"], {"Authorization": f"Bearer {body['token']}"}


class CatalogApiTestCase(ApiTestCase):
    async def test_health(self):
        resp = await self.client.get("/api/health")
        self.assertEqual(resp.json(), {"status": "ok", "database": "ok"})

    async def test_product_listing_and_detail(self):
        resp = await self.client.get("/api/products", params={"pageSize": 2})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(
            [p["slug"] for p in body["products"]], ["organic-coffee-beans", "smart-fitness-watch"]
        )
        self.assertEqual(body["pagination"]["totalCount"], 4)
        self.assertEqual(body["pagination"]["totalPages"], 2)
        self.assertTrue(body["pagination"]["hasNextPage"])

        resp = await self.client.get("/api/products/wireless-bluetooth-headphones")
        detail = resp.json()
        self.assertEqual(detail["salePrice"], 59.99)
        self.assertEqual(detail["reviewCount"], 1)
        self.assertEqual(detail["reviews"][0]["user"]["name"], "Demo User")

        resp = await self.client.get("/api/products/retro-desk-lamp")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"error": "Product not found", "kind": "not_found"})

    async def test_bad_query_is_validation_error(self):
        resp = await self.client.get("/api/products", params={"order": "sideways"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["kind"], "validation")

    async def test_short_search_returns_empty(self):
        resp = await self.client.get("/api/search", params={"q": "a"})
        body = resp.json()
        self.assertEqual(body["products"], [])
        self.assertEqual(body["suggestions"], {"categories": [], "brands": []})
        self.assertEqual(body["pagination"]["totalCount"], 0)

        resp = await self.client.get("/api/search", params={"q": "watch"})
        body = resp.json()
        self.assertEqual([p["slug"] for p in body["products"]], ["smart-fitness-watch"])
        self.assertEqual(body["filters"]["query"], "watch")

    async def test_categories(self):
        resp = await self.client.get("/api/categories", params={"parentId": "null"})
        self.assertEqual(resp.status_code, 200)
        names = [c["name"] for c in resp.json()["categories"]]
        self.assertIn("Electronics", names)
        self.assertNotIn("Wearables", names)


class CartAndOrderApiTestCase(ApiTestCase):
    async def test_guest_id_is_generated_and_echoed(self):
        resp = await self.client.get("/api/cart")
        self.assertRegex(resp.headers["x-guest-session-id"], r"^guest-\d+-[0-9a-z]{9}$")

        resp = await self.client.get("/api/cart", headers=GUEST)
        self.assertEqual(resp.headers["x-guest-session-id"], "guest-api-a")

    async def test_cart_flow(self):
        resp = await self.client.post(
            "/api/cart", json={"productId": "prod-headphones", "quantity": 2}, headers=GUEST
        )
        self.assertEqual(resp.status_code, 201)
        item_id = resp.json()["item"]["id"]

        resp = await self.client.post(
            "/api/cart", json={"productId": "prod-headphones"}, headers=GUEST
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["item"]["quantity"], 3)

        resp = await self.client.get("/api/cart", headers=GUEST)
        body = resp.json()
        self.assertEqual(body["summary"], {"totalItems": 3, "subtotal": 179.97, "itemCount": 1})
        self.assertEqual(body["items"][0]["price"], 59.99)
        self.assertEqual(body["items"][0]["originalPrice"], 79.99)

        # another guest sees nothing
        resp = await self.client.get("/api/cart", headers={"x-session-id": "guest-api-b"})
        self.assertEqual(resp.json()["items"], [])

        resp = await self.client.put(
            "/api/cart", json={"itemId": item_id, "quantity": 0}, headers=GUEST
        )
        self.assertEqual(resp.json(), {"message": "Item removed from cart"})

        resp = await self.client.delete("/api/cart", headers=GUEST)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "Item ID is required")

    async def test_over_stock_reports_available(self):
        resp = await self.client.post(
            "/api/cart",
            json={"productId": "prod-smartwatch", "variantId": "var-smartwatch-black", "quantity": 9},
            headers=GUEST,
        )
        self.assertEqual(resp.status_code, 400)
        body = resp.json()
        self.assertEqual(body["kind"], "insufficient_stock")
        self.assertEqual(body["available"], 4)

    async def test_unknown_body_field_rejected(self):
        resp = await self.client.post(
            "/api/cart", json={"productId": "prod-coffee", "price": 0.01}, headers=GUEST
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "Validation failed")

    async def test_place_and_list_order(self):
        resp = await self.client.post(
            "/api/cart", json={"productId": "prod-headphones", "quantity": 2}, headers=GUEST
        )
        item_id = resp.json()["item"]["id"]

        resp = await self.client.post(
            "/api/orders",
            json={
                "customerEmail": "guest@example.com",
                "cartItems": [item_id],
                "shippingAddress": {"firstName": "Gia", "city": "Pune"},
            },
            headers=GUEST,
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        order = resp.json()["order"]
        self.assertEqual(order["totalAmount"], 129.58)
        self.assertEqual(order["status"], "PENDING")
        self.assertEqual(order["paymentMethod"], "cod")

        resp = await self.client.get("/api/orders", headers=GUEST)
        [listed] = resp.json()["orders"]
        self.assertEqual(listed["orderNumber"], order["orderNumber"])
        self.assertEqual(listed["shippingAddress"], {"firstName": "Gia", "city": "Pune"})
        self.assertEqual(listed["items"][0]["productName"], "Wireless Bluetooth Headphones")
        self.assertEqual(listed["payments"][0]["status"], "PENDING")

    async def test_inline_order_ignores_client_price(self):
        resp = await self.client.post(
            "/api/orders",
            json={
                "customerEmail": "guest@example.com",
                "cartItems": [{"productId": "prod-coffee", "quantity": 1, "price": 0.01}],
            },
            headers=GUEST,
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        self.assertEqual(resp.json()["order"]["totalAmount"], 36.98)

    async def test_order_validation_errors(self):
        resp = await self.client.post(
            "/api/orders", json={"cartItems": ["whatever"]}, headers=GUEST
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(
            resp.json(), {"error": "Customer email is required", "kind": "validation"}
        )

        resp = await self.client.post(
            "/api/orders", json={"customerEmail": "g@example.com"}, headers=GUEST
        )
        self.assertEqual(resp.json()["error"], "Cart items are required")

        resp = await self.client.get("/api/orders", params={"status": "LOST"}, headers=GUEST)
        self.assertEqual(resp.status_code, 400)


class AccountApiTestCase(ApiTestCase):
    async def test_register_login_profile(self):
        user, auth = await self._register()
        self.assertEqual(user["email"], "api@example.com")
        self.assertNotIn("passwordHash", user)

        resp = await self.client.post(
            "/api/auth/register", json={"email": "API@example.com", "password": "secret1"}
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["kind"], "conflict")

        resp = await self.client.post(
            "/api/auth/login", json={"email": "api@example.com", "password": "wrong-one"}
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["error"], "Invalid email or password")

        resp = await self.client.post(
            "/api/auth/login", json={"email": "api@example.com", "password": "secret1"}
        )
        self.assertEqual(resp.json()["message"], "Login successful")

        resp = await self.client.get("/api/user/profile")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["kind"], "unauthorized")

        resp = await self.client.get("/api/user/profile", headers={"Authorization": "Bearer nope"})
        self.assertEqual(resp.status_code, 401)

        resp = await self.client.get("/api/user/profile", headers=auth)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["addresses"], [])

        resp = await self.client.put("/api/user/profile", json={"phone": "+91 1"}, headers=auth)
        self.assertEqual(resp.json()["user"]["phone"], "+91 1")
        self.assertEqual(resp.json()["user"]["firstName"], "Api")

    async def test_user_id_must_match_token(self):
        user, auth = await self._register()
        resp = await self.client.get("/api/cart", params={"userId": "user-demo"}, headers=auth)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["kind"], "forbidden")

        resp = await self.client.get("/api/cart", params={"userId": user["id"]}, headers=auth)
        self.assertEqual(resp.status_code, 200)

        resp = await self.client.get("/api/orders", params={"userId": user["id"]})
        self.assertEqual(resp.status_code, 401)

    async def test_addresses(self):
        _, auth = await self._register()
        resp = await self.client.post(
            "/api/user/addresses",
            json={
                "firstName": "Api",
                "lastName": "User",
                "addressLine1": "9 Lake View",
                "city": "Chennai",
                "state": "Tamil Nadu",
                "postalCode": "600001",
                "isDefault": True,
            },
            headers=auth,
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        address = resp.json()["address"]
        self.assertEqual(address["country"], "IN")

        resp = await self.client.put(
            f"/api/user/addresses/{address['id']}", json={"city": "Madurai"}, headers=auth
        )
        updated = resp.json()["address"]
        self.assertEqual(updated["city"], "Madurai")
        self.assertEqual(updated["addressLine1"], "9 Lake View")
        self.assertTrue(updated["isDefault"])

        resp = await self.client.get("/api/user/addresses/addr-demo-shipping", headers=auth)
        self.assertEqual(resp.status_code, 404)

        resp = await self.client.delete(f"/api/user/addresses/{address['id']}", headers=auth)
        self.assertEqual(resp.status_code, 200)
        resp = await self.client.get("/api/user/addresses", headers=auth)
        self.assertEqual(resp.json()["total"], 0)

    async def test_wishlist_and_reviews(self):
        _, auth = await self._register()
        resp = await self.client.post(
            "/api/wishlist", json={"productId": "prod-coffee"}, headers=auth
        )
        self.assertEqual(resp.status_code, 201)
        resp = await self.client.post(
            "/api/wishlist", json={"productId": "prod-coffee"}, headers=auth
        )
        self.assertEqual(resp.json()["kind"], "conflict")

        resp = await self.client.get("/api/wishlist", headers=auth)
        self.assertEqual(resp.json()["total"], 1)
        resp = await self.client.delete(
            "/api/wishlist", params={"productId": "prod-coffee"}, headers=auth
        )
        self.assertEqual(resp.status_code, 200)

        resp = await self.client.post(
            "/api/products/organic-coffee-beans/reviews",
            json={"rating": 4, "title": "Good"},
        )
        self.assertEqual(resp.status_code, 401)

        resp = await self.client.post(
            "/api/products/organic-coffee-beans/reviews",
            json={"rating": 4, "title": "Good"},
            headers=auth,
        )
        self.assertEqual(resp.status_code, 201)
        self.assertFalse(resp.json()["review"]["isVerifiedPurchase"])

        resp = await self.client.get("/api/products/organic-coffee-beans/reviews")
        stats = resp.json()["stats"]
        self.assertEqual(stats["totalReviews"], 1)
        self.assertEqual(stats["averageRating"], 4)
        self.assertIn({"rating": 4, "count": 1}, stats["ratingBreakdown"])


if __name__ == "__main__":
    unittest.main()
