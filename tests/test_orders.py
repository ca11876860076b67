import asyncio
import re
import unittest
from decimal import Decimal
from unittest import mock

from dbcase import DatabaseTestCase

from storefront.db import crud, orders
from storefront.db.models import OrderStatus, PaymentStatus
from storefront.utils import config
from storefront.utils.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from storefront.utils.state import RequestIdentity


def _request(cart_items, email="buyer@example.com", **kwargs):
    return orders.OrderRequest(customer_email=email, cart_items=cart_items, **kwargs)


class PlaceOrderTestCase(DatabaseTestCase):
    async def _count(self, table: str) -> int:
        return await self.scalar(f"SELECT COUNT(*) FROM {table};")

    async def test_discounted_headphones_end_to_end(self):
        guest = self.guest()
        item, _ = await crud.add_to_cart(guest, "prod-headphones", quantity=2)

        order = await orders.place_order(guest, _request([item.id]))

        self.assertRegex(order.order_number, r"^ORD-\d{8}-[0-9A-Z]{4}$")
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.payment_status, PaymentStatus.PENDING)
        self.assertEqual(order.subtotal, Decimal("119.98"))
        self.assertEqual(order.tax_amount, Decimal("9.60"))
        self.assertEqual(order.shipping_cost, Decimal("0.00"))
        self.assertEqual(order.discount_amount, Decimal("0.00"))
        self.assertEqual(order.total_amount, Decimal("129.58"))
        self.assertEqual(order.payment_method, "cod")
        self.assertEqual(order.guest_session_id, guest.guest_session_id)
        self.assertIsNone(order.user_id)

        # consumed line is gone, payment placeholder exists
        self.assertEqual(await crud.list_cart(guest), [])
        self.assertEqual(
            await self.scalar("SELECT amount FROM payments WHERE order_id = ?;", (order.id,)),
            12958,
        )
        self.assertEqual(
            await self.scalar("SELECT status FROM payments WHERE order_id = ?;", (order.id,)),
            "PENDING",
        )
        # stock is not decremented by default
        self.assertEqual(await self.scalar("SELECT stock FROM products WHERE id = 'prod-headphones';"), 15)

    async def test_lines_are_frozen_snapshots(self):
        guest = self.guest()
        item, _ = await crud.add_to_cart(guest, "prod-tshirt", "var-tshirt-l-black", 2)
        order = await orders.place_order(guest, _request([item.id]))

        async with crud.connect() as conn:
            await conn.execute("UPDATE products SET name = 'Renamed', base_price = 100 WHERE id = 'prod-tshirt';")
            await conn.execute("UPDATE product_variants SET price = 1 WHERE id = 'var-tshirt-l-black';")
            await conn.commit()

        detail = await orders.get_order(guest, order.id)
        [view] = detail.lines
        self.assertEqual(view.line.product_name, "Premium Cotton T-Shirt")
        self.assertEqual(view.line.product_sku, "PCT-001")
        self.assertEqual(view.line.variant_name, "Large - Black")
        self.assertEqual(view.line.unit_price, Decimal("34.99"))
        self.assertEqual(view.line.total_price, Decimal("69.98"))
        self.assertEqual(view.listing.product.name, "Renamed")

    async def test_shipping_charged_at_or_below_threshold(self):
        guest = self.guest()
        item, _ = await crud.add_to_cart(guest, "prod-coffee", quantity=2)
        order = await orders.place_order(guest, _request([item.id]))
        self.assertEqual(order.subtotal, Decimal("49.98"))
        self.assertEqual(order.tax_amount, Decimal("4.00"))
        self.assertEqual(order.shipping_cost, Decimal("9.99"))
        self.assertEqual(order.total_amount, Decimal("63.97"))

    async def test_missing_email_or_lines_persist_nothing(self):
        guest = self.guest()
        item, _ = await crud.add_to_cart(guest, "prod-coffee")
        with self.assertRaises(ValidationError) as ctx:
            await orders.place_order(guest, _request([item.id], email="  "))
        self.assertEqual(ctx.exception.message, "Customer email is required")
        with self.assertRaises(ValidationError) as ctx:
            await orders.place_order(guest, _request([]))
        self.assertEqual(ctx.exception.message, "Cart items are required")

        self.assertEqual(await self._count("orders"), 0)
        self.assertEqual(await self._count("payments"), 0)
        self.assertEqual(len(await crud.list_cart(guest)), 1)

    async def test_reference_mode_is_scoped_to_caller(self):
        alice, bob = self.guest("guest-alice"), self.guest("guest-bob")
        a1, _ = await crud.add_to_cart(alice, "prod-coffee")
        a2, _ = await crud.add_to_cart(alice, "prod-tshirt")
        b1, _ = await crud.add_to_cart(bob, "prod-coffee", quantity=3)

        # bob cannot check out alice's lines
        with self.assertRaises(ValidationError):
            await orders.place_order(bob, _request([a1.id]))

        # only the referenced, owned lines are consumed
        order = await orders.place_order(alice, _request([a1.id, b1.id]))
        self.assertEqual(order.subtotal, Decimal("24.99"))
        self.assertEqual([line.item.id for line in await crud.list_cart(alice)], [a2.id])
        self.assertEqual([line.item.id for line in await crud.list_cart(bob)], [b1.id])

    async def test_inline_lines_are_repriced(self):
        guest = self.guest()
        lines = [
            orders.InlineLine("prod-tshirt", "var-tshirt-l-black", 1),
            orders.InlineLine("prod-headphones", None, 1),
        ]
        order = await orders.place_order(guest, _request(lines))
        self.assertEqual(order.subtotal, Decimal("94.98"))
        self.assertEqual(order.total_amount, Decimal("102.58"))
        self.assertEqual(await self._count("cart_items"), 0)

    async def test_foreign_variant_is_not_found(self):
        guest = self.guest()
        with self.assertRaises(NotFoundError):
            await orders.place_order(
                guest, _request([orders.InlineLine("prod-headphones", "var-tshirt-s-black", 1)])
            )
        with self.assertRaises(NotFoundError):
            await orders.place_order(guest, _request([orders.InlineLine("prod-desk-lamp")]))
        self.assertEqual(await self._count("orders"), 0)

    async def test_deactivated_product_in_cart_is_not_ordered(self):
        guest = self.guest()
        item, _ = await crud.add_to_cart(guest, "prod-headphones")
        async with crud.connect() as conn:
            await conn.execute("UPDATE products SET is_active = 0 WHERE id = 'prod-headphones';")
            await conn.commit()

        with self.assertRaises(NotFoundError) as ctx:
            await orders.place_order(guest, _request([item.id]))
        self.assertEqual(ctx.exception.message, "Product not found")
        self.assertEqual(await self._count("orders"), 0)
        self.assertEqual(await self._count("payments"), 0)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM cart_items WHERE id = ?;", (item.id,)), 1)

    async def test_deactivated_variant_in_cart_is_not_ordered(self):
        guest = self.guest()
        coffee, _ = await crud.add_to_cart(guest, "prod-coffee")
        watch, _ = await crud.add_to_cart(guest, "prod-smartwatch", "var-smartwatch-black", 1)
        async with crud.connect() as conn:
            await conn.execute(
                "UPDATE product_variants SET is_active = 0 WHERE id = 'var-smartwatch-black';"
            )
            await conn.commit()

        with self.assertRaises(NotFoundError) as ctx:
            await orders.place_order(guest, _request([coffee.id, watch.id]))
        self.assertEqual(ctx.exception.message, "Product variant not found")
        # the healthy line is not consumed either
        self.assertEqual(await self._count("orders"), 0)
        self.assertEqual(len(await crud.list_cart(guest)), 2)

    async def test_mixed_cart_items_rejected(self):
        guest = self.guest()
        item, _ = await crud.add_to_cart(guest, "prod-coffee")
        with self.assertRaises(ValidationError):
            await orders.place_order(
                guest, _request([item.id, orders.InlineLine("prod-tshirt")])
            )

    async def test_stock_rechecked_inside_transaction(self):
        guest = self.guest()
        item, _ = await crud.add_to_cart(guest, "prod-smartwatch", "var-smartwatch-black", 3)
        async with crud.connect() as conn:
            await conn.execute("UPDATE product_variants SET stock = 2 WHERE id = 'var-smartwatch-black';")
            await conn.commit()

        with self.assertRaises(InsufficientStockError) as ctx:
            await orders.place_order(guest, _request([item.id]))
        self.assertEqual(ctx.exception.available, 2)
        self.assertEqual(await self._count("orders"), 0)
        self.assertEqual(len(await crud.list_cart(guest)), 1)

        # the same product requested twice counts against one stock
        with self.assertRaises(InsufficientStockError):
            await orders.place_order(
                guest,
                _request(
                    [
                        orders.InlineLine("prod-smartwatch", "var-smartwatch-silver", 3),
                        orders.InlineLine("prod-smartwatch", "var-smartwatch-silver", 2),
                    ]
                ),
            )

    async def test_failure_mid_pipeline_rolls_back(self):
        guest = self.guest()
        item, _ = await crud.add_to_cart(guest, "prod-coffee")
        with mock.patch.object(orders, "_reserve_stock", side_effect=RuntimeError("boom")):
            with mock.patch.object(config, "RESERVE_STOCK_ON_ORDER", True):
                with self.assertRaises(RuntimeError):
                    await orders.place_order(guest, _request([item.id]))
        self.assertEqual(await self._count("orders"), 0)
        self.assertEqual(await self._count("order_items"), 0)
        self.assertEqual(await self._count("payments"), 0)
        self.assertEqual(len(await crud.list_cart(guest)), 1)

    async def test_reserve_stock_when_enabled(self):
        guest = self.guest()
        with mock.patch.object(config, "RESERVE_STOCK_ON_ORDER", True):
            await orders.place_order(
                guest,
                _request(
                    [
                        orders.InlineLine("prod-headphones", None, 2),
                        orders.InlineLine("prod-headphones", "var-headphones-white", 5),
                    ]
                ),
            )
        self.assertEqual(await self.scalar("SELECT stock FROM products WHERE id = 'prod-headphones';"), 13)
        self.assertEqual(
            await self.scalar("SELECT stock FROM product_variants WHERE id = 'var-headphones-white';"), 0
        )

    async def test_order_number_collision_retries(self):
        guest = self.guest()
        numbers = ["ORD-00000001-AAAA", "ORD-00000001-AAAA", "ORD-00000001-BBBB"]
        with mock.patch.object(orders, "generate_order_number", side_effect=numbers):
            first = await orders.place_order(guest, _request([orders.InlineLine("prod-coffee")]))
            second = await orders.place_order(guest, _request([orders.InlineLine("prod-coffee")]))
        self.assertEqual(first.order_number, "ORD-00000001-AAAA")
        self.assertEqual(second.order_number, "ORD-00000001-BBBB")

    async def test_concurrent_orders_get_unique_numbers(self):
        placed = await asyncio.gather(
            *(
                orders.place_order(
                    self.guest(f"guest-{n}"), _request([orders.InlineLine("prod-coffee")])
                )
                for n in range(5)
            )
        )
        numbers = {order.order_number for order in placed}
        self.assertEqual(len(numbers), 5)
        self.assertEqual(await self._count("orders"), 5)


class UserOrderTestCase(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.user = await crud.register_user("u@example.com", "secret1", first_name="Uma")
        self.identity = RequestIdentity(user_id=self.user.id, guest_session_id="guest-x")
        self.address = await crud.create_address(
            self.user.id,
            {
                "first_name": "Uma",
                "last_name": "Rao",
                "address_line1": "2 Hill Road",
                "city": "Bengaluru",
                "state": "Karnataka",
                "postal_code": "560001",
            },
        )

    async def test_user_order_references_saved_address(self):
        item, _ = await crud.add_to_cart(self.identity, "prod-coffee", quantity=3)
        order = await orders.place_order(
            self.identity,
            _request([item.id], shipping_address={"id": self.address.id}, payment_method="card"),
        )
        self.assertEqual(order.user_id, self.user.id)
        self.assertIsNone(order.guest_session_id)
        self.assertEqual(order.shipping_address_id, self.address.id)
        self.assertIsNone(order.guest_shipping_address)

        [detail], total = await orders.list_orders(self.identity)
        self.assertEqual(total, 1)
        self.assertEqual(detail.shipping_address.city, "Bengaluru")
        self.assertIsNone(detail.billing_address)
        self.assertEqual(detail.payments[0].method, "card")
        self.assertEqual(detail.user.first_name, "Uma")

        with self.assertRaises(ConflictError):
            await crud.delete_address(self.user.id, self.address.id)

    async def test_foreign_address_rejected(self):
        with self.assertRaises(NotFoundError):
            await orders.place_order(
                self.identity,
                _request(
                    [orders.InlineLine("prod-coffee")],
                    shipping_address={"id": "addr-demo-shipping"},
                ),
            )

    async def test_delivered_order_marks_review_verified(self):
        order = await orders.place_order(
            self.identity, _request([orders.InlineLine("prod-tshirt")])
        )
        async with crud.connect() as conn:
            await conn.execute("UPDATE orders SET status = 'DELIVERED' WHERE id = ?;", (order.id,))
            await conn.commit()
        review = await crud.create_review(self.user.id, "premium-cotton-t-shirt", 5)
        self.assertTrue(review.is_verified_purchase)


class ListOrdersTestCase(DatabaseTestCase):
    async def test_guest_history(self):
        guest = self.guest()
        snapshot = {"firstName": "Gia", "city": "Delhi"}
        await orders.place_order(
            guest,
            _request(
                [orders.InlineLine("prod-headphones", "var-headphones-black", 1)],
                shipping_address=snapshot,
            ),
        )
        await orders.place_order(guest, _request([orders.InlineLine("prod-coffee")]))
        await orders.place_order(self.guest("guest-other"), _request([orders.InlineLine("prod-coffee")]))

        details, total = await orders.list_orders(guest)
        self.assertEqual(total, 2)
        oldest = details[-1]
        self.assertEqual(oldest.shipping_address, snapshot)
        [view] = oldest.lines
        self.assertEqual(view.variant.id, "var-headphones-black")
        self.assertEqual(view.listing.category.name, "Electronics")
        self.assertEqual(len(oldest.payments), 1)
        self.assertIsNone(oldest.user)

        page, total = await orders.list_orders(guest, page=2, limit=1)
        self.assertEqual((len(page), total), (1, 2))

        details, total = await orders.list_orders(guest, status="DELIVERED")
        self.assertEqual((details, total), ([], 0))
        with self.assertRaises(ValidationError):
            await orders.list_orders(guest, status="LOST")

    async def test_get_order_is_scoped(self):
        order = await orders.place_order(self.guest(), _request([orders.InlineLine("prod-coffee")]))
        with self.assertRaises(NotFoundError):
            await orders.get_order(self.guest("guest-other"), order.id)
        detail = await orders.get_order(self.guest(), order.id)
        self.assertTrue(re.match(r"ORD-", detail.order.order_number))


if __name__ == "__main__":
    unittest.main()
