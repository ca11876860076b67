import random
import re
import unittest
from decimal import Decimal

from storefront.utils.pricing import (
    calculate_totals,
    effective_unit_price,
    from_cents,
    generate_order_number,
    quantize,
    shipping_for,
    to_cents,
)
from storefront.utils.state import RequestIdentity, generate_guest_session_id

D = Decimal


class PricingTestCase(unittest.TestCase):
    def test_two_discounted_headphones(self):
        totals = calculate_totals([D("59.99") * 2])
        self.assertEqual(totals.subtotal, D("119.98"))
        self.assertEqual(totals.tax_amount, D("9.60"))
        self.assertEqual(totals.shipping_cost, D("0.00"))
        self.assertEqual(totals.discount_amount, D("0.00"))
        self.assertEqual(totals.total_amount, D("129.58"))

    def test_shipping_threshold_is_exclusive(self):
        self.assertEqual(shipping_for(D("50.00")), D("9.99"))
        self.assertEqual(shipping_for(D("50.01")), D("0"))
        self.assertEqual(calculate_totals([D("51.00")]).shipping_cost, D("0"))
        self.assertEqual(calculate_totals([D("50.00")]).shipping_cost, D("9.99"))

    def test_tax_is_rounded_to_cents(self):
        self.assertEqual(calculate_totals([D("100.00")]).tax_amount, D("8.00"))
        self.assertEqual(calculate_totals([D("0.07")]).tax_amount, D("0.01"))

    def test_total_identity_over_many_lines(self):
        lines = [D("0.10")] * 30 + [D("19.99"), D("3.33")]
        totals = calculate_totals(lines, discount=D("1.50"))
        self.assertEqual(totals.subtotal, D("26.32"))
        self.assertEqual(
            totals.total_amount,
            totals.subtotal + totals.tax_amount + totals.shipping_cost - totals.discount_amount,
        )

    def test_overrides(self):
        totals = calculate_totals(
            [D("20.00")], tax_rate=D("0.10"), free_shipping_over=D("10"), flat_shipping=D("5")
        )
        self.assertEqual(totals.tax_amount, D("2.00"))
        self.assertEqual(totals.shipping_cost, D("0"))
        self.assertEqual(totals.total_amount, D("22.00"))

    def test_empty_lines(self):
        totals = calculate_totals([])
        self.assertEqual(totals.subtotal, D("0.00"))
        self.assertEqual(totals.total_amount, D("9.99"))

    def test_effective_unit_price(self):
        self.assertEqual(effective_unit_price(D("79.99")), D("79.99"))
        self.assertEqual(effective_unit_price(D("79.99"), D("59.99")), D("59.99"))
        self.assertEqual(effective_unit_price(D("79.99"), D("59.99"), D("64.00")), D("64.00"))
        self.assertEqual(effective_unit_price(D("29.99"), None, D("34.99")), D("34.99"))

    def test_cents_conversion(self):
        self.assertEqual(to_cents(D("129.58")), 12958)
        self.assertEqual(to_cents(0.1 + 0.2), 30)
        self.assertEqual(from_cents(999), D("9.99"))
        self.assertIsNone(from_cents(None))
        self.assertEqual(quantize("2.675"), D("2.68"))


class IdentifierTestCase(unittest.TestCase):
    def test_order_number_format(self):
        number = generate_order_number(now_ms=1736500000123, rng=random.Random(7))
        self.assertRegex(number, r"^ORD-\d{8}-[0-9A-Z]{4}$")
        self.assertTrue(number.startswith("ORD-00000123-"))

    def test_short_timestamps_are_padded(self):
        self.assertRegex(generate_order_number(now_ms=42), r"^ORD-00000042-[0-9A-Z]{4}$")

    def test_guest_session_id_format(self):
        guest = generate_guest_session_id(now_ms=1736500000123)
        self.assertIsNotNone(re.fullmatch(r"guest-1736500000123-[0-9a-z]{9}", guest))

    def test_identity_owner(self):
        user = RequestIdentity(user_id="u1", guest_session_id="g1")
        self.assertEqual(user.owner(), ("u1", None))
        self.assertEqual(user.owner_clause("ci"), ("ci.user_id = ?", ("u1",)))

        guest = RequestIdentity(guest_session_id="g1")
        self.assertFalse(guest.is_authenticated)
        self.assertEqual(guest.owner(), (None, "g1"))
        self.assertEqual(guest.owner_clause(), ("guest_session_id = ?", ("g1",)))


if __name__ == "__main__":
    unittest.main()
