from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from storefront.utils import config

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

_BASE36 = string.digits + string.ascii_uppercase


def quantize(amount: Decimal | int | float | str) -> Decimal:
    """Round to whole cents, half up."""
    if not isinstance(amount, Decimal):
        # go through str so floats don't carry their binary noise
        amount = Decimal(str(amount))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal | int | float | str) -> int:
    return int(quantize(amount) * 100)


def from_cents(cents: Optional[int]) -> Optional[Decimal]:
    if cents is None:
        return None
    return (Decimal(int(cents)) / 100).quantize(CENT)


def effective_unit_price(
    base_price: Decimal,
    sale_price: Optional[Decimal] = None,
    variant_price: Optional[Decimal] = None,
) -> Decimal:
    """Variant price overrides the sale price, which overrides the base price."""
    if variant_price is not None:
        return variant_price
    if sale_price is not None:
        return sale_price
    return base_price


@dataclass(frozen=True)
class PricingSummary:
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total_amount: Decimal


def shipping_for(
    subtotal: Decimal,
    free_over: Optional[Decimal] = None,
    flat_fee: Optional[Decimal] = None,
) -> Decimal:
    """Free shipping strictly above the threshold, a flat fee otherwise."""
    free_over = config.FREE_SHIPPING_OVER if free_over is None else free_over
    flat_fee = config.FLAT_SHIPPING if flat_fee is None else flat_fee
    return ZERO if subtotal > free_over else quantize(flat_fee)


def calculate_totals(
    line_totals: Iterable[Decimal],
    tax_rate: Optional[Decimal] = None,
    free_shipping_over: Optional[Decimal] = None,
    flat_shipping: Optional[Decimal] = None,
    discount: Decimal = ZERO,
) -> PricingSummary:
    """
    Sum line totals and derive tax, shipping and the grand total.

    Args:
        line_totals: unit price times quantity for every line.
        tax_rate: flat rate applied to the subtotal, defaults to config.TAX_RATE.
        free_shipping_over: subtotal above which shipping is free.
        flat_shipping: fee charged at or below the threshold.
        discount: subtracted from the total; always zero for checkout today.

    Returns:
        PricingSummary with every amount rounded to cents, where
        total = subtotal + tax + shipping - discount.
    """
    tax_rate = config.TAX_RATE if tax_rate is None else tax_rate

    subtotal = quantize(sum(line_totals, ZERO))
    tax_amount = quantize(subtotal * tax_rate)
    shipping_cost = shipping_for(subtotal, free_shipping_over, flat_shipping)
    discount_amount = quantize(discount)
    total_amount = subtotal + tax_amount + shipping_cost - discount_amount
    return PricingSummary(
        subtotal=subtotal,
        tax_amount=tax_amount,
        shipping_cost=shipping_cost,
        discount_amount=discount_amount,
        total_amount=total_amount,
    )


def random_base36(length: int, rng: random.Random | None = None) -> str:
    rng = rng or random
    return "".join(rng.choice(_BASE36) for _ in range(length))


def generate_order_number(
    now_ms: Optional[int] = None, rng: random.Random | None = None
) -> str:
    """ORD-<last 8 digits of epoch millis>-<4 uppercase base-36 chars>.

    Not unique on its own; callers check the orders table before using it.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    stamp = str(now_ms)[-8:].rjust(8, "0")
    return f"ORD-{stamp}-{random_base36(4, rng)}"
