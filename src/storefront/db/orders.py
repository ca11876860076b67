# src/storefront/db/orders.py
"""
Order placement and order history.

Placing an order runs the whole pipeline inside one write transaction:
cart lines are resolved and priced from stored product data, stock is
re-checked, totals are computed, then the order, its frozen lines and a
pending payment are written and the consumed cart lines are deleted.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Union

import aiosqlite

from storefront.db import models
from storefront.db.crud import (
    address_from_row,
    load_listings,
    product_from_row,
    resolve_purchasable,
    user_from_row,
)
from storefront.db.database import connect, fetch_all, fetch_one, new_id, transaction, utcnow
from storefront.utils import config
from storefront.utils.errors import (
    InsufficientStockError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from storefront.utils.logger import get_logger
from storefront.utils.pricing import (
    PricingSummary,
    calculate_totals,
    from_cents,
    generate_order_number,
    quantize,
    to_cents,
)
from storefront.utils.state import RequestIdentity

_logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 5
DEFAULT_PAYMENT_METHOD = "cod"


@dataclass(frozen=True)
class InlineLine:
    """A line sent in full by the client. Only ids and quantity are used."""

    product_id: str
    variant_id: Optional[str] = None
    quantity: int = 1


@dataclass(frozen=True)
class OrderRequest:
    customer_email: str
    cart_items: Sequence[Union[str, InlineLine]]
    customer_phone: Optional[str] = None
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None
    payment_method: str = DEFAULT_PAYMENT_METHOD
    customer_notes: Optional[str] = None


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    variant_id: Optional[str]
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    product_name: str
    product_sku: Optional[str]
    variant_name: Optional[str]
    available_stock: int


@dataclass
class AggregatedCart:
    lines: List[PricedLine] = field(default_factory=list)
    consumed_cart_ids: List[str] = field(default_factory=list)


def _price_line(target: models.Purchasable, quantity: int) -> PricedLine:
    unit_price = target.unit_price
    return PricedLine(
        product_id=target.product.id,
        variant_id=target.variant.id if target.variant else None,
        quantity=quantity,
        unit_price=unit_price,
        total_price=quantize(unit_price * quantity),
        product_name=target.product.name,
        product_sku=target.product.sku,
        variant_name=target.variant.name if target.variant else None,
        available_stock=target.available_stock,
    )


# ---------------------------
# Cart aggregation
# ---------------------------


async def _aggregate_cart_ids(
    conn: aiosqlite.Connection, identity: RequestIdentity, cart_ids: List[str]
) -> AggregatedCart:
    """
    Price persisted cart lines. Ids the caller doesn't own are skipped; a line
    whose product or variant is no longer purchasable raises NotFoundError.
    """
    owner_sql, owner_params = identity.owner_clause("ci")
    marks = ", ".join("?" for _ in cart_ids)
    rows = await fetch_all(
        conn,
        f"""
        SELECT ci.id AS cart_id, ci.quantity AS cart_quantity,
               ci.product_id, ci.variant_id
        FROM cart_items ci
        WHERE ci.id IN ({marks}) AND {owner_sql}
        ORDER BY ci.created_at, ci.rowid;
        """,
        (*cart_ids, *owner_params),
    )
    cart = AggregatedCart()
    for row in rows:
        # lines may have gone stale since they were added
        target = await resolve_purchasable(conn, row["product_id"], row["variant_id"])
        cart.lines.append(_price_line(target, int(row["cart_quantity"])))
        cart.consumed_cart_ids.append(row["cart_id"])
    return cart


async def _aggregate_inline(
    conn: aiosqlite.Connection, items: Sequence[InlineLine]
) -> AggregatedCart:
    """Re-resolve client lines against the catalog; client prices never count."""
    cart = AggregatedCart()
    for item in items:
        if item.quantity <= 0:
            raise ValidationError("Quantity must be at least 1")
        target = await resolve_purchasable(conn, item.product_id, item.variant_id)
        cart.lines.append(_price_line(target, item.quantity))
    return cart


async def aggregate_cart(
    conn: aiosqlite.Connection,
    identity: RequestIdentity,
    cart_items: Sequence[Union[str, InlineLine]],
) -> AggregatedCart:
    """
    Build priced order lines from either cart-line ids (reference mode) or
    inline lines. The mode is chosen by the type of the first element and the
    list must not mix the two.
    """
    if not cart_items:
        raise ValidationError("Cart items are required")
    if isinstance(cart_items[0], str):
        if not all(isinstance(i, str) for i in cart_items):
            raise ValidationError("Cart items must be all ids or all line objects")
        cart = await _aggregate_cart_ids(conn, identity, list(cart_items))
    else:
        if not all(isinstance(i, InlineLine) for i in cart_items):
            raise ValidationError("Cart items must be all ids or all line objects")
        cart = await _aggregate_inline(conn, cart_items)
    if not cart.lines:
        raise ValidationError("Cart items are required")
    return cart


def check_stock(lines: Sequence[PricedLine]) -> None:
    """Quantities for the same product/variant are summed before comparing."""
    demand: Dict[Tuple[str, Optional[str]], int] = {}
    available: Dict[Tuple[str, Optional[str]], int] = {}
    for line in lines:
        key = (line.product_id, line.variant_id)
        demand[key] = demand.get(key, 0) + line.quantity
        available[key] = line.available_stock
    for key, wanted in demand.items():
        if wanted > available[key]:
            raise InsufficientStockError(available=available[key])


# ---------------------------
# Order writing
# ---------------------------


async def _unique_order_number(conn: aiosqlite.Connection) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number()
        row = await fetch_one(
            conn, "SELECT 1 FROM orders WHERE order_number = ?;", (candidate,)
        )
        if row is None:
            return candidate
        _logger.debug(f"Order number {candidate} already taken, retrying")
    raise InternalError("Could not generate a unique order number")


async def _owned_address_id(
    conn: aiosqlite.Connection, user_id: str, address: Optional[dict]
) -> Optional[str]:
    address_id = (address or {}).get("id")
    if not address_id:
        return None
    row = await fetch_one(
        conn,
        "SELECT id FROM addresses WHERE id = ? AND user_id = ?;",
        (address_id, user_id),
    )
    if not row:
        raise NotFoundError("Address not found")
    return address_id


async def _reserve_stock(conn: aiosqlite.Connection, lines: Sequence[PricedLine]) -> None:
    for line in lines:
        if line.variant_id:
            await conn.execute(
                "UPDATE product_variants SET stock = stock - ? WHERE id = ?;",
                (line.quantity, line.variant_id),
            )
        else:
            await conn.execute(
                "UPDATE products SET stock = stock - ?, updated_at = ? WHERE id = ?;",
                (line.quantity, utcnow(), line.product_id),
            )


async def place_order(identity: RequestIdentity, request: OrderRequest) -> models.Order:
    """
    Create an order for the caller, all-or-nothing.

    Raises ValidationError for a missing email or an empty line list,
    NotFoundError for unknown products/variants/addresses and
    InsufficientStockError when a line asks for more than is in stock.
    Nothing is written unless every step succeeds.
    """
    email = (request.customer_email or "").strip()
    if not email:
        raise ValidationError("Customer email is required")
    if not request.cart_items:
        raise ValidationError("Cart items are required")

    user_id, guest_id = identity.owner()
    order_id = new_id()
    now = utcnow()
    method = request.payment_method or DEFAULT_PAYMENT_METHOD

    async with transaction() as conn:
        cart = await aggregate_cart(conn, identity, request.cart_items)
        check_stock(cart.lines)
        totals: PricingSummary = calculate_totals(line.total_price for line in cart.lines)
        order_number = await _unique_order_number(conn)

        shipping_id = billing_id = None
        guest_shipping = guest_billing = None
        if user_id is not None:
            shipping_id = await _owned_address_id(conn, user_id, request.shipping_address)
            billing_id = await _owned_address_id(conn, user_id, request.billing_address)
        else:
            if request.shipping_address:
                guest_shipping = json.dumps(request.shipping_address)
            if request.billing_address:
                guest_billing = json.dumps(request.billing_address)

        await conn.execute(
            """
            INSERT INTO orders(id, order_number, status, payment_status,
                               customer_email, customer_phone,
                               subtotal, tax_amount, shipping_cost,
                               discount_amount, total_amount,
                               payment_method, customer_notes,
                               user_id, guest_session_id,
                               guest_shipping_address, guest_billing_address,
                               shipping_address_id, billing_address_id,
                               created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                order_id,
                order_number,
                models.OrderStatus.PENDING.value,
                models.PaymentStatus.PENDING.value,
                email,
                request.customer_phone,
                to_cents(totals.subtotal),
                to_cents(totals.tax_amount),
                to_cents(totals.shipping_cost),
                to_cents(totals.discount_amount),
                to_cents(totals.total_amount),
                method,
                request.customer_notes,
                user_id,
                guest_id,
                guest_shipping,
                guest_billing,
                shipping_id,
                billing_id,
                now,
                now,
            ),
        )
        await conn.executemany(
            """
            INSERT INTO order_items(id, order_id, product_id, variant_id, quantity,
                                    unit_price, total_price, product_name,
                                    product_sku, variant_name)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                (
                    new_id(),
                    order_id,
                    line.product_id,
                    line.variant_id,
                    line.quantity,
                    to_cents(line.unit_price),
                    to_cents(line.total_price),
                    line.product_name,
                    line.product_sku,
                    line.variant_name,
                )
                for line in cart.lines
            ],
        )

        if cart.consumed_cart_ids:
            marks = ", ".join("?" for _ in cart.consumed_cart_ids)
            await conn.execute(
                f"DELETE FROM cart_items WHERE id IN ({marks});", cart.consumed_cart_ids
            )

        await conn.execute(
            """
            INSERT INTO payments(id, order_id, amount, method, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                new_id(),
                order_id,
                to_cents(totals.total_amount),
                method,
                models.PaymentStatus.PENDING.value,
                now,
                now,
            ),
        )

        if config.RESERVE_STOCK_ON_ORDER:
            await _reserve_stock(conn, cart.lines)

        row = await fetch_one(conn, "SELECT * FROM orders WHERE id = ?;", (order_id,))

    _logger.info(
        f"Placed order {order_number} ({len(cart.lines)} lines, total {totals.total_amount})"
    )
    return order_from_row(row)


# ---------------------------
# Order history
# ---------------------------


def order_from_row(row) -> models.Order:
    return models.Order(
        id=row["id"],
        order_number=row["order_number"],
        status=models.OrderStatus(row["status"]),
        payment_status=models.PaymentStatus(row["payment_status"]),
        customer_email=row["customer_email"],
        customer_phone=row["customer_phone"],
        subtotal=from_cents(row["subtotal"]),
        tax_amount=from_cents(row["tax_amount"]),
        shipping_cost=from_cents(row["shipping_cost"]),
        discount_amount=from_cents(row["discount_amount"]),
        total_amount=from_cents(row["total_amount"]),
        payment_method=row["payment_method"],
        tracking_number=row["tracking_number"],
        customer_notes=row["customer_notes"],
        user_id=row["user_id"],
        guest_session_id=row["guest_session_id"],
        guest_shipping_address=_snapshot(row["guest_shipping_address"]),
        guest_billing_address=_snapshot(row["guest_billing_address"]),
        shipping_address_id=row["shipping_address_id"],
        billing_address_id=row["billing_address_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        shipped_at=row["shipped_at"],
        delivered_at=row["delivered_at"],
    )


def _snapshot(raw: Optional[str]) -> Optional[dict]:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        _logger.warning("Unreadable guest address snapshot")
        return None


def _order_line_from_row(row) -> models.OrderLine:
    return models.OrderLine(
        id=row["id"],
        order_id=row["order_id"],
        product_id=row["product_id"],
        variant_id=row["variant_id"],
        quantity=int(row["quantity"]),
        unit_price=from_cents(row["unit_price"]),
        total_price=from_cents(row["total_price"]),
        product_name=row["product_name"],
        product_sku=row["product_sku"],
        variant_name=row["variant_name"],
    )


def _payment_from_row(row) -> models.Payment:
    return models.Payment(
        id=row["id"],
        order_id=row["order_id"],
        amount=from_cents(row["amount"]),
        method=row["method"],
        status=models.PaymentStatus(row["status"]),
        transaction_id=row["transaction_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


async def _order_detail(conn: aiosqlite.Connection, order: models.Order) -> models.OrderDetail:
    line_rows = await fetch_all(
        conn, "SELECT * FROM order_items WHERE order_id = ? ORDER BY rowid;", (order.id,)
    )
    lines = [_order_line_from_row(r) for r in line_rows]

    product_ids = sorted({line.product_id for line in lines})
    listings: Dict[str, models.ProductListing] = {}
    if product_ids:
        marks = ", ".join("?" for _ in product_ids)
        prod_rows = await fetch_all(
            conn, f"SELECT * FROM products WHERE id IN ({marks});", product_ids
        )
        for listing in await load_listings(conn, [product_from_row(r) for r in prod_rows]):
            listings[listing.product.id] = listing

    line_views = []
    for line in lines:
        listing = listings[line.product_id]
        variant = next((v for v in listing.variants if v.id == line.variant_id), None)
        line_views.append(models.OrderLineView(line=line, listing=listing, variant=variant))

    async def resolve_address(address_id: Optional[str], snapshot: Optional[dict]):
        if address_id:
            row = await fetch_one(conn, "SELECT * FROM addresses WHERE id = ?;", (address_id,))
            if row:
                return address_from_row(row)
        return snapshot

    payment_rows = await fetch_all(
        conn, "SELECT * FROM payments WHERE order_id = ? ORDER BY created_at;", (order.id,)
    )
    user = None
    if order.user_id:
        user_row = await fetch_one(conn, "SELECT * FROM users WHERE id = ?;", (order.user_id,))
        user = user_from_row(user_row) if user_row else None

    return models.OrderDetail(
        order=order,
        lines=line_views,
        shipping_address=await resolve_address(
            order.shipping_address_id, order.guest_shipping_address
        ),
        billing_address=await resolve_address(
            order.billing_address_id, order.guest_billing_address
        ),
        payments=[_payment_from_row(r) for r in payment_rows],
        user=user,
    )


async def list_orders(
    identity: RequestIdentity,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[models.OrderDetail], int]:
    """The caller's orders, newest first, with lines, addresses and payments."""
    if status:
        try:
            status = models.OrderStatus(status).value
        except ValueError:
            raise ValidationError(f"Invalid order status: {status}")

    owner_sql, owner_params = identity.owner_clause()
    where = owner_sql
    params: List = list(owner_params)
    if status:
        where += " AND status = ?"
        params.append(status)

    async with connect() as conn:
        row = await fetch_one(conn, f"SELECT COUNT(*) FROM orders WHERE {where};", params)
        total = int(row[0])
        rows = await fetch_all(
            conn,
            f"""
            SELECT * FROM orders
            WHERE {where}
            ORDER BY created_at DESC, rowid DESC
            LIMIT ? OFFSET ?;
            """,
            params + [limit, max(page - 1, 0) * limit],
        )
        details = [await _order_detail(conn, order_from_row(r)) for r in rows]
    return details, total


async def get_order(identity: RequestIdentity, order_id: str) -> models.OrderDetail:
    owner_sql, owner_params = identity.owner_clause()
    async with connect() as conn:
        row = await fetch_one(
            conn,
            f"SELECT * FROM orders WHERE id = ? AND {owner_sql};",
            (order_id, *owner_params),
        )
        if not row:
            raise NotFoundError("Order not found")
        return await _order_detail(conn, order_from_row(row))
