# src/storefront/db/crud.py
from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import aiosqlite

from storefront.db import models
from storefront.db.database import (
    connect,
    fetch_all,
    fetch_one,
    new_id,
    transaction,
    utcnow,
)
from storefront.utils import config
from storefront.utils.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from storefront.utils.logger import get_logger
from storefront.utils.pricing import from_cents
from storefront.utils.security import (
    MIN_PASSWORD_LENGTH,
    hash_password,
    verify_password,
)
from storefront.utils.state import RequestIdentity

_logger = get_logger(__name__)

MIN_SEARCH_LENGTH = 2
SUGGESTION_LIMIT = 3
CATEGORY_PRODUCT_PREVIEW = 10

_EFFECTIVE_PRICE = "COALESCE(p.sale_price, p.base_price)"
_RATING = (
    "COALESCE((SELECT AVG(r.rating) FROM reviews r "
    "WHERE r.product_id = p.id AND r.is_approved = 1), 0)"
)
_PRODUCT_FROM = """
    FROM products p
    JOIN categories c ON c.id = p.category_id
    LEFT JOIN brands b ON b.id = p.brand_id
"""


def _marks(values: Sequence) -> str:
    return ", ".join("?" for _ in values)


def _offset(page: int, size: int) -> int:
    return max(page - 1, 0) * size


def _strip(val: Optional[str]) -> Optional[str]:
    return val.strip() if isinstance(val, str) else val


def _decode_json(raw: Optional[str]) -> Optional[dict]:
    if not raw:
        return None
    try:
        val = json.loads(raw)
    except ValueError:
        return None
    return val if isinstance(val, dict) else None


# ---------------------------
# Row mapping
# ---------------------------


def user_from_row(row) -> models.User:
    return models.User(
        id=row["id"],
        email=row["email"],
        password_hash=row["password_hash"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        phone=row["phone"],
        role=row["role"],
        is_active=bool(row["is_active"]),
        last_login=row["last_login"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _category_from_row(row) -> models.Category:
    return models.Category(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        description=row["description"],
        image=row["image"],
        parent_id=row["parent_id"],
        is_active=bool(row["is_active"]),
        meta_title=row["meta_title"],
        meta_description=row["meta_description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _brand_from_row(row) -> models.Brand:
    return models.Brand(id=row["id"], name=row["name"], slug=row["slug"], logo=row["logo"])


def product_from_row(row) -> models.Product:
    return models.Product(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        description=row["description"],
        short_description=row["short_description"],
        base_price=from_cents(row["base_price"]),
        sale_price=from_cents(row["sale_price"]),
        cost_price=from_cents(row["cost_price"]),
        sku=row["sku"],
        stock=int(row["stock"]),
        weight=row["weight"],
        dimensions=row["dimensions"],
        is_digital=bool(row["is_digital"]),
        is_active=bool(row["is_active"]),
        is_featured=bool(row["is_featured"]),
        meta_title=row["meta_title"],
        meta_description=row["meta_description"],
        category_id=row["category_id"],
        brand_id=row["brand_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def variant_from_row(row) -> models.Variant:
    return models.Variant(
        id=row["id"],
        product_id=row["product_id"],
        name=row["name"],
        sku=row["sku"],
        attributes=_decode_json(row["attributes"]) or {},
        price=from_cents(row["price"]),
        stock=int(row["stock"]),
        is_active=bool(row["is_active"]),
    )


def _image_from_row(row) -> models.ProductImage:
    return models.ProductImage(
        id=row["id"],
        product_id=row["product_id"],
        url=row["url"],
        alt_text=row["alt_text"],
        sort_order=int(row["sort_order"]),
        is_main=bool(row["is_main"]),
    )


def _cart_item_from_row(row) -> models.CartItem:
    return models.CartItem(
        id=row["id"],
        user_id=row["user_id"],
        guest_session_id=row["guest_session_id"],
        product_id=row["product_id"],
        variant_id=row["variant_id"],
        quantity=int(row["quantity"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def address_from_row(row) -> models.Address:
    return models.Address(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        company=row["company"],
        address_line1=row["address_line1"],
        address_line2=row["address_line2"],
        city=row["city"],
        state=row["state"],
        postal_code=row["postal_code"],
        country=row["country"],
        phone=row["phone"],
        is_default=bool(row["is_default"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _review_from_row(row) -> models.Review:
    author = f"{row['first_name'] or ''} {row['last_name'] or ''}".strip()
    return models.Review(
        id=row["id"],
        product_id=row["product_id"],
        user_id=row["user_id"],
        rating=int(row["rating"]),
        title=row["title"],
        comment=row["comment"],
        is_verified_purchase=bool(row["is_verified_purchase"]),
        is_approved=bool(row["is_approved"]),
        author_name=author or "Anonymous",
        created_at=row["created_at"],
    )


# ---------------------------
# Catalog
# ---------------------------


async def load_listings(
    conn: aiosqlite.Connection,
    products: List[models.Product],
    active_variants_only: bool = False,
) -> List[models.ProductListing]:
    """Attach category, brand, images, variants and rating stats to products,
    preserving the input order."""
    if not products:
        return []
    ids = [p.id for p in products]
    cat_ids = sorted({p.category_id for p in products})
    brand_ids = sorted({p.brand_id for p in products if p.brand_id})

    rows = await fetch_all(
        conn, f"SELECT * FROM categories WHERE id IN ({_marks(cat_ids)});", cat_ids
    )
    categories = {row["id"]: _category_from_row(row) for row in rows}

    brands: Dict[str, models.Brand] = {}
    if brand_ids:
        rows = await fetch_all(
            conn, f"SELECT * FROM brands WHERE id IN ({_marks(brand_ids)});", brand_ids
        )
        brands = {row["id"]: _brand_from_row(row) for row in rows}

    images: Dict[str, List[models.ProductImage]] = {pid: [] for pid in ids}
    rows = await fetch_all(
        conn,
        f"""
        SELECT * FROM product_images
        WHERE product_id IN ({_marks(ids)})
        ORDER BY sort_order, id;
        """,
        ids,
    )
    for row in rows:
        images[row["product_id"]].append(_image_from_row(row))

    variants: Dict[str, List[models.Variant]] = {pid: [] for pid in ids}
    active_clause = "AND is_active = 1" if active_variants_only else ""
    rows = await fetch_all(
        conn,
        f"""
        SELECT * FROM product_variants
        WHERE product_id IN ({_marks(ids)}) {active_clause}
        ORDER BY rowid;
        """,
        ids,
    )
    for row in rows:
        variants[row["product_id"]].append(variant_from_row(row))

    rows = await fetch_all(
        conn,
        f"""
        SELECT product_id, AVG(rating) AS avg_rating, COUNT(*) AS review_count
        FROM reviews
        WHERE product_id IN ({_marks(ids)}) AND is_approved = 1
        GROUP BY product_id;
        """,
        ids,
    )
    ratings = {row["product_id"]: (float(row[1]), int(row[2])) for row in rows}

    return [
        models.ProductListing(
            product=p,
            category=categories[p.category_id],
            brand=brands.get(p.brand_id) if p.brand_id else None,
            images=images[p.id],
            variants=variants[p.id],
            average_rating=ratings.get(p.id, (0.0, 0))[0],
            review_count=ratings.get(p.id, (0.0, 0))[1],
        )
        for p in products
    ]


async def list_products(
    category: Optional[str] = None,
    featured: bool = False,
    search: Optional[str] = None,
    sort: str = "createdAt",
    order: str = "desc",
    page: int = 1,
    page_size: int = 12,
    limit: Optional[int] = None,
) -> Tuple[List[models.ProductListing], int, int]:
    """
    List active products, optionally filtered by category slug, featured flag
    and a case-insensitive search over name/description/short description.

    Sort keys: "price" (base price), "name", "rating" (approved average),
    anything else sorts by creation time. `limit`, when given, overrides the
    page size for the number of rows taken but not for the offset.
    Returns (listings, total_count, take).
    """
    where = ["p.is_active = 1"]
    params: List = []
    if category and category != "all":
        where.append("c.slug = ?")
        params.append(category)
    if featured:
        where.append("p.is_featured = 1")
    term = (search or "").strip().lower()
    if term:
        like = f"%{term}%"
        where.append(
            "(LOWER(p.name) LIKE ? OR LOWER(COALESCE(p.description, '')) LIKE ? "
            "OR LOWER(COALESCE(p.short_description, '')) LIKE ?)"
        )
        params.extend([like, like, like])

    sort_columns = {
        "price": "p.base_price",
        "name": "p.name",
        "rating": _RATING,
    }
    column = sort_columns.get(sort, "p.created_at")
    direction = "ASC" if order == "asc" else "DESC"
    take = limit if limit else page_size
    where_clause = " AND ".join(where)

    async with connect() as conn:
        row = await fetch_one(
            conn, f"SELECT COUNT(*) {_PRODUCT_FROM} WHERE {where_clause};", params
        )
        total = int(row[0])
        rows = await fetch_all(
            conn,
            f"""
            SELECT p.* {_PRODUCT_FROM}
            WHERE {where_clause}
            ORDER BY {column} {direction}, p.id
            LIMIT ? OFFSET ?;
            """,
            params + [take, _offset(page, page_size)],
        )
        listings = await load_listings(conn, [product_from_row(r) for r in rows])
    return listings, total, take


async def search_products(
    query: str,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    in_stock: bool = False,
    sort: str = "relevance",
    order: str = "desc",
    page: int = 1,
    limit: int = 12,
) -> Tuple[List[models.ProductListing], int]:
    """
    Case-insensitive search over product name, descriptions, sku, category
    name and brand name. Queries shorter than two characters match nothing.

    Price bounds apply to the effective price (sale price if set, else base).
    Sort keys: relevance (name ascending), price_asc, price_desc, name,
    newest, oldest.
    Returns (listings for page, total_count).
    """
    term = (query or "").strip().lower()
    if len(term) < MIN_SEARCH_LENGTH:
        return [], 0

    like = f"%{term}%"
    where = [
        "p.is_active = 1",
        """(
            LOWER(p.name) LIKE ?
            OR LOWER(COALESCE(p.description, '')) LIKE ?
            OR LOWER(COALESCE(p.short_description, '')) LIKE ?
            OR LOWER(COALESCE(p.sku, '')) LIKE ?
            OR LOWER(c.name) LIKE ?
            OR LOWER(COALESCE(b.name, '')) LIKE ?
        )""",
    ]
    params: List = [like] * 6
    if category and category != "all":
        where.append("c.slug = ?")
        params.append(category)
    if brand:
        where.append("b.slug = ?")
        params.append(brand)
    if min_price is not None:
        where.append(f"{_EFFECTIVE_PRICE} >= ?")
        params.append(int(round(min_price * 100)))
    if max_price is not None:
        where.append(f"{_EFFECTIVE_PRICE} <= ?")
        params.append(int(round(max_price * 100)))
    if in_stock:
        where.append("p.stock > 0")

    direction = "ASC" if order == "asc" else "DESC"
    order_by = {
        "price_asc": f"{_EFFECTIVE_PRICE} ASC",
        "price_desc": f"{_EFFECTIVE_PRICE} DESC",
        "name": f"p.name {direction}",
        "newest": "p.created_at DESC",
        "oldest": "p.created_at ASC",
    }.get(sort, "p.name ASC")
    where_clause = " AND ".join(where)

    async with connect() as conn:
        row = await fetch_one(
            conn, f"SELECT COUNT(*) {_PRODUCT_FROM} WHERE {where_clause};", params
        )
        total = int(row[0])
        rows = await fetch_all(
            conn,
            f"""
            SELECT p.* {_PRODUCT_FROM}
            WHERE {where_clause}
            ORDER BY {order_by}, p.id
            LIMIT ? OFFSET ?;
            """,
            params + [limit, _offset(page, limit)],
        )
        listings = await load_listings(conn, [product_from_row(r) for r in rows])
    return listings, total


async def search_suggestions(
    query: str,
) -> Tuple[List[Tuple[str, str]], List[Tuple[str, str]]]:
    """Active categories and brands whose name contains the query.
    Returns ([(name, slug)...] for categories, same for brands), three each."""
    term = (query or "").strip().lower()
    if len(term) < MIN_SEARCH_LENGTH:
        return [], []
    like = f"%{term}%"
    async with connect() as conn:
        cat_rows = await fetch_all(
            conn,
            """
            SELECT name, slug FROM categories
            WHERE is_active = 1 AND LOWER(name) LIKE ?
            ORDER BY name
            LIMIT ?;
            """,
            (like, SUGGESTION_LIMIT),
        )
        brand_rows = await fetch_all(
            conn,
            """
            SELECT name, slug FROM brands
            WHERE is_active = 1 AND LOWER(name) LIKE ?
            ORDER BY name
            LIMIT ?;
            """,
            (like, SUGGESTION_LIMIT),
        )
    return (
        [(r["name"], r["slug"]) for r in cat_rows],
        [(r["name"], r["slug"]) for r in brand_rows],
    )


async def get_product_by_slug(
    slug: str,
) -> Optional[Tuple[models.ProductListing, List[models.Review]]]:
    """Active product by slug with active variants and approved reviews (newest first)."""
    async with connect() as conn:
        row = await fetch_one(
            conn, "SELECT * FROM products WHERE slug = ? AND is_active = 1;", (slug,)
        )
        if not row:
            return None
        product = product_from_row(row)
        [listing] = await load_listings(conn, [product], active_variants_only=True)
        rows = await fetch_all(
            conn,
            """
            SELECT r.*, u.first_name, u.last_name
            FROM reviews r
            JOIN users u ON u.id = r.user_id
            WHERE r.product_id = ? AND r.is_approved = 1
            ORDER BY r.created_at DESC;
            """,
            (product.id,),
        )
    return listing, [_review_from_row(r) for r in rows]


async def get_product(product_id: str) -> Optional[models.Product]:
    """Fetch a product by id, active or not."""
    async with connect() as conn:
        row = await fetch_one(conn, "SELECT * FROM products WHERE id = ?;", (product_id,))
    return product_from_row(row) if row else None


async def resolve_purchasable(
    conn: aiosqlite.Connection, product_id: str, variant_id: Optional[str] = None
) -> models.Purchasable:
    """
    Resolve an active product and, if given, one of its active variants.
    Raises NotFoundError when either is missing, inactive, or the variant
    belongs to another product.
    """
    row = await fetch_one(
        conn, "SELECT * FROM products WHERE id = ? AND is_active = 1;", (product_id,)
    )
    if not row:
        raise NotFoundError("Product not found")
    product = product_from_row(row)
    if not variant_id:
        return models.Purchasable(product=product)

    row = await fetch_one(
        conn,
        """
        SELECT * FROM product_variants
        WHERE id = ? AND product_id = ? AND is_active = 1;
        """,
        (variant_id, product.id),
    )
    if not row:
        raise NotFoundError("Product variant not found")
    return models.Purchasable(product=product, variant=variant_from_row(row))


async def list_categories(
    parent_id: Optional[str] = None,
    roots_only: bool = False,
    include_products: bool = False,
) -> List[models.CategoryNode]:
    """
    Active categories ordered by name, each with its parent and active
    children. `roots_only` keeps categories without a parent; `parent_id`
    keeps children of that category. With `include_products`, up to ten active
    products and the active product count are attached.
    """
    where = ["is_active = 1"]
    params: List = []
    if roots_only:
        where.append("parent_id IS NULL")
    elif parent_id:
        where.append("parent_id = ?")
        params.append(parent_id)

    async with connect() as conn:
        rows = await fetch_all(
            conn,
            f"SELECT * FROM categories WHERE {' AND '.join(where)} ORDER BY name;",
            params,
        )
        categories = [_category_from_row(r) for r in rows]
        all_rows = await fetch_all(conn, "SELECT * FROM categories;")
        by_id = {r["id"]: _category_from_row(r) for r in all_rows}

        nodes: List[models.CategoryNode] = []
        for cat in categories:
            children = sorted(
                (c for c in by_id.values() if c.parent_id == cat.id and c.is_active),
                key=lambda c: c.name,
            )
            products = None
            product_count = None
            if include_products:
                prod_rows = await fetch_all(
                    conn,
                    """
                    SELECT * FROM products
                    WHERE category_id = ? AND is_active = 1
                    ORDER BY created_at DESC
                    LIMIT ?;
                    """,
                    (cat.id, CATEGORY_PRODUCT_PREVIEW),
                )
                products = await load_listings(
                    conn, [product_from_row(r) for r in prod_rows]
                )
                row = await fetch_one(
                    conn,
                    "SELECT COUNT(*) FROM products WHERE category_id = ? AND is_active = 1;",
                    (cat.id,),
                )
                product_count = int(row[0])
            nodes.append(
                models.CategoryNode(
                    category=cat,
                    parent=by_id.get(cat.parent_id) if cat.parent_id else None,
                    children=children,
                    products=products,
                    product_count=product_count,
                )
            )
    return nodes


# ---------------------------
# Guest sessions
# ---------------------------


async def touch_guest_session(conn: aiosqlite.Connection, session_id: str) -> None:
    """Create the guest session or push its expiry out again."""
    now = datetime.now(timezone.utc)
    expires = (now + timedelta(days=config.GUEST_SESSION_DAYS)).isoformat()
    await conn.execute(
        """
        INSERT INTO guest_sessions(session_id, expires_at, created_at, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(session_id) DO UPDATE SET
            expires_at = excluded.expires_at,
            updated_at = excluded.updated_at;
        """,
        (session_id, expires, now.isoformat(), now.isoformat()),
    )


# ---------------------------
# Cart Management
# ---------------------------


async def list_cart(identity: RequestIdentity) -> List[models.CartLineView]:
    """Cart lines for the user (or guest session), newest first, priced at
    current product data."""
    owner_sql, owner_params = identity.owner_clause("ci")
    async with connect() as conn:
        rows = await fetch_all(
            conn,
            f"""
            SELECT ci.* FROM cart_items ci
            WHERE {owner_sql}
            ORDER BY ci.created_at DESC, ci.rowid DESC;
            """,
            owner_params,
        )
        items = [_cart_item_from_row(r) for r in rows]
        if not items:
            return []

        product_ids = sorted({i.product_id for i in items})
        prod_rows = await fetch_all(
            conn,
            f"SELECT * FROM products WHERE id IN ({_marks(product_ids)});",
            product_ids,
        )
        listings = await load_listings(conn, [product_from_row(r) for r in prod_rows])
        by_product = {lst.product.id: lst for lst in listings}

    lines = []
    for item in items:
        listing = by_product[item.product_id]
        variant = next(
            (v for v in listing.variants if v.id == item.variant_id), None
        )
        purchasable = models.Purchasable(product=listing.product, variant=variant)
        main = next((img for img in listing.images if img.is_main), None)
        image = main or (listing.images[0] if listing.images else None)
        lines.append(
            models.CartLineView(
                item=item,
                product=listing.product,
                variant=variant,
                category_name=listing.category.name,
                brand_name=listing.brand.name if listing.brand else None,
                image=image.url if image else None,
                unit_price=purchasable.unit_price,
                available_stock=purchasable.available_stock,
            )
        )
    return lines


async def add_to_cart(
    identity: RequestIdentity,
    product_id: str,
    variant_id: Optional[str] = None,
    quantity: int = 1,
) -> Tuple[models.CartItem, bool]:
    """
    Add a product (or variant) to the caller's cart. If the same product and
    variant is already there, its quantity is incremented instead.
    The resulting quantity may never exceed the available stock.
    Returns (cart item, created) where created is False for a merge.
    """
    if quantity <= 0:
        raise ValidationError("Quantity must be at least 1")
    user_id, guest_id = identity.owner()
    now = utcnow()

    async with transaction() as conn:
        target = await resolve_purchasable(conn, product_id, variant_id)
        available = target.available_stock
        if available < quantity:
            raise InsufficientStockError(available=available)

        if guest_id is not None:
            await touch_guest_session(conn, guest_id)

        owner_sql, owner_params = identity.owner_clause()
        row = await fetch_one(
            conn,
            f"""
            SELECT * FROM cart_items
            WHERE product_id = ? AND variant_id IS ? AND {owner_sql};
            """,
            (product_id, variant_id or None, *owner_params),
        )
        if row:
            existing = _cart_item_from_row(row)
            new_quantity = existing.quantity + quantity
            if new_quantity > available:
                raise InsufficientStockError(
                    "Cannot add more items than available stock", available=available
                )
            await conn.execute(
                "UPDATE cart_items SET quantity = ?, updated_at = ? WHERE id = ?;",
                (new_quantity, now, existing.id),
            )
            row = await fetch_one(
                conn, "SELECT * FROM cart_items WHERE id = ?;", (existing.id,)
            )
            return _cart_item_from_row(row), False

        item_id = new_id()
        await conn.execute(
            """
            INSERT INTO cart_items(id, user_id, guest_session_id, product_id,
                                   variant_id, quantity, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (item_id, user_id, guest_id, product_id, variant_id or None, quantity, now, now),
        )
        row = await fetch_one(conn, "SELECT * FROM cart_items WHERE id = ?;", (item_id,))
        return _cart_item_from_row(row), True


async def update_cart_qty(
    identity: RequestIdentity, item_id: str, quantity: int
) -> Optional[models.CartItem]:
    """Set the quantity of one of the caller's cart lines.
    0 removes the line (returns None); negative quantities and quantities above
    the available stock are rejected."""
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative")
    owner_sql, owner_params = identity.owner_clause()

    async with transaction() as conn:
        row = await fetch_one(
            conn,
            f"SELECT * FROM cart_items WHERE id = ? AND {owner_sql};",
            (item_id, *owner_params),
        )
        if not row:
            raise NotFoundError("Cart item not found")
        item = _cart_item_from_row(row)

        if quantity == 0:
            await conn.execute("DELETE FROM cart_items WHERE id = ?;", (item.id,))
            return None

        target = await resolve_purchasable(conn, item.product_id, item.variant_id)
        if quantity > target.available_stock:
            raise InsufficientStockError(available=target.available_stock)

        await conn.execute(
            "UPDATE cart_items SET quantity = ?, updated_at = ? WHERE id = ?;",
            (quantity, utcnow(), item.id),
        )
        row = await fetch_one(conn, "SELECT * FROM cart_items WHERE id = ?;", (item.id,))
        return _cart_item_from_row(row)


async def remove_from_cart(identity: RequestIdentity, item_id: str) -> None:
    """Remove one of the caller's cart lines."""
    owner_sql, owner_params = identity.owner_clause()
    async with connect() as conn:
        cur = await conn.execute(
            f"DELETE FROM cart_items WHERE id = ? AND {owner_sql};",
            (item_id, *owner_params),
        )
        deleted = cur.rowcount
        await cur.close()
        await conn.commit()
    if not deleted:
        raise NotFoundError("Cart item not found")


async def clear_cart(identity: RequestIdentity) -> int:
    """Remove every cart line of the caller; returns how many were removed."""
    owner_sql, owner_params = identity.owner_clause()
    async with connect() as conn:
        cur = await conn.execute(
            f"DELETE FROM cart_items WHERE {owner_sql};", owner_params
        )
        deleted = cur.rowcount
        await cur.close()
        await conn.commit()
    return deleted


# ---------------------------
# Auth & Registration
# ---------------------------


async def email_available(email: str) -> bool:
    """True if no user already registered with the given email."""
    async with connect() as conn:
        row = await fetch_one(
            conn, "SELECT 1 FROM users WHERE email = ? LIMIT 1;", (email.strip().lower(),)
        )
    return row is None


async def register_user(
    email: str,
    password: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
) -> models.User:
    """Create a customer account. Emails are stored lower-cased."""
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValidationError("Email and password are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if not await email_available(email):
        raise ConflictError("User with this email already exists")

    password_hash = await asyncio.to_thread(hash_password, password)
    user_id = new_id()
    now = utcnow()
    async with connect() as conn:
        try:
            await conn.execute(
                """
                INSERT INTO users(id, email, password_hash, first_name, last_name,
                                  phone, role, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 'CUSTOMER', 1, ?, ?);
                """,
                (
                    user_id,
                    email,
                    password_hash,
                    _strip(first_name),
                    _strip(last_name),
                    _strip(phone),
                    now,
                    now,
                ),
            )
            await conn.commit()
        except sqlite3.IntegrityError:
            raise ConflictError("User with this email already exists")
        row = await fetch_one(conn, "SELECT * FROM users WHERE id = ?;", (user_id,))
    _logger.info(f"Registered user {user_id}")
    return user_from_row(row)


async def authenticate(email: str, password: str) -> models.User:
    """Return the active user matching the credentials and stamp last_login."""
    if not email or not password:
        raise ValidationError("Email and password are required")
    async with connect() as conn:
        row = await fetch_one(
            conn,
            "SELECT * FROM users WHERE email = ? AND is_active = 1;",
            (email.strip().lower(),),
        )
        if not row or not await asyncio.to_thread(
            verify_password, password, row["password_hash"]
        ):
            _logger.debug(f"Failed login for {email!r}")
            raise ValidationError("Invalid email or password")
        await conn.execute(
            "UPDATE users SET last_login = ? WHERE id = ?;", (utcnow(), row["id"])
        )
        await conn.commit()
        row = await fetch_one(conn, "SELECT * FROM users WHERE id = ?;", (row["id"],))
    return user_from_row(row)


async def get_user(user_id: str) -> Optional[models.User]:
    """Return a User for the given id, or None if not found."""
    async with connect() as conn:
        row = await fetch_one(conn, "SELECT * FROM users WHERE id = ?;", (user_id,))
    return user_from_row(row) if row else None


async def update_profile(
    user_id: str,
    changes: Dict[str, Optional[str]],
    current_password: Optional[str] = None,
    new_password: Optional[str] = None,
) -> models.User:
    """
    Update first_name/last_name/phone (only keys present in `changes`) and
    optionally change the password, which requires the current one.
    """
    allowed = {"first_name", "last_name", "phone"}
    updates = {k: _strip(v) for k, v in changes.items() if k in allowed}

    async with connect() as conn:
        row = await fetch_one(conn, "SELECT * FROM users WHERE id = ?;", (user_id,))
        if not row:
            raise NotFoundError("User not found")
        if new_password:
            if not current_password:
                raise ValidationError("Current password is required to change password")
            if not await asyncio.to_thread(
                verify_password, current_password, row["password_hash"]
            ):
                raise ValidationError("Invalid current password")
            if len(new_password) < MIN_PASSWORD_LENGTH:
                raise ValidationError(
                    f"New password must be at least {MIN_PASSWORD_LENGTH} characters long"
                )
            updates["password_hash"] = await asyncio.to_thread(hash_password, new_password)

        if updates:
            updates["updated_at"] = utcnow()
            assignments = ", ".join(f"{col} = ?" for col in updates)
            await conn.execute(
                f"UPDATE users SET {assignments} WHERE id = ?;",
                (*updates.values(), user_id),
            )
            await conn.commit()
        row = await fetch_one(conn, "SELECT * FROM users WHERE id = ?;", (user_id,))
    return user_from_row(row)


# ---------------------------
# Addresses
# ---------------------------

ADDRESS_REQUIRED = (
    "first_name",
    "last_name",
    "address_line1",
    "city",
    "state",
    "postal_code",
)
ADDRESS_OPTIONAL = ("company", "address_line2", "phone")


async def list_addresses(user_id: str) -> List[models.Address]:
    """User's addresses, defaults first, then newest first."""
    async with connect() as conn:
        rows = await fetch_all(
            conn,
            """
            SELECT * FROM addresses
            WHERE user_id = ?
            ORDER BY is_default DESC, created_at DESC;
            """,
            (user_id,),
        )
    return [address_from_row(r) for r in rows]


async def _clear_defaults(
    conn: aiosqlite.Connection, user_id: str, addr_type: str, keep_id: Optional[str] = None
) -> None:
    await conn.execute(
        """
        UPDATE addresses SET is_default = 0
        WHERE user_id = ? AND type = ? AND is_default = 1 AND id IS NOT ?;
        """,
        (user_id, addr_type, keep_id),
    )


async def create_address(user_id: str, fields: Dict) -> models.Address:
    """Create an address; a new default clears the other defaults of its type."""
    values = {k: _strip(fields.get(k)) for k in ADDRESS_REQUIRED}
    if not all(values.values()):
        raise ValidationError("Missing required address fields")
    values.update({k: _strip(fields.get(k)) for k in ADDRESS_OPTIONAL})
    addr_type = fields.get("type") or models.AddressType.SHIPPING.value
    is_default = bool(fields.get("is_default", False))
    country = fields.get("country") or "IN"

    address_id = new_id()
    now = utcnow()
    async with transaction() as conn:
        if is_default:
            await _clear_defaults(conn, user_id, addr_type)
        await conn.execute(
            """
            INSERT INTO addresses(id, user_id, type, first_name, last_name, company,
                                  address_line1, address_line2, city, state,
                                  postal_code, country, phone, is_default,
                                  created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                address_id,
                user_id,
                addr_type,
                values["first_name"],
                values["last_name"],
                values["company"],
                values["address_line1"],
                values["address_line2"],
                values["city"],
                values["state"],
                values["postal_code"],
                country,
                values["phone"],
                int(is_default),
                now,
                now,
            ),
        )
        row = await fetch_one(conn, "SELECT * FROM addresses WHERE id = ?;", (address_id,))
    return address_from_row(row)


async def get_address(user_id: str, address_id: str) -> models.Address:
    async with connect() as conn:
        row = await fetch_one(
            conn,
            "SELECT * FROM addresses WHERE id = ? AND user_id = ?;",
            (address_id, user_id),
        )
    if not row:
        raise NotFoundError("Address not found")
    return address_from_row(row)


async def update_address(user_id: str, address_id: str, changes: Dict) -> models.Address:
    """
    Update an address. Required fields keep their old value when the new one
    is blank; optional fields change only when their key is present.
    """
    async with transaction() as conn:
        row = await fetch_one(
            conn,
            "SELECT * FROM addresses WHERE id = ? AND user_id = ?;",
            (address_id, user_id),
        )
        if not row:
            raise NotFoundError("Address not found")
        existing = address_from_row(row)

        updates: Dict = {}
        for col in ADDRESS_REQUIRED:
            new_val = _strip(changes.get(col))
            updates[col] = new_val or getattr(existing, col)
        for col in ADDRESS_OPTIONAL:
            if col in changes:
                updates[col] = _strip(changes[col])
        updates["type"] = changes.get("type") or existing.type
        updates["country"] = changes.get("country") or existing.country
        is_default = changes.get("is_default")
        updates["is_default"] = int(
            existing.is_default if is_default is None else bool(is_default)
        )
        updates["updated_at"] = utcnow()

        if is_default and not existing.is_default:
            await _clear_defaults(conn, user_id, updates["type"], keep_id=address_id)

        assignments = ", ".join(f"{col} = ?" for col in updates)
        await conn.execute(
            f"UPDATE addresses SET {assignments} WHERE id = ?;",
            (*updates.values(), address_id),
        )
        row = await fetch_one(conn, "SELECT * FROM addresses WHERE id = ?;", (address_id,))
    return address_from_row(row)


async def delete_address(user_id: str, address_id: str) -> None:
    """Delete an address unless an order still references it."""
    async with transaction() as conn:
        row = await fetch_one(
            conn,
            "SELECT id FROM addresses WHERE id = ? AND user_id = ?;",
            (address_id, user_id),
        )
        if not row:
            raise NotFoundError("Address not found")
        used = await fetch_one(
            conn,
            """
            SELECT 1 FROM orders
            WHERE shipping_address_id = ? OR billing_address_id = ?
            LIMIT 1;
            """,
            (address_id, address_id),
        )
        if used:
            raise ConflictError("Cannot delete address that is used in orders")
        await conn.execute("DELETE FROM addresses WHERE id = ?;", (address_id,))


# ---------------------------
# Reviews
# ---------------------------


async def _active_product_id(conn: aiosqlite.Connection, slug: str) -> str:
    row = await fetch_one(
        conn, "SELECT id FROM products WHERE slug = ? AND is_active = 1;", (slug,)
    )
    if not row:
        raise NotFoundError("Product not found")
    return row["id"]


async def list_reviews(
    slug: str, page: int = 1, limit: int = 10, rating: Optional[int] = None
) -> Tuple[List[models.Review], int, Dict]:
    """
    Approved reviews of an active product, newest first, optionally only one
    star rating. Stats always cover every approved review of the product.
    Returns (reviews for page, total_count, stats) where stats has
    average_rating (one decimal), total_reviews and breakdown [(5, n)...(1, n)].
    """
    async with connect() as conn:
        product_id = await _active_product_id(conn, slug)
        where = "r.product_id = ? AND r.is_approved = 1"
        params: List = [product_id]
        if rating is not None:
            where += " AND r.rating = ?"
            params.append(rating)

        row = await fetch_one(conn, f"SELECT COUNT(*) FROM reviews r WHERE {where};", params)
        total = int(row[0])
        rows = await fetch_all(
            conn,
            f"""
            SELECT r.*, u.first_name, u.last_name
            FROM reviews r
            JOIN users u ON u.id = r.user_id
            WHERE {where}
            ORDER BY r.created_at DESC
            LIMIT ? OFFSET ?;
            """,
            params + [limit, _offset(page, limit)],
        )
        count_rows = await fetch_all(
            conn,
            """
            SELECT rating, COUNT(*) FROM reviews
            WHERE product_id = ? AND is_approved = 1
            GROUP BY rating;
            """,
            (product_id,),
        )

    counts = {int(r[0]): int(r[1]) for r in count_rows}
    total_reviews = sum(counts.values())
    average = (
        sum(star * n for star, n in counts.items()) / total_reviews
        if total_reviews
        else 0.0
    )
    stats = {
        "average_rating": round(average, 1),
        "total_reviews": total_reviews,
        "breakdown": [(star, counts.get(star, 0)) for star in range(5, 0, -1)],
    }
    return [_review_from_row(r) for r in rows], total, stats


async def create_review(
    user_id: str,
    slug: str,
    rating: int,
    title: Optional[str] = None,
    comment: Optional[str] = None,
) -> models.Review:
    """
    Review an active product, once per user. The review is flagged as a
    verified purchase when one of the user's delivered orders contains the
    product. Reviews are approved on creation.
    """
    if rating is None or not 1 <= int(rating) <= 5:
        raise ValidationError("Rating must be between 1 and 5")
    review_id = new_id()
    now = utcnow()

    async with transaction() as conn:
        product_id = await _active_product_id(conn, slug)
        existing = await fetch_one(
            conn,
            "SELECT 1 FROM reviews WHERE product_id = ? AND user_id = ?;",
            (product_id, user_id),
        )
        if existing:
            raise ConflictError("You have already reviewed this product")

        purchased = await fetch_one(
            conn,
            """
            SELECT 1 FROM order_items oi
            JOIN orders o ON o.id = oi.order_id
            WHERE oi.product_id = ? AND o.user_id = ? AND o.status = ?
            LIMIT 1;
            """,
            (product_id, user_id, models.OrderStatus.DELIVERED.value),
        )
        await conn.execute(
            """
            INSERT INTO reviews(id, product_id, user_id, rating, title, comment,
                                is_verified_purchase, is_approved, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?);
            """,
            (
                review_id,
                product_id,
                user_id,
                int(rating),
                _strip(title),
                _strip(comment),
                int(purchased is not None),
                now,
                now,
            ),
        )
        row = await fetch_one(
            conn,
            """
            SELECT r.*, u.first_name, u.last_name
            FROM reviews r JOIN users u ON u.id = r.user_id
            WHERE r.id = ?;
            """,
            (review_id,),
        )
    return _review_from_row(row)


# ---------------------------
# Wishlist
# ---------------------------


def _wishlist_from_row(row) -> models.WishlistItem:
    return models.WishlistItem(
        id=row["id"],
        user_id=row["user_id"],
        product_id=row["product_id"],
        created_at=row["created_at"],
    )


async def list_wishlist(
    user_id: str,
) -> List[Tuple[models.WishlistItem, models.ProductListing]]:
    """Wishlist entries with their product listing, newest first."""
    async with connect() as conn:
        rows = await fetch_all(
            conn,
            """
            SELECT * FROM wishlist_items
            WHERE user_id = ?
            ORDER BY created_at DESC, rowid DESC;
            """,
            (user_id,),
        )
        items = [_wishlist_from_row(r) for r in rows]
        if not items:
            return []
        ids = [i.product_id for i in items]
        prod_rows = await fetch_all(
            conn, f"SELECT * FROM products WHERE id IN ({_marks(ids)});", ids
        )
        listings = await load_listings(conn, [product_from_row(r) for r in prod_rows])
    by_product = {lst.product.id: lst for lst in listings}
    return [(item, by_product[item.product_id]) for item in items]


async def add_to_wishlist(
    user_id: str, product_id: str
) -> Tuple[models.WishlistItem, models.ProductListing]:
    if not product_id:
        raise ValidationError("Product ID is required")
    item_id = new_id()
    async with transaction() as conn:
        target = await resolve_purchasable(conn, product_id)
        existing = await fetch_one(
            conn,
            "SELECT 1 FROM wishlist_items WHERE product_id = ? AND user_id = ?;",
            (product_id, user_id),
        )
        if existing:
            raise ConflictError("Product already in wishlist")
        await conn.execute(
            """
            INSERT INTO wishlist_items(id, user_id, product_id, created_at)
            VALUES (?, ?, ?, ?);
            """,
            (item_id, user_id, product_id, utcnow()),
        )
        row = await fetch_one(conn, "SELECT * FROM wishlist_items WHERE id = ?;", (item_id,))
        [listing] = await load_listings(conn, [target.product])
    return _wishlist_from_row(row), listing


async def remove_from_wishlist(
    user_id: str, item_id: Optional[str] = None, product_id: Optional[str] = None
) -> None:
    """Remove a wishlist entry by its id or by product id."""
    if not item_id and not product_id:
        raise ValidationError("Product ID or item ID is required")
    column, value = ("id", item_id) if item_id else ("product_id", product_id)
    async with connect() as conn:
        cur = await conn.execute(
            f"DELETE FROM wishlist_items WHERE user_id = ? AND {column} = ?;",
            (user_id, value),
        )
        deleted = cur.rowcount
        await cur.close()
        await conn.commit()
    if not deleted:
        raise NotFoundError("Wishlist item not found")
