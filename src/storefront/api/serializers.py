# turn db models into the JSON shapes the storefront UI consumes
import math
from decimal import Decimal
from typing import Any, Dict, List, Optional

from storefront.db import models


def money(amount: Optional[Decimal]) -> Optional[float]:
    return float(amount) if amount is not None else None


def pagination(page: int, limit: int, total: int, size_key: str = "limit") -> Dict[str, Any]:
    skip = max(page - 1, 0) * limit
    return {
        "page": page,
        size_key: limit,
        "totalCount": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "hasNextPage": skip + limit < total,
        "hasPreviousPage": page > 1,
    }


# --- Catalog ---


def image(img: models.ProductImage) -> Dict[str, Any]:
    return {"url": img.url, "altText": img.alt_text, "isMain": img.is_main}


def category_ref(cat: models.Category) -> Dict[str, Any]:
    return {"id": cat.id, "name": cat.name, "slug": cat.slug}


def brand_ref(brand: Optional[models.Brand], with_logo: bool = False) -> Optional[Dict[str, Any]]:
    if brand is None:
        return None
    out = {"id": brand.id, "name": brand.name, "slug": brand.slug}
    if with_logo:
        out["logo"] = brand.logo
    return out


def variant(v: models.Variant, with_sku: bool = False) -> Dict[str, Any]:
    out = {
        "id": v.id,
        "name": v.name,
        "attributes": v.attributes,
        "price": money(v.price),
        "stock": v.stock,
    }
    if with_sku:
        out["sku"] = v.sku
    return out


def product(listing: models.ProductListing) -> Dict[str, Any]:
    """Product card as used by listing, search and category pages."""
    p = listing.product
    return {
        "id": p.id,
        "name": p.name,
        "slug": p.slug,
        "description": p.description,
        "shortDescription": p.short_description,
        "basePrice": money(p.base_price),
        "salePrice": money(p.sale_price),
        "sku": p.sku,
        "stock": p.stock,
        "images": [image(i) for i in listing.images],
        "category": category_ref(listing.category),
        "brand": brand_ref(listing.brand),
        "isActive": p.is_active,
        "isFeatured": p.is_featured,
        "variants": [variant(v) for v in listing.variants],
        "averageRating": listing.average_rating,
        "reviewCount": listing.review_count,
        "createdAt": p.created_at,
        "updatedAt": p.updated_at,
    }


def review(r: models.Review) -> Dict[str, Any]:
    return {
        "id": r.id,
        "rating": r.rating,
        "title": r.title,
        "comment": r.comment,
        "isVerifiedPurchase": r.is_verified_purchase,
        "user": {"name": r.author_name},
        "createdAt": r.created_at,
    }


def product_detail(listing: models.ProductListing, reviews: List[models.Review]) -> Dict[str, Any]:
    p = listing.product
    count = len(reviews)
    return {
        "id": p.id,
        "name": p.name,
        "slug": p.slug,
        "description": p.description,
        "shortDescription": p.short_description,
        "basePrice": money(p.base_price),
        "salePrice": money(p.sale_price),
        "sku": p.sku,
        "stock": p.stock,
        "weight": p.weight,
        "dimensions": p.dimensions,
        "isDigital": p.is_digital,
        "isFeatured": p.is_featured,
        "metaTitle": p.meta_title,
        "metaDescription": p.meta_description,
        "images": [image(i) for i in listing.images],
        "category": category_ref(listing.category),
        "brand": brand_ref(listing.brand, with_logo=True),
        "variants": [variant(v, with_sku=True) for v in listing.variants],
        "reviews": [review(r) for r in reviews],
        "averageRating": sum(r.rating for r in reviews) / count if count else 0,
        "reviewCount": count,
        "createdAt": p.created_at,
        "updatedAt": p.updated_at,
    }


def category_node(node: models.CategoryNode) -> Dict[str, Any]:
    cat = node.category
    out = {
        "id": cat.id,
        "name": cat.name,
        "slug": cat.slug,
        "description": cat.description,
        "image": cat.image,
        "isActive": cat.is_active,
        "parentId": cat.parent_id,
        "parent": category_ref(node.parent) if node.parent else None,
        "children": [
            {
                "id": c.id,
                "name": c.name,
                "slug": c.slug,
                "description": c.description,
                "image": c.image,
            }
            for c in node.children
        ],
        "metaTitle": cat.meta_title,
        "metaDescription": cat.meta_description,
        "createdAt": cat.created_at,
        "updatedAt": cat.updated_at,
    }
    if node.products is not None:
        out["products"] = [
            {
                "id": lst.product.id,
                "name": lst.product.name,
                "slug": lst.product.slug,
                "basePrice": money(lst.product.base_price),
                "salePrice": money(lst.product.sale_price),
                "images": [image(i) for i in lst.images],
                "brand": {"id": lst.brand.id, "name": lst.brand.name} if lst.brand else None,
            }
            for lst in node.products
        ]
        out["productCount"] = node.product_count or 0
    return out


# --- Cart ---


def cart_item(item: models.CartItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "userId": item.user_id,
        "guestSessionId": item.guest_session_id,
        "productId": item.product_id,
        "variantId": item.variant_id,
        "quantity": item.quantity,
        "createdAt": item.created_at,
        "updatedAt": item.updated_at,
    }


def cart_line(line: models.CartLineView) -> Dict[str, Any]:
    v = line.variant
    return {
        "id": line.item.id,
        "productId": line.product.id,
        "variantId": line.item.variant_id,
        "quantity": line.item.quantity,
        "name": line.product.name,
        "slug": line.product.slug,
        "price": money(line.unit_price),
        "originalPrice": money(line.product.base_price),
        "image": line.image,
        "variant": {"id": v.id, "name": v.name, "attributes": v.attributes} if v else None,
        "stock": line.available_stock,
        "category": line.category_name,
        "brand": line.brand_name,
        "createdAt": line.item.created_at,
        "updatedAt": line.item.updated_at,
    }


# --- Accounts ---


def user(u: models.User) -> Dict[str, Any]:
    return {
        "id": u.id,
        "email": u.email,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "phone": u.phone,
        "role": u.role,
        "isActive": u.is_active,
        "lastLogin": u.last_login,
        "createdAt": u.created_at,
        "updatedAt": u.updated_at,
    }


def address(a: models.Address) -> Dict[str, Any]:
    return {
        "id": a.id,
        "userId": a.user_id,
        "type": a.type,
        "firstName": a.first_name,
        "lastName": a.last_name,
        "company": a.company,
        "addressLine1": a.address_line1,
        "addressLine2": a.address_line2,
        "city": a.city,
        "state": a.state,
        "postalCode": a.postal_code,
        "country": a.country,
        "phone": a.phone,
        "isDefault": a.is_default,
        "createdAt": a.created_at,
        "updatedAt": a.updated_at,
    }


# --- Orders ---


def order_created(order: models.Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "totalAmount": money(order.total_amount),
        "status": order.status.value,
        "paymentMethod": order.payment_method,
    }


def _order_address(value) -> Any:
    if isinstance(value, models.Address):
        return address(value)
    return value


def payment(p: models.Payment) -> Dict[str, Any]:
    return {
        "id": p.id,
        "orderId": p.order_id,
        "amount": money(p.amount),
        "method": p.method,
        "status": p.status.value,
        "transactionId": p.transaction_id,
        "createdAt": p.created_at,
        "updatedAt": p.updated_at,
    }


def order_detail(detail: models.OrderDetail) -> Dict[str, Any]:
    o = detail.order
    return {
        "id": o.id,
        "orderNumber": o.order_number,
        "status": o.status.value,
        "paymentStatus": o.payment_status.value,
        "customerEmail": o.customer_email,
        "customerPhone": o.customer_phone,
        "subtotal": money(o.subtotal),
        "taxAmount": money(o.tax_amount),
        "shippingCost": money(o.shipping_cost),
        "discountAmount": money(o.discount_amount),
        "totalAmount": money(o.total_amount),
        "paymentMethod": o.payment_method,
        "trackingNumber": o.tracking_number,
        "customerNotes": o.customer_notes,
        "items": [
            {
                "id": lv.line.id,
                "quantity": lv.line.quantity,
                "unitPrice": money(lv.line.unit_price),
                "totalPrice": money(lv.line.total_price),
                "productName": lv.line.product_name,
                "productSku": lv.line.product_sku,
                "variantName": lv.line.variant_name,
                "product": {
                    "id": lv.listing.product.id,
                    "name": lv.listing.product.name,
                    "slug": lv.listing.product.slug,
                    "images": [image(i) for i in lv.listing.images],
                    "category": lv.listing.category.name,
                    "brand": lv.listing.brand.name if lv.listing.brand else None,
                },
                "variant": {
                    "id": lv.variant.id,
                    "name": lv.variant.name,
                    "attributes": lv.variant.attributes,
                }
                if lv.variant
                else None,
            }
            for lv in detail.lines
        ],
        "shippingAddress": _order_address(detail.shipping_address),
        "billingAddress": _order_address(detail.billing_address),
        "payments": [payment(p) for p in detail.payments],
        "user": {
            "id": detail.user.id,
            "email": detail.user.email,
            "firstName": detail.user.first_name,
            "lastName": detail.user.last_name,
        }
        if detail.user
        else None,
        "createdAt": o.created_at,
        "updatedAt": o.updated_at,
        "shippedAt": o.shipped_at,
        "deliveredAt": o.delivered_at,
    }


# --- Wishlist ---


def wishlist_entry(item: models.WishlistItem, listing: models.ProductListing) -> Dict[str, Any]:
    p = listing.product
    return {
        "id": item.id,
        "product": {
            "id": p.id,
            "name": p.name,
            "slug": p.slug,
            "description": p.description,
            "shortDescription": p.short_description,
            "basePrice": money(p.base_price),
            "salePrice": money(p.sale_price),
            "stock": p.stock,
            "isFeatured": p.is_featured,
            "images": [image(i) for i in listing.images],
            "category": category_ref(listing.category),
            "brand": brand_ref(listing.brand),
            "averageRating": listing.average_rating,
            "reviewCount": listing.review_count,
        },
        "createdAt": item.created_at,
    }
