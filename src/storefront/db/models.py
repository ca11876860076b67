# provide dataclass models; money is Decimal, timestamps are ISO strings

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from storefront.utils.pricing import effective_unit_price


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class AddressType(str, Enum):
    SHIPPING = "SHIPPING"
    BILLING = "BILLING"
    BOTH = "BOTH"


@dataclass(frozen=True)
class User:
    id: str
    email: str
    password_hash: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    phone: Optional[str]
    role: str  # "CUSTOMER", "ADMIN" or "VENDOR"
    is_active: bool
    last_login: Optional[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    slug: str
    description: Optional[str]
    image: Optional[str]
    parent_id: Optional[str]
    is_active: bool
    meta_title: Optional[str]
    meta_description: Optional[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Brand:
    id: str
    name: str
    slug: str
    logo: Optional[str] = None


@dataclass(frozen=True)
class ProductImage:
    id: str
    product_id: str
    url: str
    alt_text: Optional[str]
    sort_order: int
    is_main: bool


@dataclass(frozen=True)
class Variant:
    id: str
    product_id: str
    name: str
    sku: Optional[str]
    attributes: dict
    price: Optional[Decimal]  # overrides the product price when set
    stock: int
    is_active: bool


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    slug: str
    description: Optional[str]
    short_description: Optional[str]
    base_price: Decimal
    sale_price: Optional[Decimal]
    cost_price: Optional[Decimal]
    sku: Optional[str]
    stock: int
    weight: Optional[float]
    dimensions: Optional[str]
    is_digital: bool
    is_active: bool
    is_featured: bool
    meta_title: Optional[str]
    meta_description: Optional[str]
    category_id: str
    brand_id: Optional[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class ProductListing:
    """A product with the relations the catalog routes render."""

    product: Product
    category: Category
    brand: Optional[Brand]
    images: list[ProductImage] = field(default_factory=list)
    variants: list[Variant] = field(default_factory=list)
    average_rating: float = 0.0
    review_count: int = 0


@dataclass(frozen=True)
class CartItem:
    id: str
    user_id: Optional[str]
    guest_session_id: Optional[str]
    product_id: str
    variant_id: Optional[str]
    quantity: int
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class CartLineView:
    """A cart line joined with its product and variant, priced at current data."""

    item: CartItem
    product: Product
    variant: Optional[Variant]
    category_name: str
    brand_name: Optional[str]
    image: Optional[str]
    unit_price: Decimal
    available_stock: int


@dataclass(frozen=True)
class Address:
    id: str
    user_id: str
    type: str
    first_name: str
    last_name: str
    company: Optional[str]
    address_line1: str
    address_line2: Optional[str]
    city: str
    state: str
    postal_code: str
    country: str
    phone: Optional[str]
    is_default: bool
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Order:
    id: str
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    customer_email: str
    customer_phone: Optional[str]
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    payment_method: Optional[str]
    tracking_number: Optional[str]
    customer_notes: Optional[str]
    user_id: Optional[str]
    guest_session_id: Optional[str]
    guest_shipping_address: Optional[dict]
    guest_billing_address: Optional[dict]
    shipping_address_id: Optional[str]
    billing_address_id: Optional[str]
    created_at: str
    updated_at: str
    shipped_at: Optional[str]
    delivered_at: Optional[str]


@dataclass(frozen=True)
class OrderLine:
    id: str
    order_id: str
    product_id: str
    variant_id: Optional[str]
    quantity: int
    unit_price: Decimal  # frozen at order time
    total_price: Decimal
    product_name: str
    product_sku: Optional[str]
    variant_name: Optional[str]


@dataclass(frozen=True)
class Payment:
    id: str
    order_id: str
    amount: Decimal
    method: str
    status: PaymentStatus
    transaction_id: Optional[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Review:
    id: str
    product_id: str
    user_id: str
    rating: int
    title: Optional[str]
    comment: Optional[str]
    is_verified_purchase: bool
    is_approved: bool
    author_name: str
    created_at: str


@dataclass(frozen=True)
class WishlistItem:
    id: str
    user_id: str
    product_id: str
    created_at: str


@dataclass(frozen=True)
class Purchasable:
    """A product (and optional variant) resolved for adding to a cart or order."""

    product: Product
    variant: Optional[Variant] = None

    @property
    def available_stock(self) -> int:
        if self.variant is not None:
            return self.variant.stock
        return self.product.stock

    @property
    def unit_price(self) -> Decimal:
        return effective_unit_price(
            self.product.base_price,
            self.product.sale_price,
            self.variant.price if self.variant is not None else None,
        )


@dataclass(frozen=True)
class CategoryNode:
    """A category with its parent, active children and (optionally) products."""

    category: Category
    parent: Optional[Category]
    children: list[Category] = field(default_factory=list)
    products: Optional[list[ProductListing]] = None
    product_count: Optional[int] = None


@dataclass(frozen=True)
class OrderLineView:
    line: OrderLine
    listing: ProductListing
    variant: Optional[Variant]


@dataclass(frozen=True)
class OrderDetail:
    """An order with its lines, addresses and payments, as listed to its owner."""

    order: Order
    lines: list[OrderLineView]
    shipping_address: Union[Address, dict, None]  # saved address or guest snapshot
    billing_address: Union[Address, dict, None]
    payments: list[Payment]
    user: Optional[User] = None
