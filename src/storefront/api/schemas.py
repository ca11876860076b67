"""Request bodies. Field names are camelCase on the wire; unknown fields are rejected."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from storefront.db.models import AddressType


class _Body(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


# --- Cart ---


class CartAddRequest(_Body):
    product_id: str = Field(min_length=1)
    variant_id: Optional[str] = None
    quantity: int = 1
    user_id: Optional[str] = None


class CartUpdateRequest(_Body):
    item_id: str = Field(min_length=1)
    quantity: int
    user_id: Optional[str] = None


# --- Orders ---


class InlineLineRequest(_Body):
    """A full cart line as held by the client; price/name/sku are not trusted."""

    product_id: str = Field(min_length=1)
    variant_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    price: Optional[float] = None
    name: Optional[str] = None
    sku: Optional[str] = None
    variant: Optional[Dict[str, Any]] = None


class OrderCreateRequest(_Body):
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    billing_address: Optional[Dict[str, Any]] = None
    payment_method: str = "cod"
    customer_notes: Optional[str] = None
    cart_items: Union[List[str], List[InlineLineRequest]] = Field(default_factory=list)
    user_id: Optional[str] = None


# --- Accounts ---


class RegisterRequest(_Body):
    email: EmailStr
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(_Body):
    email: str
    password: str


class ProfileUpdateRequest(_Body):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class AddressRequest(_Body):
    type: AddressType = AddressType.SHIPPING
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "IN"
    phone: Optional[str] = None
    is_default: bool = False


class AddressUpdateRequest(_Body):
    type: Optional[AddressType] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    is_default: Optional[bool] = None


# --- Reviews & wishlist ---


class ReviewCreateRequest(_Body):
    rating: int
    title: Optional[str] = None
    comment: Optional[str] = None


class WishlistAddRequest(_Body):
    product_id: str = Field(min_length=1)
