# cart lines for the signed-in user or the guest session
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from storefront.api import serializers
from storefront.api.deps import check_user_id, get_identity, scoped_identity
from storefront.api.schemas import CartAddRequest, CartUpdateRequest
from storefront.db import crud
from storefront.utils.errors import ValidationError
from storefront.utils.pricing import ZERO, quantize
from storefront.utils.state import RequestIdentity

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("")
async def get_cart(
    user_id: Optional[str] = Query(None, alias="userId"),
    guest_session_id: Optional[str] = Query(None, alias="guestSessionId"),
    identity: RequestIdentity = Depends(get_identity),
):
    identity = scoped_identity(identity, user_id, guest_session_id)
    lines = await crud.list_cart(identity)
    subtotal = quantize(sum((line.unit_price * line.item.quantity for line in lines), ZERO))
    return {
        "items": [serializers.cart_line(line) for line in lines],
        "summary": {
            "totalItems": sum(line.item.quantity for line in lines),
            "subtotal": serializers.money(subtotal),
            "itemCount": len(lines),
        },
    }


@router.post("")
async def add_to_cart(
    body: CartAddRequest,
    response: Response,
    identity: RequestIdentity = Depends(get_identity),
):
    check_user_id(identity, body.user_id)
    item, created = await crud.add_to_cart(
        identity, body.product_id, variant_id=body.variant_id, quantity=body.quantity
    )
    if created:
        response.status_code = 201
        return {"message": "Item added to cart successfully", "item": serializers.cart_item(item)}
    return {"message": "Cart updated successfully", "item": serializers.cart_item(item)}


@router.put("")
async def update_cart(body: CartUpdateRequest, identity: RequestIdentity = Depends(get_identity)):
    check_user_id(identity, body.user_id)
    item = await crud.update_cart_qty(identity, body.item_id, body.quantity)
    if item is None:
        return {"message": "Item removed from cart"}
    return {"message": "Cart updated successfully", "item": serializers.cart_item(item)}


@router.delete("")
async def remove_from_cart(
    item_id: Optional[str] = Query(None, alias="itemId"),
    identity: RequestIdentity = Depends(get_identity),
):
    if not item_id:
        raise ValidationError("Item ID is required")
    await crud.remove_from_cart(identity, item_id)
    return {"message": "Item removed from cart successfully"}
