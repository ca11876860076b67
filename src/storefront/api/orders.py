# checkout and order history
from typing import Optional

from fastapi import APIRouter, Depends, Query

from storefront.api import serializers
from storefront.api.deps import check_user_id, get_identity, scoped_identity
from storefront.api.schemas import OrderCreateRequest
from storefront.db import orders
from storefront.utils.state import RequestIdentity

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("")
async def list_orders(
    user_id: Optional[str] = Query(None, alias="userId"),
    guest_session_id: Optional[str] = Query(None, alias="guestSessionId"),
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    identity: RequestIdentity = Depends(get_identity),
):
    identity = scoped_identity(identity, user_id, guest_session_id)
    details, total = await orders.list_orders(identity, status=status, page=page, limit=limit)
    return {
        "orders": [serializers.order_detail(d) for d in details],
        "pagination": serializers.pagination(page, limit, total),
    }


@router.post("", status_code=201)
async def create_order(
    body: OrderCreateRequest, identity: RequestIdentity = Depends(get_identity)
):
    check_user_id(identity, body.user_id)
    cart_items = [
        item
        if isinstance(item, str)
        else orders.InlineLine(
            product_id=item.product_id, variant_id=item.variant_id, quantity=item.quantity
        )
        for item in body.cart_items
    ]
    order = await orders.place_order(
        identity,
        orders.OrderRequest(
            customer_email=body.customer_email or "",
            cart_items=cart_items,
            customer_phone=body.customer_phone,
            shipping_address=body.shipping_address,
            billing_address=body.billing_address,
            payment_method=body.payment_method,
            customer_notes=body.customer_notes,
        ),
    )
    return {"message": "Order created successfully", "order": serializers.order_created(order)}
