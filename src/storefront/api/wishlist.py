from typing import Optional

from fastapi import APIRouter, Depends, Query

from storefront.api import serializers
from storefront.api.deps import require_user
from storefront.api.schemas import WishlistAddRequest
from storefront.db import crud
from storefront.utils.state import RequestIdentity

router = APIRouter(prefix="/wishlist", tags=["wishlist"])


@router.get("")
async def get_wishlist(identity: RequestIdentity = Depends(require_user)):
    entries = await crud.list_wishlist(identity.user_id)
    return {
        "items": [serializers.wishlist_entry(item, listing) for item, listing in entries],
        "total": len(entries),
    }


@router.post("", status_code=201)
async def add_to_wishlist(
    body: WishlistAddRequest, identity: RequestIdentity = Depends(require_user)
):
    item, listing = await crud.add_to_wishlist(identity.user_id, body.product_id)
    return {
        "message": "Product added to wishlist successfully",
        "item": serializers.wishlist_entry(item, listing),
    }


@router.delete("")
async def remove_from_wishlist(
    item_id: Optional[str] = Query(None, alias="itemId"),
    product_id: Optional[str] = Query(None, alias="productId"),
    identity: RequestIdentity = Depends(require_user),
):
    await crud.remove_from_wishlist(identity.user_id, item_id=item_id, product_id=product_id)
    return {"message": "Product removed from wishlist successfully"}
