from typing import Optional

from fastapi import APIRouter, Query

from storefront.api import serializers
from storefront.db import crud

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("")
async def list_categories(
    include_products: bool = Query(False, alias="includeProducts"),
    parent_id: Optional[str] = Query(None, alias="parentId"),
):
    # parentId=null (or empty) asks for root categories only
    roots_only = parent_id is not None and parent_id in ("", "null")
    nodes = await crud.list_categories(
        parent_id=None if roots_only else parent_id,
        roots_only=roots_only,
        include_products=include_products,
    )
    return {
        "categories": [serializers.category_node(n) for n in nodes],
        "total": len(nodes),
    }
