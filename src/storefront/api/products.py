# catalog listing and product detail
from typing import Optional

from fastapi import APIRouter, Query

from storefront.api import serializers
from storefront.db import crud
from storefront.utils.errors import NotFoundError

router = APIRouter(prefix="/products", tags=["products"])


@router.get("")
async def list_products(
    category: Optional[str] = None,
    featured: bool = False,
    search: Optional[str] = None,
    sort: str = "createdAt",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(12, ge=1, le=100, alias="pageSize"),
    limit: Optional[int] = Query(None, ge=1, le=100),
):
    listings, total, take = await crud.list_products(
        category=category,
        featured=featured,
        search=search,
        sort=sort,
        order=order,
        page=page,
        page_size=page_size,
        limit=limit,
    )
    # page offsets use pageSize even when limit overrides how many are taken
    skip = (page - 1) * page_size
    info = serializers.pagination(page, take, total, size_key="pageSize")
    info["hasNextPage"] = skip + take < total
    return {
        "products": [serializers.product(lst) for lst in listings],
        "pagination": info,
    }


@router.get("/{slug}")
async def get_product(slug: str):
    found = await crud.get_product_by_slug(slug)
    if found is None:
        raise NotFoundError("Product not found")
    listing, reviews = found
    return serializers.product_detail(listing, reviews)
