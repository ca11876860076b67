# product search with suggestions
from typing import Optional

from fastapi import APIRouter, Query

from storefront.api import serializers
from storefront.db import crud

router = APIRouter(prefix="/search", tags=["search"])


@router.get("")
async def search(
    q: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0, alias="minPrice"),
    max_price: Optional[float] = Query(None, ge=0, alias="maxPrice"),
    in_stock: bool = Query(False, alias="inStock"),
    sort: str = "relevance",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
):
    term = (q or "").strip()
    if len(term) < crud.MIN_SEARCH_LENGTH:
        return {
            "products": [],
            "suggestions": {"categories": [], "brands": []},
            "pagination": serializers.pagination(1, limit, 0),
        }

    listings, total = await crud.search_products(
        term,
        category=category,
        brand=brand,
        min_price=min_price,
        max_price=max_price,
        in_stock=in_stock,
        sort=sort,
        order=order,
        page=page,
        limit=limit,
    )
    categories, brands = await crud.search_suggestions(term)
    return {
        "products": [serializers.product(lst) for lst in listings],
        "suggestions": {
            "categories": [
                {"label": name, "value": slug, "type": "category"} for name, slug in categories
            ],
            "brands": [{"label": name, "value": slug, "type": "brand"} for name, slug in brands],
        },
        "filters": {
            "query": term,
            "category": category,
            "brand": brand,
            "minPrice": min_price,
            "maxPrice": max_price,
            "inStock": in_stock,
            "sort": sort,
        },
        "pagination": serializers.pagination(page, limit, total),
    }
