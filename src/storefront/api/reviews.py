# product reviews
from typing import Optional

from fastapi import APIRouter, Depends, Query

from storefront.api import serializers
from storefront.api.deps import require_user
from storefront.api.schemas import ReviewCreateRequest
from storefront.db import crud
from storefront.utils.state import RequestIdentity

router = APIRouter(prefix="/products", tags=["reviews"])


@router.get("/{slug}/reviews")
async def list_reviews(
    slug: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    rating: Optional[int] = Query(None, ge=1, le=5),
):
    reviews, total, stats = await crud.list_reviews(slug, page=page, limit=limit, rating=rating)
    return {
        "reviews": [serializers.review(r) for r in reviews],
        "pagination": serializers.pagination(page, limit, total),
        "stats": {
            "averageRating": stats["average_rating"],
            "totalReviews": stats["total_reviews"],
            "ratingBreakdown": [
                {"rating": star, "count": count} for star, count in stats["breakdown"]
            ],
        },
    }


@router.post("/{slug}/reviews", status_code=201)
async def create_review(
    slug: str,
    body: ReviewCreateRequest,
    identity: RequestIdentity = Depends(require_user),
):
    review = await crud.create_review(
        identity.user_id, slug, body.rating, title=body.title, comment=body.comment
    )
    return {"message": "Review submitted successfully", "review": serializers.review(review)}
