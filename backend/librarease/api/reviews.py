from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor
from librarease.repository.base import ListReviewsOption

router = APIRouter()


class ReviewCreate(BaseModel):
    borrowing_id: UUID
    rating: int
    comment: Optional[str] = None


class ReviewUpdate(BaseModel):
    rating: Optional[int] = None
    comment: Optional[str] = None


@router.get("/reviews")
async def list_reviews(
    borrowing_id: Optional[list[UUID]] = Query(None),
    user_id: Optional[list[UUID]] = Query(None),
    book_id: Optional[list[UUID]] = Query(None),
    library_id: Optional[list[UUID]] = Query(None),
    rating: Optional[int] = None,
    sort_by: str = Query("created_at", pattern="^(created_at|rating)$"),
    sort_in: str = Query("desc", pattern="^(asc|desc)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    opt = ListReviewsOption(
        borrowing_ids=borrowing_id or [],
        user_ids=user_id or [],
        book_ids=book_id or [],
        library_ids=library_id or [],
        rating=rating,
        sort_by=sort_by,
        sort_desc=sort_in == "desc",
        skip=skip,
        limit=limit,
    )
    items, total = await services.reviews.list_reviews(opt)
    return envelope(items, total=total, skip=skip, limit=limit)


@router.post("/reviews", status_code=201)
async def create_review(
    body: ReviewCreate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.reviews.create_review(actor, **body.model_dump()))


@router.get("/reviews/{review_id}")
async def get_review(
    review_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.reviews.get_review(review_id))


@router.put("/reviews/{review_id}")
async def update_review(
    review_id: UUID,
    body: ReviewUpdate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.reviews.update_review(actor, review_id, **body.model_dump()))


@router.delete("/reviews/{review_id}")
async def delete_review(
    review_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    await services.reviews.delete_review(actor, review_id)
    return envelope(message="review deleted")
