"""Book reviews, one per borrowing, written by the borrower."""

import logging
import uuid
from typing import Optional
from uuid import UUID

from librarease.entities import Actor, Review
from librarease.repository.base import ListReviewsOption, Repository
from librarease.services.errors import NotFoundError, UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)

MIN_RATING = 0
MAX_RATING = 5


def _check_rating(rating: int) -> None:
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"rating must be between {MIN_RATING} and {MAX_RATING}")


class ReviewService:
    def __init__(self, repo: Repository):
        self.repo = repo

    async def list_reviews(self, opt: ListReviewsOption) -> tuple[list[Review], int]:
        return await self.repo.list_reviews(opt)

    async def get_review(self, review_id: UUID) -> Review:
        review = await self.repo.get_review(review_id)
        if review is None:
            raise NotFoundError("review", review_id)
        return review

    async def create_review(
        self, actor: Actor, borrowing_id: UUID, rating: int, comment: Optional[str] = None
    ) -> Review:
        _check_rating(rating)
        borrowing = await self.repo.get_borrowing(borrowing_id)
        if borrowing is None:
            raise NotFoundError("borrowing", borrowing_id)
        borrower = borrowing.subscription.user_id
        if borrower != actor.user_id and not actor.is_global_admin:
            raise UnauthorizedError("only the borrower can review this borrowing")

        created = await self.repo.create_review(Review(
            id=uuid.uuid4(), borrowing_id=borrowing_id, rating=rating, comment=comment,
        ))
        created.user_id = borrower
        created.book_id = borrowing.book_id
        created.book = borrowing.book
        created.user = borrowing.subscription.user
        logger.info(f"Review {created.id} ({rating}/{MAX_RATING}) created for borrowing {borrowing_id}")
        return created

    async def _owned(self, actor: Actor, review_id: UUID) -> Review:
        review = await self.get_review(review_id)
        if review.user_id != actor.user_id and not actor.is_global_admin:
            raise UnauthorizedError("only the author can change this review")
        return review

    async def update_review(
        self, actor: Actor, review_id: UUID, rating: Optional[int] = None, comment: Optional[str] = None
    ) -> Review:
        review = await self._owned(actor, review_id)
        if rating is not None:
            _check_rating(rating)
            review.rating = rating
        if comment is not None:
            review.comment = comment
        updated = await self.repo.update_review(review)
        updated.user_id, updated.book_id = review.user_id, review.book_id
        updated.user, updated.book = review.user, review.book
        return updated

    async def delete_review(self, actor: Actor, review_id: UUID) -> None:
        await self._owned(actor, review_id)
        await self.repo.delete_review(review_id)
        logger.info(f"Review {review_id} deleted by {actor.user_id}")
