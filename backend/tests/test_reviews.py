"""Reviews: one per live borrowing, written by the borrower, rated 0 to 5."""

import pytest

from librarease.repository.base import ListReviewsOption
from librarease.services.errors import BookAlreadyReviewed, NotFoundError, UnauthorizedError, ValidationError


@pytest.fixture
async def borrowing(services, repo, world):
    membership = repo.add_membership(world.library)
    sub = await services.subscriptions.create_subscription(world.actor(world.admin), world.reader.id, membership.id)
    book = repo.add_book(world.library, "R1", title="Rebecca")
    return await services.loans.create_borrowing(world.actor(world.clerk), book.id, sub.id)


async def test_borrower_reviews_the_book(services, world, borrowing):
    review = await services.reviews.create_review(world.actor(world.reader), borrowing.id, 4, comment="Gripping")
    assert (review.rating, review.user_id, review.book_id) == (4, world.reader.id, borrowing.book_id)

    stored = await services.reviews.get_review(review.id)
    assert (stored.user.name, stored.book.title) == ("Rita", "Rebecca")


@pytest.mark.parametrize("rating", [-1, 6])
async def test_rating_must_be_between_zero_and_five(services, world, borrowing, rating):
    with pytest.raises(ValidationError):
        await services.reviews.create_review(world.actor(world.reader), borrowing.id, rating)


async def test_zero_is_a_valid_rating(services, world, borrowing):
    review = await services.reviews.create_review(world.actor(world.reader), borrowing.id, 0)
    assert review.rating == 0


async def test_one_review_per_borrowing(services, world, borrowing):
    reader = world.actor(world.reader)
    await services.reviews.create_review(reader, borrowing.id, 5)
    with pytest.raises(BookAlreadyReviewed):
        await services.reviews.create_review(reader, borrowing.id, 3)


async def test_deleted_borrowing_cannot_be_reviewed(services, repo, world, borrowing, clock):
    repo.borrowings[borrowing.id].deleted_at = clock()
    with pytest.raises(NotFoundError):
        await services.reviews.create_review(world.actor(world.reader), borrowing.id, 5)


async def test_only_the_borrower_reviews(services, world, borrowing):
    with pytest.raises(UnauthorizedError):
        await services.reviews.create_review(world.actor(world.clerk), borrowing.id, 1)


async def test_author_edits_and_deletes(services, world, borrowing):
    reader = world.actor(world.reader)
    review = await services.reviews.create_review(reader, borrowing.id, 2)

    with pytest.raises(UnauthorizedError):
        await services.reviews.update_review(world.actor(world.clerk), review.id, rating=5)
    with pytest.raises(ValidationError):
        await services.reviews.update_review(reader, review.id, rating=9)

    updated = await services.reviews.update_review(reader, review.id, comment="Grew on me")
    assert (updated.rating, updated.comment, updated.user_id) == (2, "Grew on me", world.reader.id)

    await services.reviews.delete_review(reader, review.id)
    with pytest.raises(NotFoundError):
        await services.reviews.get_review(review.id)
    recreated = await services.reviews.create_review(reader, borrowing.id, 3)
    assert recreated.id != review.id


async def test_reviews_filter_by_book_and_library(services, repo, world, borrowing):
    await services.reviews.create_review(world.actor(world.reader), borrowing.id, 4)

    items, total = await services.reviews.list_reviews(ListReviewsOption(book_ids=[borrowing.book_id]))
    assert (total, items[0].rating) == (1, 4)
    _, total = await services.reviews.list_reviews(ListReviewsOption(library_ids=[world.other_library.id]))
    assert total == 0
    _, total = await services.reviews.list_reviews(ListReviewsOption(user_ids=[world.reader.id], rating=4))
    assert total == 1


async def test_reviews_of_deleted_borrowings_are_hidden(services, repo, world, borrowing, clock):
    await services.reviews.create_review(world.actor(world.reader), borrowing.id, 4)
    repo.borrowings[borrowing.id].deleted_at = clock()
    _, total = await services.reviews.list_reviews(ListReviewsOption())
    assert total == 0
