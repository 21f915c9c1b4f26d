"""Loan lifecycle: borrow, return, report lost, and their undo operations.

Every mutation runs inside ``repo.atomic()``. Borrowing takes a row lock on
the book before counting active loans, so two concurrent attempts on the same
book serialize and the second one sees the first one's row. Returns and lost
reports lock the borrowing row itself.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

from librarease.entities import Actor, Borrowing, Lost, ReferenceType, Returning
from librarease.repository.base import ListBorrowingsOption, Repository
from librarease.services.authz import library_scope, require_library_staff, resolve_acting_staff
from librarease.services.errors import (
    ActiveLoanLimitReached, AlreadyLost, AlreadyReturned, BookNotAvailable,
    BookNotInLibrary, InvalidReportDate, InvalidReturnDate, MembershipExpired,
    NotFoundError, NotLatestBorrowing, NotLost, NotReturned, StaffNotInLibrary,
    UsageLimitReached, ValidationError,
)
from librarease.services.notifications import NotificationService

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_fine(due_at: datetime, returned_at: datetime, fine_per_day: int) -> int:
    """Whole overdue days times the daily rate; partial days are not charged."""
    if returned_at <= due_at:
        return 0
    return ((returned_at - due_at) // ONE_DAY) * fine_per_day


def _library_of(borrowing: Borrowing) -> UUID:
    if borrowing.book is not None:
        return borrowing.book.library_id
    return borrowing.subscription.membership.library_id


class LoanService:
    def __init__(
        self,
        repo: Repository,
        notifications: NotificationService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.notifications = notifications
        self.clock = clock

    # ── Borrow ───────────────────────────────────────────────────

    async def create_borrowing(
        self,
        actor: Actor,
        book_id: UUID,
        subscription_id: UUID,
        staff_id: Optional[UUID] = None,
        borrowed_at: Optional[datetime] = None,
        due_at: Optional[datetime] = None,
    ) -> Borrowing:
        sub = await self.repo.get_subscription(subscription_id)
        if sub is None:
            raise NotFoundError("subscription", subscription_id)
        library_id = sub.membership.library_id
        staff = await resolve_acting_staff(self.repo, actor, library_id, staff_id)
        now = self.clock()

        async with self.repo.atomic() as tx:
            book = await tx.lock_book(book_id)
            if book is None:
                raise NotFoundError("book", book_id)

            if sub.expires_at <= now:
                raise MembershipExpired(sub.id)

            if sub.usage_limit > 0:
                used = await tx.count_borrowings(ListBorrowingsOption(subscription_ids=[sub.id]))
                if used >= sub.usage_limit:
                    raise UsageLimitReached(sub.id, sub.usage_limit)

            active = await tx.count_borrowings(ListBorrowingsOption(subscription_ids=[sub.id], is_active=True))
            if active >= sub.active_loan_limit:
                raise ActiveLoanLimitReached(sub.id, sub.active_loan_limit)

            if await tx.count_borrowings(ListBorrowingsOption(book_ids=[book_id], is_active=True)) > 0:
                raise BookNotAvailable(book_id)
            latest, _ = await tx.list_borrowings(ListBorrowingsOption(book_ids=[book_id], limit=1))
            if latest and latest[0].lost is not None:
                raise BookNotAvailable(book_id, reason="lost")

            if book.library_id != library_id:
                raise BookNotInLibrary(book_id, library_id)

            if staff.library_id != library_id:
                raise StaffNotInLibrary(staff.id, library_id)

            borrowed_at = borrowed_at or now
            due_at = due_at or borrowed_at + timedelta(days=sub.loan_period)
            if due_at < borrowed_at:
                raise ValidationError("due_at must not be before borrowed_at")

            borrowing = await tx.create_borrowing(Borrowing(
                id=uuid.uuid4(),
                book_id=book_id,
                subscription_id=sub.id,
                staff_id=staff.id,
                borrowed_at=borrowed_at,
                due_at=due_at,
            ))

        borrowing.book = book
        borrowing.subscription = sub
        borrowing.staff = staff
        logger.info(f"Borrowing {borrowing.id} created: book={book_id} subscription={sub.id}")

        self.notifications.notify_detached(
            sub.user_id,
            "Book Borrowed",
            f"You have successfully borrowed {book.title}. "
            f"Please return it by {due_at.strftime('%d %b %Y')}. Happy reading!",
            ReferenceType.BORROWING.value,
            borrowing.id,
        )
        return borrowing

    # ── Return ───────────────────────────────────────────────────

    async def return_borrowing(
        self,
        actor: Actor,
        borrowing_id: UUID,
        staff_id: Optional[UUID] = None,
        returned_at: Optional[datetime] = None,
        fine: Optional[int] = None,
        note: Optional[str] = None,
    ) -> Borrowing:
        """Close an active borrowing.

        ``fine`` of None (or negative) means compute it from the overdue days;
        any non-negative value is stored as given.
        """
        async with self.repo.atomic() as tx:
            borrowing = await tx.get_borrowing(borrowing_id, for_update=True)
            if borrowing is None:
                raise NotFoundError("borrowing", borrowing_id)
            library_id = _library_of(borrowing)
            staff = await resolve_acting_staff(tx, actor, library_id, staff_id)

            if borrowing.returning is not None:
                raise AlreadyReturned(borrowing.id)
            if borrowing.lost is not None:
                raise AlreadyLost(borrowing.id)
            if staff.library_id != library_id:
                raise StaffNotInLibrary(staff.id, library_id)

            returned_at = returned_at or self.clock()
            if returned_at < borrowing.borrowed_at:
                raise InvalidReturnDate()

            if fine is None or fine < 0:
                fine = compute_fine(borrowing.due_at, returned_at, borrowing.subscription.fine_per_day)

            borrowing.returning = await tx.create_returning(Returning(
                id=uuid.uuid4(),
                borrowing_id=borrowing.id,
                staff_id=staff.id,
                returned_at=returned_at,
                fine=fine,
                note=note,
            ))

        logger.info(f"Borrowing {borrowing.id} returned: fine={fine}")
        self.notifications.notify_detached(
            borrowing.subscription.user_id,
            "Book Returned",
            f"Book {borrowing.book.title} has been returned",
            ReferenceType.BORROWING.value,
            borrowing.id,
        )
        return borrowing

    async def undo_return(self, actor: Actor, borrowing_id: UUID) -> Borrowing:
        async with self.repo.atomic() as tx:
            borrowing = await tx.get_borrowing(borrowing_id, for_update=True)
            if borrowing is None:
                raise NotFoundError("borrowing", borrowing_id)
            await require_library_staff(tx, actor, _library_of(borrowing))
            if borrowing.returning is None:
                raise NotReturned(borrowing.id)

            await self._ensure_reopenable(tx, borrowing)
            await tx.delete_returning(borrowing.id)
            borrowing.returning = None

        logger.info(f"Borrowing {borrowing.id} return undone")
        self.notifications.notify_detached(
            borrowing.subscription.user_id,
            "Undo Book Return",
            f"Return of book {borrowing.book.title} has been undone",
            ReferenceType.BORROWING.value,
            borrowing.id,
        )
        return borrowing

    # ── Lost ─────────────────────────────────────────────────────

    async def report_lost(
        self,
        actor: Actor,
        borrowing_id: UUID,
        staff_id: Optional[UUID] = None,
        reported_at: Optional[datetime] = None,
        fine: int = 0,
        note: str = "",
    ) -> Borrowing:
        async with self.repo.atomic() as tx:
            borrowing = await tx.get_borrowing(borrowing_id, for_update=True)
            if borrowing is None:
                raise NotFoundError("borrowing", borrowing_id)
            library_id = _library_of(borrowing)
            staff = await resolve_acting_staff(tx, actor, library_id, staff_id)

            if borrowing.returning is not None:
                raise AlreadyReturned(borrowing.id)
            if borrowing.lost is not None:
                raise AlreadyLost(borrowing.id)
            if staff.library_id != library_id:
                raise StaffNotInLibrary(staff.id, library_id)

            reported_at = reported_at or self.clock()
            if reported_at < borrowing.borrowed_at:
                raise InvalidReportDate()

            latest, _ = await tx.list_borrowings(ListBorrowingsOption(book_ids=[borrowing.book_id], limit=1))
            if not latest or latest[0].id != borrowing.id:
                raise NotLatestBorrowing(borrowing.id)

            borrowing.lost = await tx.create_lost(Lost(
                id=uuid.uuid4(),
                borrowing_id=borrowing.id,
                staff_id=staff.id,
                reported_at=reported_at,
                fine=max(fine, 0),
                note=note,
            ))

        logger.info(f"Borrowing {borrowing.id} reported lost")
        self.notifications.notify_detached(
            borrowing.subscription.user_id,
            "Book Reported Lost",
            f"Book {borrowing.book.title} has been reported lost.",
            ReferenceType.BORROWING.value,
            borrowing.id,
        )
        return borrowing

    async def undo_lost(self, actor: Actor, borrowing_id: UUID) -> Borrowing:
        async with self.repo.atomic() as tx:
            borrowing = await tx.get_borrowing(borrowing_id, for_update=True)
            if borrowing is None:
                raise NotFoundError("borrowing", borrowing_id)
            await require_library_staff(tx, actor, _library_of(borrowing))
            if borrowing.lost is None:
                raise NotLost(borrowing.id)

            await self._ensure_reopenable(tx, borrowing)
            await tx.delete_lost(borrowing.id)
            borrowing.lost = None

        logger.info(f"Borrowing {borrowing.id} lost report undone")
        return borrowing

    async def _ensure_reopenable(self, tx: Repository, borrowing: Borrowing) -> None:
        """A closed borrowing can only become active again while its book is free."""
        await tx.lock_book(borrowing.book_id)
        others = await tx.count_borrowings(ListBorrowingsOption(book_ids=[borrowing.book_id], is_active=True))
        if others > 0:
            raise BookNotAvailable(borrowing.book_id)

    # ── Reads ────────────────────────────────────────────────────

    async def get_borrowing(self, actor: Actor, borrowing_id: UUID) -> Borrowing:
        borrowing = await self.repo.get_borrowing(borrowing_id)
        if borrowing is None:
            raise NotFoundError("borrowing", borrowing_id)
        if actor.is_global_admin or borrowing.subscription.user_id == actor.user_id:
            return borrowing
        await require_library_staff(self.repo, actor, _library_of(borrowing))
        return borrowing

    async def list_borrowings(self, actor: Actor, opt: ListBorrowingsOption) -> tuple[list[Borrowing], int]:
        """Staff see their libraries; everyone else only their own loans."""
        scope = await library_scope(self.repo, actor, opt.library_ids)
        if scope is not None:
            opt.library_ids = scope
        elif not actor.is_global_admin:
            opt.user_ids = [actor.user_id]
        if opt.now is None:
            opt.now = self.clock()
        return await self.repo.list_borrowings(opt)
