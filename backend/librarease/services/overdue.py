"""Periodic overdue / due-soon reminders for active borrowings.

Each run covers the window that elapsed since the previous run, so with a
scheduler firing once per interval every borrowing is reminded exactly once
per event.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from librarease.entities import Borrowing, ReferenceType
from librarease.repository.base import ListBorrowingsOption, Repository
from librarease.services.notifications import NotificationService

logger = logging.getLogger(__name__)

DUE_SOON_LEAD = timedelta(days=1)
PAGE_SIZE = 200


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OverdueService:
    def __init__(
        self,
        repo: Repository,
        notifications: NotificationService,
        interval_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.notifications = notifications
        self.interval = timedelta(seconds=interval_seconds)
        self.clock = clock

    async def _active_due_between(self, after: datetime, until: datetime) -> list[Borrowing]:
        items: list[Borrowing] = []
        while True:
            page, total = await self.repo.list_borrowings(ListBorrowingsOption(
                is_active=True,
                due_at_from=after,
                due_at_to=until,
                include_book=True,
                include_subscription=True,
                sort_by="due_at",
                sort_desc=False,
                skip=len(items),
                limit=PAGE_SIZE,
            ))
            items.extend(page)
            if not page or len(items) >= total:
                return items

    async def check_overdue(self) -> dict:
        now = self.clock()

        overdue = await self._active_due_between(now - self.interval, now)
        for b in overdue:
            await self.notifications.create(
                b.subscription.user_id,
                "Book Overdue",
                f"{b.book.title} was due on {b.due_at:%d %b %Y}. Please return it as soon as possible.",
                ReferenceType.BORROWING.value,
                b.id,
            )

        soon = now + DUE_SOON_LEAD
        due_soon = await self._active_due_between(soon - self.interval, soon)
        for b in due_soon:
            await self.notifications.create(
                b.subscription.user_id,
                "Book Due Soon",
                f"{b.book.title} is due on {b.due_at:%d %b %Y}. Please return or extend it in time.",
                ReferenceType.BORROWING.value,
                b.id,
            )

        logger.info(f"Overdue check: {len(overdue)} overdue, {len(due_soon)} due soon")
        return {"overdue": len(overdue), "due_soon": len(due_soon)}
