"""Borrowings → CSV export job."""

import csv
import io
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional
from uuid import UUID

from librarease.clients.base import FileStorage
from librarease.entities import Actor, Borrowing, Job, JobType
from librarease.repository.base import ListBorrowingsOption, Repository
from librarease.services.jobs import JobService

logger = logging.getLogger(__name__)

EXPORT_HEADER = ["User", "Book", "Status", "Borrowed At", "Due At", "Returned At", "Lost At"]
TIME_FORMAT = "%Y-%m-%d %H:%M"
PAGE_SIZE = 500


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fmt(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.astimezone(timezone.utc).strftime(TIME_FORMAT)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ExportBorrowingsPayload:
    library_id: UUID
    is_active: bool = False
    is_overdue: bool = False
    is_returned: bool = False
    is_lost: bool = False
    borrowed_at_from: Optional[datetime] = None
    borrowed_at_to: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["library_id"] = str(self.library_id)
        data["borrowed_at_from"] = self.borrowed_at_from.isoformat() if self.borrowed_at_from else None
        data["borrowed_at_to"] = self.borrowed_at_to.isoformat() if self.borrowed_at_to else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ExportBorrowingsPayload":
        return cls(
            library_id=UUID(data["library_id"]),
            is_active=bool(data.get("is_active")),
            is_overdue=bool(data.get("is_overdue")),
            is_returned=bool(data.get("is_returned")),
            is_lost=bool(data.get("is_lost")),
            borrowed_at_from=_parse_ts(data.get("borrowed_at_from")),
            borrowed_at_to=_parse_ts(data.get("borrowed_at_to")),
        )


def generate_csv(borrowings: Iterable[Borrowing], now: datetime) -> bytes:
    """Render borrowings (with book and subscription.user loaded) as CSV."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(EXPORT_HEADER)
    for b in borrowings:
        user = b.subscription.user if b.subscription else None
        writer.writerow([
            user.name if user else "",
            b.book.title if b.book else "",
            b.status(now),
            _fmt(b.borrowed_at),
            _fmt(b.due_at),
            _fmt(b.returning.returned_at if b.returning else None),
            _fmt(b.lost.reported_at if b.lost else None),
        ])
    return buf.getvalue().encode()


class BorrowingExportService:
    def __init__(
        self,
        repo: Repository,
        storage: FileStorage,
        jobs: JobService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.storage = storage
        self.jobs = jobs
        self.clock = clock

    async def export_borrowings(self, actor: Actor, payload: ExportBorrowingsPayload) -> Job:
        return await self.jobs.create_job(
            actor, payload.library_id, JobType.EXPORT_BORROWINGS.value, payload.to_dict(),
        )

    async def _collect(self, payload: ExportBorrowingsPayload, now: datetime) -> list[Borrowing]:
        items: list[Borrowing] = []
        skip = 0
        while True:
            page, total = await self.repo.list_borrowings(ListBorrowingsOption(
                library_ids=[payload.library_id],
                is_active=payload.is_active,
                is_overdue=payload.is_overdue,
                is_returned=payload.is_returned,
                is_lost=payload.is_lost,
                borrowed_at_from=payload.borrowed_at_from,
                borrowed_at_to=payload.borrowed_at_to,
                now=now,
                skip=skip,
                limit=PAGE_SIZE,
                include_book=True,
                include_subscription=True,
            ))
            items.extend(page)
            skip += len(page)
            if not page or skip >= total:
                return items

    async def process(self, job: Job) -> dict:
        payload = ExportBorrowingsPayload.from_dict(job.payload)
        now = self.clock()
        borrowings = await self._collect(payload, now)
        data = generate_csv(borrowings, now)

        name = f"borrowings-export-{now.astimezone(timezone.utc):%Y%m%d-%H%M%S}.csv"
        path = f"{payload.library_id}/exports/{name}"
        await self.storage.upload_file(path, data)
        logger.info(f"Exported {len(borrowings)} borrowing(s) to {path}")
        return {"path": path, "name": name, "size": len(data)}

    async def run(self, job_id: UUID) -> Job:
        return await self.jobs.run_job(job_id, self.process)
