"""CSV → books import: preview, confirm, apply.

The CSV validator is a three-stage pipeline (parse → validate → collect)
joined by bounded queues under one TaskGroup, so a failure in any stage
cancels the other two. It depends only on the library's current catalog and
the CSV bytes, which is why preview and the worker can both run it and agree.
"""

import asyncio
import csv
import io
import logging
import re
import uuid
from dataclasses import asdict, dataclass, field
from typing import Optional
from uuid import UUID

from librarease.clients.base import FileStorage
from librarease.entities import Actor, Book, Job, JobType
from librarease.repository.base import ListBooksOption, Repository
from librarease.services.authz import require_library_staff
from librarease.services.errors import ValidationError
from librarease.services.jobs import JobService

logger = logging.getLogger(__name__)

STAGE_CAPACITY = 10
CATALOG_PAGE = 1000

STATUS_CREATE = "create"
STATUS_UPDATE = "update"
STATUS_INVALID = "invalid"

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_year(value: str) -> int:
    """Leading integer of ``value``; 0 when there is none."""
    match = _LEADING_INT.match(value or "")
    return int(match.group(1)) if match else 0


@dataclass
class RawRow:
    row_num: int
    id: str
    code: str
    title: str
    author: str
    year: int


@dataclass
class ValidatedRow:
    row_num: int
    id: Optional[UUID]
    code: str
    title: str
    author: str
    year: int
    status: str = STATUS_INVALID
    error: str = ""


@dataclass
class PreviewRow:
    id: Optional[str]
    code: str
    title: str
    author: str
    status: str
    error: Optional[str] = None


@dataclass
class ImportPreview:
    path: str = ""
    summary: dict = field(default_factory=lambda: {"created": 0, "updated": 0, "invalid": 0})
    rows: list[PreviewRow] = field(default_factory=list)


@dataclass
class ImportResult:
    total_rows: int = 0
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    created_books: list[str] = field(default_factory=list)
    updated_books: list[str] = field(default_factory=list)
    failed_rows: list[dict] = field(default_factory=list)

    def fail(self, row: ValidatedRow, error: str) -> None:
        self.failed_rows.append({"row_num": row.row_num, "code": row.code, "title": row.title, "error": error})


class BookImportService:
    def __init__(self, repo: Repository, storage: FileStorage, jobs: JobService):
        self.repo = repo
        self.storage = storage
        self.jobs = jobs

    # ── Validator ────────────────────────────────────────────────

    async def _catalog(self, library_id: UUID) -> list[Book]:
        books: list[Book] = []
        while True:
            page, total = await self.repo.list_books(ListBooksOption(
                library_ids=[library_id], skip=len(books), limit=CATALOG_PAGE,
            ))
            books.extend(page)
            if not page or len(books) >= total:
                return books

    async def validate_csv(self, library_id: UUID, data: bytes) -> list[ValidatedRow]:
        raw_rows: asyncio.Queue[Optional[RawRow]] = asyncio.Queue(maxsize=STAGE_CAPACITY)
        validated: asyncio.Queue[Optional[ValidatedRow]] = asyncio.Queue(maxsize=STAGE_CAPACITY)
        collected: list[ValidatedRow] = []

        async def parse() -> None:
            try:
                text = data.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise ValidationError(f"failed to read CSV: invalid UTF-8 at byte {e.start}") from e
            reader = csv.reader(io.StringIO(text))
            try:
                header = next(reader)
            except StopIteration:
                raise ValidationError("failed to read CSV header: file is empty") from None
            except csv.Error as e:
                raise ValidationError(f"failed to read CSV header: {e}") from e
            if len(header) < 5:
                raise ValidationError("invalid CSV format: expected columns (id, code, title, author, year)")

            row_num = 1
            while True:
                try:
                    record = next(reader)
                except StopIteration:
                    break
                except csv.Error as e:
                    raise ValidationError(f"failed to read CSV row {row_num}: {e}") from e
                if not record:
                    continue
                row_num += 1
                if len(record) != len(header):
                    raise ValidationError(f"failed to read CSV row {row_num}: wrong number of fields")
                await raw_rows.put(RawRow(
                    row_num=row_num,
                    id=record[0].strip(),
                    code=record[1].strip(),
                    title=record[2].strip(),
                    author=record[3].strip(),
                    year=parse_year(record[4]),
                ))
            await raw_rows.put(None)

        async def validate() -> None:
            books = await self._catalog(library_id)
            by_code = {b.code: b for b in books}
            by_id = {b.id: b for b in books}

            while (raw := await raw_rows.get()) is not None:
                await validated.put(await self._classify(raw, by_code, by_id))
            await validated.put(None)

        async def collect() -> None:
            while (row := await validated.get()) is not None:
                collected.append(row)

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(parse())
                tg.create_task(validate())
                tg.create_task(collect())
        except ExceptionGroup as eg:
            raise eg.exceptions[0]
        return collected

    async def _classify(self, raw: RawRow, by_code: dict[str, Book], by_id: dict[UUID, Book]) -> ValidatedRow:
        row = ValidatedRow(row_num=raw.row_num, id=None, code=raw.code,
                           title=raw.title, author=raw.author, year=raw.year)

        if raw.id:
            try:
                row.id = UUID(raw.id)
            except ValueError:
                row.error = "invalid UUID"
                return row

        if not raw.title or not raw.author:
            row.error = "missing required fields: title or author"
            return row

        if row.id is not None:
            book = by_id.get(row.id)
            if book is None:
                other = await self.repo.get_book(row.id)
                row.error = "book not in your library" if other is not None else "book ID not found"
                return row
            if (book.code, book.title, book.author, book.year) == (row.code, row.title, row.author, row.year):
                row.error = "no changes detected"
                return row
            row.status = STATUS_UPDATE
            return row

        if not raw.code:
            row.error = "code required for new book"
            return row
        if raw.code in by_code:
            row.error = f"code '{raw.code}' already exists"
            return row
        row.status = STATUS_CREATE
        return row

    # ── Preview ──────────────────────────────────────────────────

    async def preview_import(self, actor: Actor, library_id: UUID, filename: str, data: bytes) -> ImportPreview:
        await require_library_staff(self.repo, actor, library_id)
        name = filename.replace("\\", "/").rsplit("/", 1)[-1]
        if not name:
            raise ValidationError("filename is required")

        result = ImportPreview()
        lock = asyncio.Lock()

        async def upload() -> None:
            path = f"{library_id}/imports/{name}"
            await self.storage.upload_file(path, data)
            async with lock:
                result.path = path

        async def summarize() -> None:
            rows = await self.validate_csv(library_id, data)
            summary = {"created": 0, "updated": 0, "invalid": 0}
            preview_rows = []
            for v in rows:
                summary[{STATUS_CREATE: "created", STATUS_UPDATE: "updated"}.get(v.status, "invalid")] += 1
                preview_rows.append(PreviewRow(
                    id=str(v.id) if v.id else None,
                    code=v.code, title=v.title, author=v.author,
                    status=v.status, error=v.error or None,
                ))
            async with lock:
                result.summary = summary
                result.rows = preview_rows

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(upload())
                tg.create_task(summarize())
        except ExceptionGroup as eg:
            raise eg.exceptions[0]
        return result

    # ── Confirm & apply ──────────────────────────────────────────

    async def confirm_import(self, actor: Actor, library_id: UUID, path: str) -> Job:
        if not path.startswith(f"{library_id}/imports/"):
            raise ValidationError("path does not belong to this library's imports")
        return await self.jobs.create_job(
            actor, library_id, JobType.IMPORT_BOOKS.value,
            {"path": path, "library_id": str(library_id)},
        )

    async def process(self, job: Job) -> dict:
        library_id = UUID(job.payload["library_id"])
        data = await self.storage.read_file(job.payload["path"])
        rows = await self.validate_csv(library_id, data)
        existing = {b.id: b for b in await self._catalog(library_id)}

        result = ImportResult(total_rows=len(rows))
        for row in rows:
            if row.status == STATUS_INVALID:
                result.skipped_count += 1
                result.fail(row, row.error)
                continue
            try:
                if row.status == STATUS_CREATE:
                    book = await self.repo.create_book(Book(
                        id=uuid.uuid4(), library_id=library_id, code=row.code,
                        title=row.title, author=row.author, year=row.year,
                    ))
                    result.created_books.append(str(book.id))
                else:
                    current = existing[row.id]
                    book = await self.repo.update_book(Book(
                        id=row.id, library_id=library_id, code=row.code, title=row.title,
                        author=row.author, year=row.year, cover=current.cover,
                    ))
                    result.updated_books.append(str(book.id))
            except Exception as e:
                logger.warning(f"Import row {row.row_num} ({row.code}) failed: {e}")
                result.failed_count += 1
                result.fail(row, f"failed to {row.status}: {e}")
                continue
            result.success_count += 1

        logger.info(
            f"Import {job.id}: {result.success_count} ok, {result.failed_count} failed, "
            f"{result.skipped_count} skipped of {result.total_rows}"
        )
        return asdict(result)

    async def run(self, job_id: UUID) -> Job:
        return await self.jobs.run_job(job_id, self.process)
