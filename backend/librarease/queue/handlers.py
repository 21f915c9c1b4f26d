"""Task handlers: parse the payload, call one service operation."""

import logging
from uuid import UUID

from librarease.container import Services
from librarease.entities import JobType
from librarease.queue.broker import TaskPayload
from librarease.queue.server import ServeMux, SkipRetry
from librarease.services.errors import JobStateError, NotFoundError

logger = logging.getLogger(__name__)


def _job_id(task: TaskPayload) -> UUID:
    if not task.job_id:
        raise SkipRetry(f"{task.type} task without job_id")
    try:
        return UUID(task.job_id)
    except ValueError as e:
        raise SkipRetry(f"invalid job_id {task.job_id!r}") from e


def build_mux(services: Services) -> ServeMux:
    mux = ServeMux()

    async def export_borrowings(task: TaskPayload) -> None:
        try:
            await services.exports.run(_job_id(task))
        except (JobStateError, NotFoundError) as e:
            raise SkipRetry(str(e)) from e

    async def import_books(task: TaskPayload) -> None:
        try:
            await services.imports.run(_job_id(task))
        except (JobStateError, NotFoundError) as e:
            raise SkipRetry(str(e)) from e

    async def check_overdue(task: TaskPayload) -> None:
        await services.overdue.check_overdue()

    mux.handle(JobType.EXPORT_BORROWINGS.value, export_borrowings)
    mux.handle(JobType.IMPORT_BOOKS.value, import_books)
    mux.handle(JobType.CHECK_OVERDUE.value, check_overdue)
    return mux
