"""Durable jobs: record, enqueue, run, and report.

A job row moves strictly PENDING → PROCESSING → COMPLETED | FAILED. The
producer inserts the row before pushing the broker task, so a broker outage
leaves a visible PENDING job rather than a lost request. Workers call
``run_job`` with a processor; a job that is not PENDING is never run again,
retries always create a new job.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional
from uuid import UUID

from librarease.clients.base import FileStorage, TaskBroker
from librarease.entities import Actor, Job, JobStatus, JobType, ReferenceType
from librarease.queue.broker import QUEUE_DEFAULT, TaskPayload
from librarease.repository.base import ListJobsOption, ListStaffsOption, Repository
from librarease.services.authz import library_scope, require_library_staff, staff_of
from librarease.services.errors import (
    JobNotCompleted, JobStateError, NotFoundError, UnauthorizedError, UpstreamError,
)
from librarease.services.notifications import NotificationService

logger = logging.getLogger(__name__)

Processor = Callable[[Job], Awaitable[dict]]

# (title, message) per job type and outcome
_COMPLETION_MESSAGES = {
    JobType.EXPORT_BORROWINGS.value: (
        ReferenceType.EXPORT_BORROWING,
        ("Export Ready", "Your borrowings export is ready for download"),
        ("Export Failed", "Your borrowings export could not be generated"),
    ),
    JobType.IMPORT_BOOKS.value: (
        ReferenceType.IMPORT_BOOKS,
        ("Import Completed", "Your book import job has completed successfully."),
        ("Import Failed", "Your book import job has failed."),
    ),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobService:
    def __init__(
        self,
        repo: Repository,
        broker: TaskBroker,
        notifications: NotificationService,
        storage: Optional[FileStorage] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.broker = broker
        self.notifications = notifications
        self.storage = storage
        self.clock = clock

    # ── Producer ─────────────────────────────────────────────────

    async def create_job(
        self,
        actor: Actor,
        library_id: UUID,
        job_type: str,
        payload: dict,
        queue: str = QUEUE_DEFAULT,
    ) -> Job:
        staffs = await staff_of(self.repo, actor, library_id)
        if not staffs:
            raise UnauthorizedError(f"user {actor.user_id} is not staff of library {library_id}")

        job = await self.repo.create_job(Job(
            id=uuid.uuid4(),
            type=job_type,
            staff_id=staffs[0].id,
            status=JobStatus.PENDING,
            payload=payload,
        ))
        task = TaskPayload(job_id=str(job.id), type=job_type, payload=json.dumps(payload))
        try:
            await self.broker.enqueue(job_type, task.encode(), queue=queue)
        except UpstreamError as e:
            logger.warning(f"Job {job.id} ({job_type}) created but enqueue failed, left PENDING: {e}")
        else:
            logger.info(f"Job {job.id} ({job_type}) enqueued on '{queue}'")
        return job

    # ── Worker ───────────────────────────────────────────────────

    async def run_job(self, job_id: UUID, processor: Processor) -> Job:
        job = await self.repo.get_job(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        if job.status != JobStatus.PENDING:
            raise JobStateError(f"job {job.id} is {job.status.value}, expected PENDING")

        job.status = JobStatus.PROCESSING
        job.started_at = self.clock()
        await self.repo.update_job(job)
        logger.info(f"Job {job.id} ({job.type}) PROCESSING")

        try:
            result = await processor(job)
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e) or type(e).__name__
            job.finished_at = self.clock()
            await self.repo.update_job(job)
            logger.error(f"Job {job.id} ({job.type}) FAILED: {job.error}")
            self._notify(job)
            raise

        job.status = JobStatus.COMPLETED
        job.result = result
        job.finished_at = self.clock()
        await self.repo.update_job(job)
        logger.info(f"Job {job.id} ({job.type}) COMPLETED")
        self._notify(job)
        return job

    def _notify(self, job: Job) -> None:
        messages = _COMPLETION_MESSAGES.get(job.type)
        if messages is None or job.staff is None:
            return
        reference_type, ok, failed = messages
        title, message = ok if job.status == JobStatus.COMPLETED else failed
        self.notifications.notify_detached(job.staff.user_id, title, message, reference_type.value, job.id)

    # ── Access ───────────────────────────────────────────────────

    async def _check_access(self, actor: Actor, job: Job) -> None:
        if actor.is_global_admin:
            return
        if job.staff is None:
            raise UnauthorizedError(f"job {job.id} has no owning staff")
        await require_library_staff(self.repo, actor, job.staff.library_id)

    async def get_job(self, actor: Actor, job_id: UUID) -> Job:
        job = await self.repo.get_job(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        await self._check_access(actor, job)
        return job

    async def list_jobs(self, actor: Actor, opt: ListJobsOption) -> tuple[list[Job], int]:
        if not actor.is_global_admin:
            libraries = await library_scope(self.repo, actor, [])
            if not libraries:
                return [], 0
            staffs, _ = await self.repo.list_staffs(ListStaffsOption(library_ids=libraries, limit=10_000))
            allowed = {s.id for s in staffs}
            opt.staff_ids = [s for s in opt.staff_ids if s in allowed] if opt.staff_ids else list(allowed)
        return await self.repo.list_jobs(opt)

    async def delete_job(self, actor: Actor, job_id: UUID) -> None:
        job = await self.get_job(actor, job_id)
        await self.repo.delete_job(job.id)
        logger.info(f"Job {job.id} deleted")

    async def download_job_asset(self, actor: Actor, job_id: UUID) -> str:
        """Presigned URL for the file a completed job produced or consumed."""
        job = await self.get_job(actor, job_id)
        if job.status != JobStatus.COMPLETED:
            raise JobNotCompleted(job.id)

        if job.type == JobType.EXPORT_BORROWINGS.value:
            path = (job.result or {}).get("path")
        elif job.type == JobType.IMPORT_BOOKS.value:
            path = job.payload.get("path")
        else:
            path = None
        if not path:
            raise NotFoundError("job asset", job.id, code="job_asset_not_found")
        if self.storage is None:
            raise UpstreamError("file storage is not configured")
        return await self.storage.presigned_get_url(path)
