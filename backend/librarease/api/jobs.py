"""Background job endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor
from librarease.repository.base import ListJobsOption

router = APIRouter()


@router.get("/jobs")
async def list_jobs(
    staff_id: Optional[list[UUID]] = Query(None),
    type: Optional[list[str]] = Query(None),
    status: Optional[list[str]] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    opt = ListJobsOption(
        staff_ids=staff_id or [], types=type or [], statuses=status or [],
        include_staff=True, skip=skip, limit=limit,
    )
    items, total = await services.jobs.list_jobs(actor, opt)
    return envelope(items, total=total, skip=skip, limit=limit)


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.jobs.get_job(actor, job_id))


@router.get("/jobs/{job_id}/download")
async def download_job_asset(
    job_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Presigned URL for the export file, or the source CSV of an import."""
    url = await services.jobs.download_job_asset(actor, job_id)
    return envelope({"url": url})


@router.delete("/jobs/{job_id}")
async def delete_job(
    job_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    await services.jobs.delete_job(actor, job_id)
    return envelope(message="job deleted")
