"""Staff assignment endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor, StaffRole
from librarease.repository.base import ListStaffsOption

router = APIRouter()


class StaffCreate(BaseModel):
    library_id: UUID
    user_id: UUID
    name: Optional[str] = None      # defaults to the user's name
    role: StaffRole = StaffRole.STAFF


class StaffUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[StaffRole] = None


@router.get("/staffs")
async def list_staffs(
    library_id: Optional[list[UUID]] = Query(None),
    user_id: Optional[list[UUID]] = Query(None),
    name: Optional[str] = None,
    role: Optional[StaffRole] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    opt = ListStaffsOption(
        library_ids=library_id or [],
        user_ids=user_id or [],
        name=name,
        role=role.value if role else None,
        include_user=True,
        include_library=True,
        skip=skip,
        limit=limit,
    )
    items, total = await services.staffs.list_staffs(actor, opt)
    return envelope(items, total=total, skip=skip, limit=limit)


@router.post("/staffs", status_code=201)
async def create_staff(
    body: StaffCreate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.staffs.create_staff(actor, **body.model_dump()))


@router.get("/staffs/{staff_id}")
async def get_staff(
    staff_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.staffs.get_staff(staff_id))


@router.put("/staffs/{staff_id}")
async def update_staff(
    staff_id: UUID,
    body: StaffUpdate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.staffs.update_staff(actor, staff_id, **body.model_dump()))
