"""Borrowing lifecycle endpoints: borrow, return, lost, their undos, and export."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor
from librarease.repository.base import ListBorrowingsOption
from librarease.services.borrowing_export import ExportBorrowingsPayload

router = APIRouter()

SORTABLE = "^(created_at|borrowed_at|due_at)$"


class BorrowingCreate(BaseModel):
    book_id: UUID
    subscription_id: UUID
    staff_id: Optional[UUID] = None
    borrowed_at: Optional[datetime] = None
    due_at: Optional[datetime] = None


class ReturnRequest(BaseModel):
    staff_id: Optional[UUID] = None
    returned_at: Optional[datetime] = None
    fine: Optional[int] = None
    note: Optional[str] = None


class LostRequest(BaseModel):
    staff_id: Optional[UUID] = None
    reported_at: Optional[datetime] = None
    fine: int = 0
    note: str = ""


class ExportRequest(BaseModel):
    library_id: UUID
    is_active: bool = False
    is_overdue: bool = False
    is_returned: bool = False
    is_lost: bool = False
    borrowed_at_from: Optional[datetime] = None
    borrowed_at_to: Optional[datetime] = None


@router.get("/borrowings")
async def list_borrowings(
    book_id: Optional[list[UUID]] = Query(None),
    subscription_id: Optional[list[UUID]] = Query(None),
    user_id: Optional[list[UUID]] = Query(None),
    library_id: Optional[list[UUID]] = Query(None),
    staff_id: Optional[list[UUID]] = Query(None),
    is_active: bool = False,
    is_overdue: bool = False,
    is_returned: bool = False,
    is_lost: bool = False,
    borrowed_at_from: Optional[datetime] = None,
    borrowed_at_to: Optional[datetime] = None,
    sort_by: str = Query("created_at", pattern=SORTABLE),
    sort_in: str = Query("desc", pattern="^(asc|desc)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Filters combine with AND; non-staff callers only ever see their own loans."""
    opt = ListBorrowingsOption(
        book_ids=book_id or [],
        subscription_ids=subscription_id or [],
        user_ids=user_id or [],
        library_ids=library_id or [],
        staff_ids=staff_id or [],
        is_active=is_active,
        is_overdue=is_overdue,
        is_returned=is_returned,
        is_lost=is_lost,
        borrowed_at_from=borrowed_at_from,
        borrowed_at_to=borrowed_at_to,
        sort_by=sort_by,
        sort_desc=sort_in == "desc",
        include_book=True,
        include_subscription=True,
        include_staff=True,
        skip=skip,
        limit=limit,
    )
    items, total = await services.loans.list_borrowings(actor, opt)
    return envelope(items, total=total, skip=skip, limit=limit, now=services.clock())


@router.post("/borrowings", status_code=201)
async def create_borrowing(
    body: BorrowingCreate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    borrowing = await services.loans.create_borrowing(actor, **body.model_dump())
    return envelope(borrowing, now=services.clock())


@router.post("/borrowings/export", status_code=201)
async def export_borrowings(
    body: ExportRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Queue a CSV export; poll the returned job for completion."""
    job = await services.exports.export_borrowings(actor, ExportBorrowingsPayload(**body.model_dump()))
    return envelope(job)


@router.get("/borrowings/{borrowing_id}")
async def get_borrowing(
    borrowing_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.loans.get_borrowing(actor, borrowing_id), now=services.clock())


@router.post("/borrowings/{borrowing_id}/return")
async def return_borrowing(
    borrowing_id: UUID,
    body: ReturnRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    borrowing = await services.loans.return_borrowing(actor, borrowing_id, **body.model_dump())
    return envelope(borrowing, now=services.clock())


@router.delete("/borrowings/{borrowing_id}/return")
async def undo_return(
    borrowing_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.loans.undo_return(actor, borrowing_id), now=services.clock())


@router.post("/borrowings/{borrowing_id}/lost")
async def report_lost(
    borrowing_id: UUID,
    body: LostRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    borrowing = await services.loans.report_lost(actor, borrowing_id, **body.model_dump())
    return envelope(borrowing, now=services.clock())


@router.delete("/borrowings/{borrowing_id}/lost")
async def undo_lost(
    borrowing_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.loans.undo_lost(actor, borrowing_id), now=services.clock())
