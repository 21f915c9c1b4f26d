"""Membership plan endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor
from librarease.repository.base import ListMembershipsOption

router = APIRouter()


class MembershipCreate(BaseModel):
    library_id: UUID
    name: str
    duration: int = Field(gt=0)
    active_loan_limit: int = Field(gt=0)
    loan_period: int = Field(gt=0)
    fine_per_day: int = 0
    price: int = 0
    usage_limit: int = 0


class MembershipUpdate(BaseModel):
    name: Optional[str] = None
    duration: Optional[int] = None
    active_loan_limit: Optional[int] = None
    loan_period: Optional[int] = None
    fine_per_day: Optional[int] = None
    price: Optional[int] = None
    usage_limit: Optional[int] = None


@router.get("/memberships")
async def list_memberships(
    library_id: Optional[list[UUID]] = Query(None),
    name: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    items, total = await services.memberships.list_memberships(
        ListMembershipsOption(library_ids=library_id or [], name=name, skip=skip, limit=limit)
    )
    return envelope(items, total=total, skip=skip, limit=limit)


@router.post("/memberships", status_code=201)
async def create_membership(
    body: MembershipCreate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Library admins only."""
    membership = await services.memberships.create_membership(actor, **body.model_dump())
    return envelope(membership)


@router.get("/memberships/{membership_id}")
async def get_membership(
    membership_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.memberships.get_membership(membership_id))


@router.put("/memberships/{membership_id}")
async def update_membership(
    membership_id: UUID,
    body: MembershipUpdate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Edits never touch existing subscriptions; they keep their snapshot."""
    membership = await services.memberships.update_membership(actor, membership_id, **body.model_dump())
    return envelope(membership)
