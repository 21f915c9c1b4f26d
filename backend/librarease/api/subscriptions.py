"""Subscription endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor
from librarease.repository.base import ListSubscriptionsOption

router = APIRouter()


class SubscriptionCreate(BaseModel):
    user_id: UUID
    membership_id: UUID


class SubscriptionUpdate(BaseModel):
    expires_at: Optional[datetime] = None
    loan_period: Optional[int] = None
    fine_per_day: Optional[int] = None
    active_loan_limit: Optional[int] = None
    usage_limit: Optional[int] = None
    amount: Optional[int] = None


@router.get("/subscriptions")
async def list_subscriptions(
    user_id: Optional[list[UUID]] = Query(None),
    membership_id: Optional[list[UUID]] = Query(None),
    library_id: Optional[list[UUID]] = Query(None),
    is_active: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    opt = ListSubscriptionsOption(
        user_ids=user_id or [],
        membership_ids=membership_id or [],
        library_ids=library_id or [],
        is_active=is_active,
        include_user=True,
        include_membership=True,
        skip=skip,
        limit=limit,
    )
    items, total = await services.subscriptions.list_subscriptions(actor, opt)
    return envelope(items, total=total, skip=skip, limit=limit)


@router.post("/subscriptions", status_code=201)
async def create_subscription(
    body: SubscriptionCreate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Snapshot the plan's terms onto a new subscription."""
    sub = await services.subscriptions.create_subscription(actor, body.user_id, body.membership_id)
    return envelope(sub)


@router.get("/subscriptions/{subscription_id}")
async def get_subscription(
    subscription_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.subscriptions.get_subscription(actor, subscription_id))


@router.put("/subscriptions/{subscription_id}")
async def update_subscription(
    subscription_id: UUID,
    body: SubscriptionUpdate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    sub = await services.subscriptions.update_subscription(actor, subscription_id, **body.model_dump())
    return envelope(sub)
