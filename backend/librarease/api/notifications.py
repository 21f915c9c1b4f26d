"""Notification inbox, live stream and push token registration."""

import json
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope, serialize
from librarease.container import Services
from librarease.entities import Actor
from librarease.services.errors import UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter()


class PushTokenCreate(BaseModel):
    token: str
    provider: str = "fcm"


@router.get("/notifications")
async def list_notifications(
    is_unread: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    items, unread, total = await services.notifications.list(actor, skip=skip, limit=limit, is_unread=is_unread)
    return envelope(items, total=total, skip=skip, limit=limit, unread=unread)


@router.get("/notifications/stream")
async def stream_notifications(
    token: Optional[str] = None,
    user_id: Optional[str] = None,
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    services: Services = Depends(get_services),
):
    """Server-sent events, one ``data:`` frame per notification.

    EventSource cannot set headers, so ``token`` and ``user_id`` query
    parameters stand in for ``Authorization`` and ``X-User-Id``.
    """
    actor = await services.auth.resolve_actor(
        f"Bearer {token}" if token else authorization,
        user_id or x_user_id,
    )
    if services.hub is None:
        raise UpstreamError("notification stream is not available in this process")

    async def events():
        logger.info(f"Notification stream opened for user {actor.user_id}")
        try:
            async for notification in services.notifications.stream(actor):
                yield f"data: {json.dumps(serialize(notification))}\n\n"
        finally:
            logger.info(f"Notification stream closed for user {actor.user_id}")

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/notifications/read")
async def read_all_notifications(
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    count = await services.notifications.read_all(actor)
    return envelope({"read": count})


@router.post("/notifications/{notification_id}/read")
async def read_notification(
    notification_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Idempotent; reading someone else's notification is a silent no-op."""
    await services.notifications.read(actor, notification_id)
    return envelope(message="notification read")


@router.post("/push-tokens", status_code=201)
async def save_push_token(
    body: PushTokenCreate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    token = await services.notifications.save_push_token(actor, body.token, body.provider)
    return envelope(token)
