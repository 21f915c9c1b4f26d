"""Notification persistence, push delivery and per-user reads."""

import logging
import uuid
from contextlib import aclosing
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional
from uuid import UUID

from librarease.clients.base import InvalidTokens
from librarease.clients.push import PushDispatcher
from librarease.entities import Actor, Notification, PushProvider, PushToken
from librarease.repository.base import ListNotificationsOption, Repository
from librarease.services.background import BackgroundTasks
from librarease.services.errors import UpstreamError, ValidationError
from librarease.services.notification_hub import NotificationHub

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationService:
    def __init__(
        self,
        repo: Repository,
        push: Optional[PushDispatcher] = None,
        hub: Optional[NotificationHub] = None,
        background: Optional[BackgroundTasks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.push = push
        self.hub = hub
        self.background = background or BackgroundTasks()
        self.clock = clock

    async def create(
        self,
        user_id: UUID,
        title: str,
        message: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[UUID] = None,
    ) -> Notification:
        """Persist the notification (the DB trigger fans it out), then push it."""
        notification = await self.repo.create_notification(Notification(
            id=uuid.uuid4(),
            user_id=user_id,
            title=title,
            message=message,
            reference_type=reference_type,
            reference_id=reference_id,
        ))
        await self._push(notification)
        return notification

    def notify_detached(self, user_id: UUID, title: str, message: str,
                        reference_type: Optional[str] = None,
                        reference_id: Optional[UUID] = None) -> None:
        self.background.spawn(
            self.create(user_id, title, message, reference_type, reference_id),
            name=f"notify:{title}",
        )

    async def _push(self, notification: Notification) -> None:
        if self.push is None:
            return
        tokens = await self.repo.list_push_tokens(notification.user_id)
        if not tokens:
            return
        data = {"notification_id": str(notification.id)}
        if notification.reference_type:
            data["reference_type"] = notification.reference_type
        if notification.reference_id:
            data["reference_id"] = str(notification.reference_id)
        try:
            await self.push.send(tokens, notification.title, notification.message, data)
        except InvalidTokens as e:
            logger.warning(f"Removing {len(e.tokens)} invalid push token(s) for user {notification.user_id}")
            await self.repo.delete_push_tokens(notification.user_id, e.tokens)
        except UpstreamError as e:
            logger.warning(f"Push delivery failed for notification {notification.id}: {e}")

    # ── Reads ────────────────────────────────────────────────────

    async def list(self, actor: Actor, skip: int = 0, limit: int = 20,
                   is_unread: Optional[bool] = None) -> tuple[list[Notification], int, int]:
        return await self.repo.list_notifications(ListNotificationsOption(
            user_id=actor.user_id, is_unread=is_unread, skip=skip, limit=limit,
        ))

    async def read(self, actor: Actor, notification_id: UUID) -> None:
        await self.repo.read_notification(notification_id, actor.user_id, self.clock())

    async def read_all(self, actor: Actor) -> int:
        return await self.repo.read_all_notifications(actor.user_id, self.clock())

    async def stream(self, actor: Actor) -> AsyncIterator[Notification]:
        if self.hub is None:
            raise UpstreamError("notification stream is not available in this process")
        async with aclosing(self.hub.stream(actor.user_id)) as notifications:
            async for notification in notifications:
                yield notification

    async def save_push_token(self, actor: Actor, token: str, provider: str) -> PushToken:
        if not token:
            raise ValidationError("token is required")
        try:
            push_provider = PushProvider(provider)
        except ValueError as e:
            raise ValidationError(f"unknown push provider: {provider}") from e
        return await self.repo.save_push_token(PushToken(
            id=uuid.uuid4(),
            user_id=actor.user_id,
            token=token,
            provider=push_provider,
            last_seen=self.clock(),
        ))
