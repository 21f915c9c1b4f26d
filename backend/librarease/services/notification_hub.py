"""Postgres LISTEN/NOTIFY fan-out.

A trigger on ``notifications`` publishes every inserted row as JSON on the
``new_notification`` channel. The hub holds one dedicated asyncpg connection
listening on that channel and copies each decoded notification into every
subscriber queue without ever blocking: a full queue just loses that
notification.
"""

import asyncio
import json
import logging
import threading
from datetime import datetime
from typing import AsyncIterator, Optional
from uuid import UUID

import asyncpg

from librarease.database import NOTIFICATION_CHANNEL
from librarease.entities import Notification

logger = logging.getLogger(__name__)

SUBSCRIBER_CAPACITY = 10


def _ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def parse_payload(payload: str) -> Notification:
    """Decode a ``row_to_json(notifications)`` payload."""
    raw = json.loads(payload)
    return Notification(
        id=UUID(raw["id"]),
        user_id=UUID(raw["user_id"]),
        title=raw.get("title") or "",
        message=raw.get("message") or "",
        reference_type=raw.get("reference_type"),
        reference_id=UUID(raw["reference_id"]) if raw.get("reference_id") else None,
        read_at=_ts(raw.get("read_at")),
        created_at=_ts(raw.get("created_at")),
        updated_at=_ts(raw.get("updated_at")),
    )


class NotificationHub:
    """Process-wide singleton owned by the API server."""

    def __init__(self, dsn: Optional[str] = None, channel: str = NOTIFICATION_CHANNEL):
        self.dsn = dsn
        self.channel = channel
        self._conn: Optional[asyncpg.Connection] = None
        self._lock = threading.Lock()
        self._subscribers: set[asyncio.Queue] = set()

    @property
    def is_listening(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    async def start(self) -> None:
        if self.dsn is None:
            raise RuntimeError("NotificationHub.start() needs a DSN")
        self._conn = await asyncpg.connect(self.dsn)
        await self._conn.add_listener(self.channel, self._on_notify)
        logger.info(f"Notification hub listening on '{self.channel}'")

    async def stop(self) -> None:
        if self._conn is None:
            return
        try:
            await self._conn.remove_listener(self.channel, self._on_notify)
        finally:
            await self._conn.close()
            self._conn = None
        logger.info("Notification hub stopped")

    def _on_notify(self, connection, pid, channel, payload) -> None:
        self.dispatch_payload(payload)

    # ── Fan-out ──────────────────────────────────────────────────

    def dispatch_payload(self, payload: str) -> None:
        try:
            notification = parse_payload(payload)
        except (ValueError, KeyError) as e:
            logger.error(f"Discarding malformed notification payload: {e}")
            return
        self.broadcast(notification)

    def broadcast(self, notification: Notification) -> None:
        with self._lock:
            for queue in self._subscribers:
                try:
                    queue.put_nowait(notification)
                except asyncio.QueueFull:
                    logger.warning(
                        f"Subscriber queue full, dropping notification {notification.id} "
                        f"for user {notification.user_id}"
                    )

    def subscribe(self, maxsize: int = SUBSCRIBER_CAPACITY) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers.discard(queue)

    async def stream(self, user_id: UUID) -> AsyncIterator[Notification]:
        """Yield the user's notifications until the consumer goes away."""
        queue = self.subscribe()
        try:
            while True:
                notification = await queue.get()
                if notification.user_id == user_id:
                    yield notification
        finally:
            self.unsubscribe(queue)
