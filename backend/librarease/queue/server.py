"""Worker side of the Redis queue.

``WorkerServer`` runs ``concurrency`` consumer tasks. Each consumer polls the
queues in weighted random order, moves a task into this worker's active list,
runs the registered handler and removes it again. A heartbeat key marks the
worker alive; active lists whose owner has no heartbeat are requeued.
"""

import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis

from librarease.entities import JobType
from librarease.queue.broker import (
    KEY_PREFIX, QUEUE_LOW, QUEUE_WEIGHTS, TaskEnvelope, TaskPayload,
    active_key, dead_key, heartbeat_key, pending_key, queue_order,
)

logger = logging.getLogger(__name__)

Handler = Callable[[TaskPayload], Awaitable[None]]

HEARTBEAT_TTL = 30


class SkipRetry(Exception):
    """Raised by a handler when retrying the task can never succeed."""


class ServeMux:
    """Maps task types to handlers."""

    def __init__(self):
        self._handlers: dict[str, Handler] = {}

    def handle(self, task_type: str, handler: Handler) -> None:
        self._handlers[task_type] = handler

    def get(self, task_type: str) -> Optional[Handler]:
        return self._handlers.get(task_type)


class WorkerServer:
    """Polls the queues and dispatches tasks to handlers."""

    def __init__(
        self,
        client: redis.Redis,
        mux: ServeMux,
        concurrency: int = 10,
        max_retry: int = 3,
        poll_interval: float = 1.0,
        weights: Optional[dict[str, int]] = None,
    ):
        self.client = client
        self.mux = mux
        self.concurrency = concurrency
        self.max_retry = max_retry
        self.poll_interval = poll_interval
        self.weights = weights or QUEUE_WEIGHTS
        self.worker_id = uuid.uuid4().hex[:12]
        self._stopping = asyncio.Event()
        self._periodic: list[tuple[str, float, Callable[[], Awaitable[None]]]] = []

    def every(self, name: str, interval: float, func: Callable[[], Awaitable[None]]) -> None:
        """Register a periodic coroutine run alongside the consumers."""
        self._periodic.append((name, interval, func))

    def stop(self) -> None:
        logger.info("Worker stop requested, finishing in-flight tasks")
        self._stopping.set()

    async def run(self) -> None:
        await self._beat()
        await self.recover_orphans()
        logger.info(f"Worker {self.worker_id} started: concurrency={self.concurrency}, queues={self.weights}")

        async with asyncio.TaskGroup() as tg:
            tg.create_task(self._heartbeat_loop())
            for name, interval, func in self._periodic:
                tg.create_task(self._periodic_loop(name, interval, func))
            for i in range(self.concurrency):
                tg.create_task(self._consume(i))

        await self.client.delete(heartbeat_key(self.worker_id))
        logger.info(f"Worker {self.worker_id} stopped")

    # ── Liveness ─────────────────────────────────────────────────

    async def _beat(self) -> None:
        await self.client.set(heartbeat_key(self.worker_id), int(time.time()), ex=HEARTBEAT_TTL)

    async def _heartbeat_loop(self) -> None:
        while not self._stopping.is_set():
            await self._sleep(HEARTBEAT_TTL / 3)
            try:
                await self._beat()
            except redis.RedisError as e:
                logger.error(f"Worker {self.worker_id}: heartbeat failed: {e}")

    async def recover_orphans(self) -> int:
        """Requeue tasks left in active lists of workers that stopped beating."""
        recovered = 0
        async for key in self.client.scan_iter(match=f"{KEY_PREFIX}:active:*"):
            _, _, queue, owner = key.split(":", 3)
            if owner == self.worker_id or await self.client.exists(heartbeat_key(owner)):
                continue
            while await self.client.lmove(key, pending_key(queue), "RIGHT", "LEFT") is not None:
                recovered += 1
        if recovered:
            logger.warning(f"Requeued {recovered} orphaned task(s)")
        return recovered

    # ── Consumers ────────────────────────────────────────────────

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _dequeue(self) -> Optional[tuple[str, str]]:
        for queue in queue_order(self.weights):
            raw = await self.client.lmove(
                pending_key(queue), active_key(queue, self.worker_id), "RIGHT", "LEFT"
            )
            if raw is not None:
                return queue, raw
        return None

    async def _consume(self, slot: int) -> None:
        while not self._stopping.is_set():
            try:
                item = await self._dequeue()
            except redis.RedisError as e:
                logger.error(f"Consumer {slot}: dequeue failed: {e}")
                await self._sleep(self.poll_interval)
                continue
            if item is None:
                await self._sleep(self.poll_interval)
                continue
            queue, raw = item
            await self.process(queue, raw)

    async def process(self, queue: str, raw: str) -> None:
        """Run one task already sitting in this worker's active list.

        If Redis fails while settling the task it stays in the active list
        and is requeued by orphan recovery once this worker stops beating.
        """
        envelope = TaskEnvelope.loads(raw)
        active = active_key(queue, self.worker_id)
        handler = self.mux.get(envelope.type)

        error: Optional[Exception] = None
        retryable = True
        try:
            if handler is None:
                raise SkipRetry(f"no handler for task type {envelope.type}")
            await handler(TaskPayload.decode(envelope.payload.encode()))
        except SkipRetry as e:
            logger.warning(f"Task {envelope.id} ({envelope.type}) not retried: {e}")
            error, retryable = e, False
        except Exception as e:
            error = e

        try:
            if error is None:
                await self.client.lrem(active, 1, raw)
            elif retryable and envelope.retried < self.max_retry:
                envelope.retried += 1
                logger.warning(
                    f"Task {envelope.id} ({envelope.type}) failed, retry "
                    f"{envelope.retried}/{self.max_retry}: {error}"
                )
                async with self.client.pipeline(transaction=True) as pipe:
                    pipe.lrem(active, 1, raw)
                    pipe.lpush(pending_key(queue), envelope.dumps())
                    await pipe.execute()
            else:
                if retryable:
                    logger.error(f"Task {envelope.id} ({envelope.type}) exhausted retries: {error}")
                await self._archive(active, queue, raw)
        except redis.RedisError as e:
            logger.error(f"Task {envelope.id} ({envelope.type}) could not be settled, left in {active}: {e}")

    async def _archive(self, active: str, queue: str, raw: str) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.lrem(active, 1, raw)
            pipe.lpush(dead_key(queue), raw)
            await pipe.execute()

    # ── Periodic tasks ───────────────────────────────────────────

    async def _periodic_loop(self, name: str, interval: float, func: Callable[[], Awaitable[None]]) -> None:
        while not self._stopping.is_set():
            try:
                await func()
            except Exception:
                logger.exception(f"Periodic task {name} failed")
            await self._sleep(interval)


def overdue_scheduler(client: redis.Redis, broker, interval: int) -> Callable[[], Awaitable[None]]:
    """Enqueue ``check:overdue`` at most once per interval across all workers."""
    async def tick() -> None:
        slot = int(time.time()) // interval
        lease = f"{KEY_PREFIX}:scheduler:{JobType.CHECK_OVERDUE.value}:{slot}"
        if not await client.set(lease, "1", nx=True, ex=interval):
            return
        payload = TaskPayload(job_id=None, type=JobType.CHECK_OVERDUE.value, payload="{}")
        await broker.enqueue(JobType.CHECK_OVERDUE.value, payload.encode(), queue=QUEUE_LOW)
        logger.info(f"Scheduled {JobType.CHECK_OVERDUE.value} for slot {slot}")

    return tick
