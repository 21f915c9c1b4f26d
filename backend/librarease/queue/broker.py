"""Redis-backed task broker.

Layout (all keys share the ``librarease:`` namespace):

- ``queue:{name}``              pending tasks, LPUSH in / RPOP out
- ``active:{name}:{worker}``    tasks a worker is currently running
- ``dead:{name}``               tasks that exhausted their retries
- ``worker:{worker}``           heartbeat key with a short TTL

Each list element is a JSON envelope carrying the task type, the task payload
(the bytes handed to ``enqueue``) and retry bookkeeping.
"""

import json
import logging
import random
import uuid
from dataclasses import asdict, dataclass
from typing import Optional

import redis.asyncio as redis

from librarease.clients.base import TaskBroker
from librarease.services.errors import UpstreamError

logger = logging.getLogger(__name__)

KEY_PREFIX = "librarease"

QUEUE_CRITICAL = "critical"
QUEUE_DEFAULT = "default"
QUEUE_LOW = "low"

QUEUE_WEIGHTS = {QUEUE_CRITICAL: 6, QUEUE_DEFAULT: 3, QUEUE_LOW: 1}


def pending_key(queue: str) -> str:
    return f"{KEY_PREFIX}:queue:{queue}"


def active_key(queue: str, worker_id: str) -> str:
    return f"{KEY_PREFIX}:active:{queue}:{worker_id}"


def dead_key(queue: str) -> str:
    return f"{KEY_PREFIX}:dead:{queue}"


def heartbeat_key(worker_id: str) -> str:
    return f"{KEY_PREFIX}:worker:{worker_id}"


# ── Wire formats ─────────────────────────────────────────────────

@dataclass
class TaskPayload:
    """What every job task carries: ``{"job_id", "type", "payload": "<json string>"}``."""
    job_id: Optional[str]
    type: str
    payload: str = "{}"

    def encode(self) -> bytes:
        return json.dumps({"job_id": self.job_id, "type": self.type, "payload": self.payload}).encode()

    @classmethod
    def decode(cls, data: bytes) -> "TaskPayload":
        raw = json.loads(data)
        return cls(job_id=raw.get("job_id"), type=raw["type"], payload=raw.get("payload") or "{}")


@dataclass
class TaskEnvelope:
    id: str
    type: str
    queue: str
    payload: str
    retried: int = 0

    def dumps(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def loads(cls, raw: str) -> "TaskEnvelope":
        return cls(**json.loads(raw))


def queue_order(weights: dict[str, int], rng: Optional[random.Random] = None) -> list[str]:
    """Weighted, non-strict priority: each poll visits queues in a random order
    where a queue's chance of coming first is proportional to its weight."""
    rng = rng or random
    pool = [name for name, weight in weights.items() for _ in range(weight)]
    rng.shuffle(pool)
    seen: list[str] = []
    for name in pool:
        if name not in seen:
            seen.append(name)
    return seen


def create_redis(url: str, password: Optional[str] = None) -> redis.Redis:
    kwargs = {
        "decode_responses": True,
        "socket_connect_timeout": 5,
        "health_check_interval": 30,
    }
    if password:
        kwargs["password"] = password
    return redis.from_url(url, **kwargs)


class RedisBroker(TaskBroker):
    """Producer side of the queue."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_settings(cls, settings) -> "RedisBroker":
        return cls(create_redis(settings.redis_url, settings.redis_password))

    async def enqueue(self, task_type: str, payload: bytes, queue: str = QUEUE_DEFAULT) -> str:
        if queue not in QUEUE_WEIGHTS:
            raise ValueError(f"unknown queue: {queue}")
        envelope = TaskEnvelope(
            id=str(uuid.uuid4()),
            type=task_type,
            queue=queue,
            payload=payload.decode(),
        )
        try:
            await self.client.lpush(pending_key(queue), envelope.dumps())
        except redis.RedisError as e:
            raise UpstreamError(f"enqueue {task_type} failed: {e}") from e
        logger.debug(f"Enqueued task {envelope.id} type={task_type} queue={queue}")
        return envelope.id

    async def close(self) -> None:
        await self.client.aclose()
