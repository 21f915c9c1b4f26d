"""Abstract interfaces for the side-effect boundaries of the service.

These define the contracts for object storage, the identity provider, push
delivery and the task broker. Each has one production adapter in this package;
tests swap in in-memory fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from librarease.entities import PushProvider


# ── Data Transfer Objects ────────────────────────────────────────

@dataclass
class PushMessage:
    """A push notification addressed to a set of device tokens."""
    title: str
    body: str
    tokens: list[str] = field(default_factory=list)
    data: dict[str, str] = field(default_factory=dict)


@dataclass
class PushResult:
    sent: int = 0
    invalid_tokens: list[str] = field(default_factory=list)


class InvalidTokens(Exception):
    """Raised by a sender when the provider rejected some tokens outright."""

    def __init__(self, tokens: list[str]):
        super().__init__(f"{len(tokens)} invalid push token(s)")
        self.tokens = tokens


# ── Abstract Interfaces ──────────────────────────────────────────

class FileStorage(ABC):
    """Interface for the object store (S3, MinIO)."""

    @abstractmethod
    async def upload_file(self, path: str, data: bytes) -> None:
        """Write ``data`` at ``path`` relative to the bucket root."""
        ...

    @abstractmethod
    async def read_file(self, path: str) -> bytes:
        """Read a whole object."""
        ...

    @abstractmethod
    async def presigned_get_url(self, path: str) -> str:
        """Time-limited download URL."""
        ...

    @abstractmethod
    async def temp_upload_url(self, name: str, user_id: Optional[str] = None) -> tuple[str, str]:
        """Reserve a temp path and return ``(path, presigned PUT url)``."""
        ...

    @abstractmethod
    async def move_temp_to_public(self, source: str, dest_dir: str) -> str:
        """Move a temp object under the public root. Returns the new path."""
        ...


class IdentityProvider(ABC):
    """Interface for the external credential store."""

    @abstractmethod
    async def create_user(self, email: str, password: str, name: str) -> str:
        """Create an account and return its provider uid."""
        ...

    @abstractmethod
    async def verify_id_token(self, token: str) -> str:
        """Verify a bearer token and return the provider uid."""
        ...

    @abstractmethod
    async def set_custom_claims(self, uid: str, claims: dict) -> None:
        ...


class PushSender(ABC):
    """Delivers messages for one push provider."""

    provider: PushProvider

    @abstractmethod
    async def send(self, message: PushMessage) -> PushResult:
        ...


class TaskBroker(ABC):
    """Interface for the durable task queue."""

    @abstractmethod
    async def enqueue(self, task_type: str, payload: bytes, queue: str = "default") -> str:
        """Push a task; returns the broker task id."""
        ...

    async def close(self) -> None:
        return None
