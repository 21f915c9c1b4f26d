"""Domain entities passed between services, the repository and the API.

Relations are carried as ids; the optional object fields are only filled when
a listing asks for them to be eager-loaded.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union
from uuid import UUID


class GlobalRole(str, Enum):
    SUPERADMIN = "SUPERADMIN"
    ADMIN = "ADMIN"
    USER = "USER"


class StaffRole(str, Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobType(str, Enum):
    EXPORT_BORROWINGS = "export:borrowings"
    IMPORT_BOOKS = "import:books"
    CHECK_OVERDUE = "check:overdue"


class ReferenceType(str, Enum):
    BORROWING = "BORROWING"
    EXPORT_BORROWING = "EXPORT_BORROWING"
    IMPORT_BOOKS = "IMPORT_BOOKS"


class PushProvider(str, Enum):
    FCM = "fcm"
    APNS = "apns"
    WEBPUSH = "webpush"


@dataclass
class Actor:
    """The authenticated caller, resolved once per request."""
    user_id: UUID
    role: GlobalRole

    @property
    def is_global_admin(self) -> bool:
        return self.role in (GlobalRole.SUPERADMIN, GlobalRole.ADMIN)


# ── Tenancy & people ─────────────────────────────────────────────

@dataclass
class Library:
    id: UUID
    name: str
    logo: Optional[str] = None
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


@dataclass
class User:
    id: UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


@dataclass
class AuthUser:
    uid: str
    user_id: UUID
    global_role: GlobalRole = GlobalRole.USER


@dataclass
class Staff:
    id: UUID
    name: str
    user_id: UUID
    library_id: UUID
    role: StaffRole = StaffRole.STAFF
    deleted_at: Optional[datetime] = None
    user: Optional[User] = None
    library: Optional[Library] = None


# ── Catalog ──────────────────────────────────────────────────────

@dataclass
class Book:
    id: UUID
    library_id: UUID
    code: str
    title: str
    author: str
    year: int = 0
    cover: Optional[str] = None
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    library: Optional[Library] = None


@dataclass
class Collection:
    id: UUID
    library_id: UUID
    title: str
    description: Optional[str] = None
    cover: Optional[str] = None
    book_count: int = 0
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    library: Optional[Library] = None


@dataclass
class CollectionBook:
    id: UUID
    collection_id: UUID
    book_id: UUID
    created_at: Optional[datetime] = None
    book: Optional[Book] = None


@dataclass
class Watchlist:
    id: UUID
    user_id: UUID
    book_id: UUID
    created_at: Optional[datetime] = None
    book: Optional[Book] = None


# ── Plans ────────────────────────────────────────────────────────

@dataclass
class Membership:
    id: UUID
    name: str
    library_id: UUID
    duration: int                # days
    active_loan_limit: int
    loan_period: int             # days
    fine_per_day: int            # minor units
    price: int = 0
    usage_limit: int = 0         # 0 = unlimited
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    library: Optional[Library] = None


@dataclass
class Subscription:
    id: UUID
    user_id: UUID
    membership_id: UUID
    # Snapshot of the membership terms at purchase time
    expires_at: datetime
    loan_period: int
    fine_per_day: int
    active_loan_limit: int
    usage_limit: int = 0
    amount: int = 0
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    user: Optional[User] = None
    membership: Optional[Membership] = None


# ── Loans ────────────────────────────────────────────────────────

@dataclass
class Returning:
    id: UUID
    borrowing_id: UUID
    staff_id: UUID
    returned_at: datetime
    fine: int = 0
    note: Optional[str] = None
    deleted_at: Optional[datetime] = None


@dataclass
class Lost:
    id: UUID
    borrowing_id: UUID
    staff_id: UUID
    reported_at: datetime
    fine: int = 0
    note: str = ""
    deleted_at: Optional[datetime] = None


@dataclass
class Borrowing:
    id: UUID
    book_id: UUID
    subscription_id: UUID
    staff_id: UUID
    borrowed_at: datetime
    due_at: datetime
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    book: Optional[Book] = None
    subscription: Optional[Subscription] = None
    staff: Optional[Staff] = None
    returning: Optional[Returning] = None
    lost: Optional[Lost] = None

    @property
    def is_active(self) -> bool:
        return self.returning is None and self.lost is None and self.deleted_at is None

    def status(self, now: datetime) -> str:
        """Display status; lost wins over returned, overdue is derived from ``now``."""
        if self.lost is not None:
            return "Lost"
        if self.returning is not None:
            return "Returned"
        if now > self.due_at:
            return "Overdue"
        return "Active"


@dataclass
class Review:
    id: UUID
    borrowing_id: UUID
    rating: int                  # 0-5
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    user_id: Optional[UUID] = None
    book_id: Optional[UUID] = None
    borrowing: Optional[Borrowing] = None
    user: Optional[User] = None
    book: Optional[Book] = None


# ── Notifications ────────────────────────────────────────────────

@dataclass
class Notification:
    id: UUID
    user_id: UUID
    title: str
    message: str
    reference_type: Optional[str] = None
    reference_id: Optional[UUID] = None
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class PushToken:
    id: UUID
    user_id: UUID
    token: str
    provider: PushProvider
    last_seen: Optional[datetime] = None


# ── Jobs ─────────────────────────────────────────────────────────

@dataclass
class Job:
    id: UUID
    type: str
    staff_id: UUID
    status: JobStatus = JobStatus.PENDING
    payload: dict = field(default_factory=dict)
    result: Optional[dict] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    staff: Optional[Staff] = None


# ── Assets ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class BookCover:
    book_id: UUID


@dataclass(frozen=True)
class CollectionCover:
    collection_id: UUID


@dataclass(frozen=True)
class LibraryLogo:
    library_id: UUID


AssetOwner = Union[BookCover, CollectionCover, LibraryLogo]

_OWNER_TYPES = {
    BookCover: ("books", "book_id"),
    CollectionCover: ("collections", "collection_id"),
    LibraryLogo: ("libraries", "library_id"),
}


def flatten_owner(owner: AssetOwner) -> tuple[str, UUID]:
    """Tagged union → ``(owner_type, owner_id)`` storage columns."""
    owner_type, attr = _OWNER_TYPES[type(owner)]
    return owner_type, getattr(owner, attr)


def parse_owner(owner_type: str, owner_id: UUID) -> AssetOwner:
    for cls, (name, _) in _OWNER_TYPES.items():
        if name == owner_type:
            return cls(owner_id)
    raise ValueError(f"unknown asset owner type: {owner_type}")


@dataclass
class Asset:
    id: UUID
    owner: AssetOwner
    kind: str
    path: str
    is_primary: bool = False
    position: int = 0
    colors: dict[int, tuple[int, int, int, int]] = field(default_factory=dict)
