"""Abstract persistence interface.

Services only ever talk to a ``Repository``; ``SqlRepository`` is the
production implementation and the test-suite ships an in-memory one.
Listings take an option dataclass and return ``(items, total)``; eager
loading of related entities is opt-in per listing via ``include_*`` flags.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncContextManager, Optional
from uuid import UUID

from librarease.entities import (
    AuthUser, Book, Borrowing, Collection, CollectionBook, Job, Library, Lost,
    Membership, Notification, PushToken, Returning, Review, Staff, Subscription,
    User, Watchlist,
)


# ── Listing options ──────────────────────────────────────────────

@dataclass
class Page:
    skip: int = 0
    limit: int = 20


@dataclass
class ListLibrariesOption(Page):
    ids: list[UUID] = field(default_factory=list)
    name: Optional[str] = None


@dataclass
class ListUsersOption(Page):
    ids: list[UUID] = field(default_factory=list)
    name: Optional[str] = None
    email: Optional[str] = None


@dataclass
class ListStaffsOption(Page):
    user_ids: list[UUID] = field(default_factory=list)
    library_ids: list[UUID] = field(default_factory=list)
    role: Optional[str] = None
    name: Optional[str] = None
    include_user: bool = False
    include_library: bool = False


@dataclass
class ListBooksOption(Page):
    library_ids: list[UUID] = field(default_factory=list)
    ids: list[UUID] = field(default_factory=list)
    code: Optional[str] = None
    title: Optional[str] = None


@dataclass
class ListCollectionsOption(Page):
    library_ids: list[UUID] = field(default_factory=list)
    title: Optional[str] = None
    include_library: bool = False


@dataclass
class ListCollectionBooksOption(Page):
    title: Optional[str] = None               # matches the book title


@dataclass
class ListWatchlistsOption(Page):
    user_ids: list[UUID] = field(default_factory=list)
    book_ids: list[UUID] = field(default_factory=list)
    library_ids: list[UUID] = field(default_factory=list)
    title: Optional[str] = None


@dataclass
class ListMembershipsOption(Page):
    library_ids: list[UUID] = field(default_factory=list)
    name: Optional[str] = None


@dataclass
class ListSubscriptionsOption(Page):
    user_ids: list[UUID] = field(default_factory=list)
    membership_ids: list[UUID] = field(default_factory=list)
    library_ids: list[UUID] = field(default_factory=list)
    is_active: Optional[bool] = None          # relative to ``now``
    now: Optional[datetime] = None
    include_user: bool = False
    include_membership: bool = False


@dataclass
class ListBorrowingsOption(Page):
    book_ids: list[UUID] = field(default_factory=list)
    subscription_ids: list[UUID] = field(default_factory=list)
    user_ids: list[UUID] = field(default_factory=list)
    library_ids: list[UUID] = field(default_factory=list)
    staff_ids: list[UUID] = field(default_factory=list)
    is_active: bool = False
    is_overdue: bool = False
    is_returned: bool = False
    is_lost: bool = False
    borrowed_at_from: Optional[datetime] = None
    borrowed_at_to: Optional[datetime] = None
    due_at_from: Optional[datetime] = None    # exclusive
    due_at_to: Optional[datetime] = None      # inclusive
    now: Optional[datetime] = None            # reference instant for is_overdue
    sort_by: str = "created_at"
    sort_desc: bool = True
    include_book: bool = False
    include_subscription: bool = False        # subscription + its user and membership
    include_staff: bool = False


@dataclass
class ListReviewsOption(Page):
    borrowing_ids: list[UUID] = field(default_factory=list)
    user_ids: list[UUID] = field(default_factory=list)
    book_ids: list[UUID] = field(default_factory=list)
    library_ids: list[UUID] = field(default_factory=list)
    rating: Optional[int] = None
    sort_by: str = "created_at"
    sort_desc: bool = True


@dataclass
class ListNotificationsOption(Page):
    user_id: Optional[UUID] = None
    is_unread: Optional[bool] = None


@dataclass
class ListJobsOption(Page):
    staff_ids: list[UUID] = field(default_factory=list)
    types: list[str] = field(default_factory=list)
    statuses: list[str] = field(default_factory=list)
    include_staff: bool = False


# ── Repository ───────────────────────────────────────────────────

class Repository(ABC):
    """Entity-level operations over the relational store."""

    @abstractmethod
    def atomic(self) -> AsyncContextManager["Repository"]:
        """Yield a repository bound to one transaction; commit on exit, roll back on error."""
        ...

    @abstractmethod
    async def lock_book(self, book_id: UUID) -> Optional[Book]:
        """Row-lock the book until the surrounding ``atomic()`` block ends."""
        ...

    # ── Users & identity ──

    @abstractmethod
    async def create_user(self, user: User) -> User:
        ...

    @abstractmethod
    async def get_user(self, user_id: UUID) -> Optional[User]:
        ...

    @abstractmethod
    async def update_user(self, user: User) -> User:
        ...

    @abstractmethod
    async def delete_user(self, user_id: UUID) -> None:
        """Soft-delete the user."""
        ...

    @abstractmethod
    async def list_users(self, opt: ListUsersOption) -> tuple[list[User], int]:
        ...

    @abstractmethod
    async def create_auth_user(self, auth_user: AuthUser) -> AuthUser:
        ...

    @abstractmethod
    async def get_auth_user_by_uid(self, uid: str) -> Optional[AuthUser]:
        ...

    @abstractmethod
    async def get_auth_user_by_user_id(self, user_id: UUID) -> Optional[AuthUser]:
        ...

    # ── Libraries & staff ──

    @abstractmethod
    async def get_library(self, library_id: UUID) -> Optional[Library]:
        ...

    @abstractmethod
    async def create_library(self, library: Library) -> Library:
        ...

    @abstractmethod
    async def update_library(self, library: Library) -> Library:
        ...

    @abstractmethod
    async def delete_library(self, library_id: UUID) -> None:
        """Soft-delete the library."""
        ...

    @abstractmethod
    async def list_libraries(self, opt: ListLibrariesOption) -> tuple[list[Library], int]:
        ...

    @abstractmethod
    async def create_staff(self, staff: Staff) -> Staff:
        """Raises ``StaffAlreadyExists`` when the user already has a live row in the library."""
        ...

    @abstractmethod
    async def update_staff(self, staff: Staff) -> Staff:
        ...

    @abstractmethod
    async def get_staff(self, staff_id: UUID) -> Optional[Staff]:
        ...

    @abstractmethod
    async def list_staffs(self, opt: ListStaffsOption) -> tuple[list[Staff], int]:
        ...

    # ── Catalog ──

    @abstractmethod
    async def create_book(self, book: Book) -> Book:
        ...

    @abstractmethod
    async def update_book(self, book: Book) -> Book:
        ...

    @abstractmethod
    async def get_book(self, book_id: UUID) -> Optional[Book]:
        ...

    @abstractmethod
    async def list_books(self, opt: ListBooksOption) -> tuple[list[Book], int]:
        ...

    @abstractmethod
    async def create_collection(self, collection: Collection) -> Collection:
        ...

    @abstractmethod
    async def update_collection(self, collection: Collection) -> Collection:
        ...

    @abstractmethod
    async def get_collection(self, collection_id: UUID) -> Optional[Collection]:
        """Fetch with ``library`` and ``book_count`` filled."""
        ...

    @abstractmethod
    async def list_collections(self, opt: ListCollectionsOption) -> tuple[list[Collection], int]:
        ...

    @abstractmethod
    async def delete_collection(self, collection_id: UUID) -> None:
        """Soft-delete the collection together with its book links."""
        ...

    @abstractmethod
    async def list_collection_books(
        self, collection_id: UUID, opt: ListCollectionBooksOption
    ) -> tuple[list[CollectionBook], int]:
        """Live links of the collection with ``book`` loaded."""
        ...

    @abstractmethod
    async def add_collection_books(self, collection_id: UUID, book_ids: list[UUID]) -> list[CollectionBook]:
        """Link the books; ids that are already linked are left alone."""
        ...

    @abstractmethod
    async def remove_collection_books(self, collection_id: UUID, book_ids: list[UUID]) -> None:
        ...

    @abstractmethod
    async def add_watchlist(self, watchlist: Watchlist) -> Watchlist:
        """Raises ``AlreadyInWatchlist`` when the user already watches the book."""
        ...

    @abstractmethod
    async def delete_watchlist(self, user_id: UUID, book_id: UUID) -> bool:
        """Soft-delete the entry; return whether one existed."""
        ...

    @abstractmethod
    async def list_watchlists(self, opt: ListWatchlistsOption) -> tuple[list[Watchlist], int]:
        """Entries with ``book`` loaded, newest first."""
        ...

    # ── Plans ──

    @abstractmethod
    async def create_membership(self, membership: Membership) -> Membership:
        ...

    @abstractmethod
    async def update_membership(self, membership: Membership) -> Membership:
        ...

    @abstractmethod
    async def get_membership(self, membership_id: UUID, include_deleted: bool = False) -> Optional[Membership]:
        ...

    @abstractmethod
    async def list_memberships(self, opt: ListMembershipsOption) -> tuple[list[Membership], int]:
        ...

    @abstractmethod
    async def create_subscription(self, subscription: Subscription) -> Subscription:
        ...

    @abstractmethod
    async def update_subscription(self, subscription: Subscription) -> Subscription:
        ...

    @abstractmethod
    async def get_subscription(self, subscription_id: UUID) -> Optional[Subscription]:
        """Fetch with ``membership`` (even soft-deleted) and ``user`` loaded."""
        ...

    @abstractmethod
    async def list_subscriptions(self, opt: ListSubscriptionsOption) -> tuple[list[Subscription], int]:
        ...

    # ── Loans ──

    @abstractmethod
    async def create_borrowing(self, borrowing: Borrowing) -> Borrowing:
        ...

    @abstractmethod
    async def get_borrowing(self, borrowing_id: UUID, for_update: bool = False) -> Optional[Borrowing]:
        """Fetch with every relation loaded (book, subscription→user/membership, staff, children)."""
        ...

    @abstractmethod
    async def list_borrowings(self, opt: ListBorrowingsOption) -> tuple[list[Borrowing], int]:
        ...

    @abstractmethod
    async def count_borrowings(self, opt: ListBorrowingsOption) -> int:
        ...

    @abstractmethod
    async def create_returning(self, returning: Returning) -> Returning:
        ...

    @abstractmethod
    async def delete_returning(self, borrowing_id: UUID) -> None:
        """Soft-delete the live returning of a borrowing."""
        ...

    @abstractmethod
    async def create_lost(self, lost: Lost) -> Lost:
        ...

    @abstractmethod
    async def delete_lost(self, borrowing_id: UUID) -> None:
        ...

    # ── Reviews ──

    @abstractmethod
    async def create_review(self, review: Review) -> Review:
        """Raises ``BookAlreadyReviewed`` when the borrowing already has a live review."""
        ...

    @abstractmethod
    async def update_review(self, review: Review) -> Review:
        ...

    @abstractmethod
    async def get_review(self, review_id: UUID) -> Optional[Review]:
        """Fetch with ``user_id``/``book_id`` and ``user``/``book`` filled."""
        ...

    @abstractmethod
    async def list_reviews(self, opt: ListReviewsOption) -> tuple[list[Review], int]:
        ...

    @abstractmethod
    async def delete_review(self, review_id: UUID) -> None:
        ...

    # ── Notifications ──

    @abstractmethod
    async def create_notification(self, notification: Notification) -> Notification:
        ...

    @abstractmethod
    async def list_notifications(self, opt: ListNotificationsOption) -> tuple[list[Notification], int, int]:
        """Return ``(items, unread, total)``."""
        ...

    @abstractmethod
    async def read_notification(self, notification_id: UUID, user_id: UUID, read_at: datetime) -> bool:
        """Mark read if still unread; return whether a row changed."""
        ...

    @abstractmethod
    async def read_all_notifications(self, user_id: UUID, read_at: datetime) -> int:
        ...

    @abstractmethod
    async def save_push_token(self, token: PushToken) -> PushToken:
        """Upsert on ``(user_id, token)``."""
        ...

    @abstractmethod
    async def list_push_tokens(self, user_id: UUID) -> list[PushToken]:
        ...

    @abstractmethod
    async def delete_push_tokens(self, user_id: UUID, tokens: list[str]) -> None:
        ...

    # ── Jobs ──

    @abstractmethod
    async def create_job(self, job: Job) -> Job:
        ...

    @abstractmethod
    async def update_job(self, job: Job) -> Job:
        ...

    @abstractmethod
    async def get_job(self, job_id: UUID) -> Optional[Job]:
        """Fetch with ``staff`` loaded."""
        ...

    @abstractmethod
    async def list_jobs(self, opt: ListJobsOption) -> tuple[list[Job], int]:
        ...

    @abstractmethod
    async def delete_job(self, job_id: UUID) -> None:
        ...
