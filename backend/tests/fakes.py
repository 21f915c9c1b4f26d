"""In-memory stand-ins for the repository and the external clients.

``FakeRepository`` follows the filtering and ordering rules of
``SqlRepository`` closely enough for the services to be exercised without a
database. ``atomic()`` serializes on one asyncio lock, which gives the same
observable ordering as the row locks taken in Postgres.
"""

import asyncio
import copy
import itertools
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

from librarease.clients.base import (
    FileStorage, IdentityProvider, PushMessage, PushResult, PushSender, TaskBroker,
)
from librarease.entities import (
    AuthUser, Book, Borrowing, Collection, CollectionBook, GlobalRole, Job, Library, Lost,
    Membership, Notification, PushProvider, PushToken, Returning, Review, Staff, StaffRole,
    Subscription, User, Watchlist,
)
from librarease.repository.base import (
    ListBooksOption, ListBorrowingsOption, ListCollectionBooksOption, ListCollectionsOption,
    ListJobsOption, ListLibrariesOption, ListMembershipsOption, ListNotificationsOption,
    ListReviewsOption, ListStaffsOption, ListSubscriptionsOption, ListUsersOption,
    ListWatchlistsOption, Repository,
)
from librarease.services.errors import (
    AlreadyInWatchlist, BookAlreadyReviewed, NotFoundError, StaffAlreadyExists,
    UnauthorizedError, UpstreamError,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _page(items: list, skip: int, limit: int) -> tuple[list, int]:
    return items[skip:skip + limit], len(items)


class FakeRepository(Repository):
    def __init__(self):
        self.libraries: dict[UUID, Library] = {}
        self.users: dict[UUID, User] = {}
        self.auth_users: dict[str, AuthUser] = {}
        self.staffs: dict[UUID, Staff] = {}
        self.books: dict[UUID, Book] = {}
        self.memberships: dict[UUID, Membership] = {}
        self.subscriptions: dict[UUID, Subscription] = {}
        self.borrowings: dict[UUID, Borrowing] = {}
        self.returnings: list[Returning] = []
        self.losts: list[Lost] = []
        self.notifications: dict[UUID, Notification] = {}
        self.push_tokens: list[PushToken] = []
        self.jobs: dict[UUID, Job] = {}
        self.collections: dict[UUID, Collection] = {}
        self.collection_books: list[CollectionBook] = []
        self.watchlists: list[Watchlist] = []
        self.reviews: dict[UUID, Review] = {}
        self.on_notification: Optional[Callable[[Notification], None]] = None
        self._tx_lock = asyncio.Lock()
        self._seq = itertools.count()
        self._order: dict[UUID, int] = {}

    def _stamp(self, entity) -> None:
        """Strictly increasing ``created_at`` so newest-first ordering is deterministic."""
        n = next(self._seq)
        self._order[entity.id] = n
        if getattr(entity, "created_at", None) is None:
            entity.created_at = datetime(2000, 1, 1, tzinfo=timezone.utc) + timedelta(microseconds=n)

    # ── Seeding ──────────────────────────────────────────────────

    def add_library(self, name: str = "Central") -> Library:
        library = Library(id=uuid.uuid4(), name=name)
        self._stamp(library)
        self.libraries[library.id] = library
        return library

    def add_user(self, name: str = "Reader", role: GlobalRole = GlobalRole.USER) -> User:
        user = User(id=uuid.uuid4(), name=name, email=f"{name.lower()}@example.com")
        self._stamp(user)
        self.users[user.id] = user
        self.auth_users[f"uid-{user.id}"] = AuthUser(uid=f"uid-{user.id}", user_id=user.id, global_role=role)
        return user

    def add_staff(self, user: User, library: Library, role: StaffRole = StaffRole.STAFF) -> Staff:
        staff = Staff(id=uuid.uuid4(), name=user.name, user_id=user.id, library_id=library.id, role=role)
        self.staffs[staff.id] = staff
        return staff

    def add_book(self, library: Library, code: str, title: str = "Dune", author: str = "Frank Herbert",
                 year: int = 1965) -> Book:
        book = Book(id=uuid.uuid4(), library_id=library.id, code=code, title=title, author=author, year=year)
        self._stamp(book)
        self.books[book.id] = book
        return book

    def add_membership(self, library: Library, **terms) -> Membership:
        values = dict(name="Basic", duration=30, active_loan_limit=3, loan_period=7, fine_per_day=1000)
        values.update(terms)
        membership = Membership(id=uuid.uuid4(), library_id=library.id, **values)
        self._stamp(membership)
        self.memberships[membership.id] = membership
        return membership

    # ── Transactions ─────────────────────────────────────────────

    @asynccontextmanager
    async def atomic(self):
        async with self._tx_lock:
            yield self

    async def lock_book(self, book_id: UUID) -> Optional[Book]:
        return await self.get_book(book_id)

    # ── Users & identity ─────────────────────────────────────────

    async def create_user(self, user: User) -> User:
        self.users[user.id] = copy.deepcopy(user)
        return copy.deepcopy(user)

    async def get_user(self, user_id: UUID) -> Optional[User]:
        user = self.users.get(user_id)
        return copy.deepcopy(user) if user and user.deleted_at is None else None

    async def update_user(self, user: User) -> User:
        stored = copy.deepcopy(user)
        stored.created_at = self.users[user.id].created_at
        self.users[user.id] = stored
        return copy.deepcopy(stored)

    async def delete_user(self, user_id: UUID) -> None:
        user = self.users.get(user_id)
        if user is not None and user.deleted_at is None:
            user.deleted_at = _now()

    async def list_users(self, opt: ListUsersOption) -> tuple[list[User], int]:
        items = [
            copy.deepcopy(u) for u in self.users.values()
            if u.deleted_at is None
            and (not opt.ids or u.id in opt.ids)
            and (not opt.name or opt.name.lower() in u.name.lower())
            and (not opt.email or opt.email.lower() in (u.email or "").lower())
        ]
        items.sort(key=lambda u: u.created_at, reverse=True)
        return _page(items, opt.skip, opt.limit)

    async def create_auth_user(self, auth_user: AuthUser) -> AuthUser:
        self.auth_users[auth_user.uid] = copy.deepcopy(auth_user)
        return copy.deepcopy(auth_user)

    async def get_auth_user_by_uid(self, uid: str) -> Optional[AuthUser]:
        return copy.deepcopy(self.auth_users.get(uid))

    async def get_auth_user_by_user_id(self, user_id: UUID) -> Optional[AuthUser]:
        for auth_user in self.auth_users.values():
            if auth_user.user_id == user_id:
                return copy.deepcopy(auth_user)
        return None

    # ── Libraries & staff ────────────────────────────────────────

    async def get_library(self, library_id: UUID) -> Optional[Library]:
        library = self.libraries.get(library_id)
        return copy.deepcopy(library) if library and library.deleted_at is None else None

    async def create_library(self, library: Library) -> Library:
        stored = copy.deepcopy(library)
        self._stamp(stored)
        self.libraries[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_library(self, library: Library) -> Library:
        stored = copy.deepcopy(library)
        stored.created_at = self.libraries[library.id].created_at
        self.libraries[library.id] = stored
        return copy.deepcopy(stored)

    async def delete_library(self, library_id: UUID) -> None:
        library = self.libraries.get(library_id)
        if library is not None and library.deleted_at is None:
            library.deleted_at = _now()

    async def list_libraries(self, opt: ListLibrariesOption) -> tuple[list[Library], int]:
        items = [
            copy.deepcopy(lib) for lib in self.libraries.values()
            if lib.deleted_at is None
            and (not opt.ids or lib.id in opt.ids)
            and (not opt.name or opt.name.lower() in lib.name.lower())
        ]
        items.sort(key=lambda lib: lib.created_at, reverse=True)
        return _page(items, opt.skip, opt.limit)

    async def create_staff(self, staff: Staff) -> Staff:
        for other in self.staffs.values():
            if other.user_id == staff.user_id and other.library_id == staff.library_id and other.deleted_at is None:
                raise StaffAlreadyExists(staff.user_id, staff.library_id)
        stored = copy.deepcopy(staff)
        stored.user = stored.library = None
        self.staffs[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_staff(self, staff: Staff) -> Staff:
        stored = copy.deepcopy(staff)
        stored.user = stored.library = None
        self.staffs[staff.id] = stored
        return copy.deepcopy(stored)

    async def get_staff(self, staff_id: UUID) -> Optional[Staff]:
        staff = self.staffs.get(staff_id)
        return copy.deepcopy(staff) if staff and staff.deleted_at is None else None

    async def list_staffs(self, opt: ListStaffsOption) -> tuple[list[Staff], int]:
        items = []
        for s in self.staffs.values():
            if s.deleted_at is not None:
                continue
            if opt.user_ids and s.user_id not in opt.user_ids:
                continue
            if opt.library_ids and s.library_id not in opt.library_ids:
                continue
            if opt.role and s.role.value != opt.role:
                continue
            if opt.name and opt.name.lower() not in s.name.lower():
                continue
            staff = copy.deepcopy(s)
            if opt.include_user:
                staff.user = copy.deepcopy(self.users.get(s.user_id))
            if opt.include_library:
                staff.library = copy.deepcopy(self.libraries.get(s.library_id))
            items.append(staff)
        return _page(items, opt.skip, opt.limit)

    # ── Catalog ──────────────────────────────────────────────────

    async def create_book(self, book: Book) -> Book:
        for other in self.books.values():
            if other.library_id == book.library_id and other.code == book.code and other.deleted_at is None:
                raise UpstreamError(f"duplicate key: book code {book.code}")
        stored = copy.deepcopy(book)
        self._stamp(stored)
        self.books[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_book(self, book: Book) -> Book:
        current = self.books.get(book.id)
        if current is None:
            raise NotFoundError("book", book.id)
        stored = copy.deepcopy(book)
        stored.created_at = current.created_at
        self.books[book.id] = stored
        return copy.deepcopy(stored)

    async def get_book(self, book_id: UUID) -> Optional[Book]:
        book = self.books.get(book_id)
        return copy.deepcopy(book) if book and book.deleted_at is None else None

    async def list_books(self, opt: ListBooksOption) -> tuple[list[Book], int]:
        items = [
            copy.deepcopy(b) for b in self.books.values()
            if b.deleted_at is None
            and (not opt.library_ids or b.library_id in opt.library_ids)
            and (not opt.ids or b.id in opt.ids)
            and (not opt.code or b.code == opt.code)
            and (not opt.title or opt.title.lower() in b.title.lower())
        ]
        items.sort(key=lambda b: b.created_at, reverse=True)
        return _page(items, opt.skip, opt.limit)

    # ── Collections & watchlists ─────────────────────────────────

    def _live_book(self, book_id: UUID) -> Optional[Book]:
        book = self.books.get(book_id)
        return book if book and book.deleted_at is None else None

    def _links(self, collection_id: UUID) -> list[CollectionBook]:
        return [
            link for link in self.collection_books
            if link.collection_id == collection_id and self._live_book(link.book_id) is not None
        ]

    def _load_collection(self, c: Collection, include_library: bool = False) -> Collection:
        out = copy.deepcopy(c)
        out.book_count = len(self._links(c.id))
        if include_library:
            out.library = copy.deepcopy(self.libraries.get(c.library_id))
        return out

    async def create_collection(self, collection: Collection) -> Collection:
        stored = copy.deepcopy(collection)
        stored.library = None
        self._stamp(stored)
        self.collections[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_collection(self, collection: Collection) -> Collection:
        stored = copy.deepcopy(collection)
        stored.library = None
        stored.created_at = self.collections[collection.id].created_at
        self.collections[collection.id] = stored
        return self._load_collection(stored)

    async def get_collection(self, collection_id: UUID) -> Optional[Collection]:
        c = self.collections.get(collection_id)
        if c is None or c.deleted_at is not None:
            return None
        return self._load_collection(c, include_library=True)

    async def list_collections(self, opt: ListCollectionsOption) -> tuple[list[Collection], int]:
        items = [
            self._load_collection(c, include_library=opt.include_library)
            for c in self.collections.values()
            if c.deleted_at is None
            and (not opt.library_ids or c.library_id in opt.library_ids)
            and (not opt.title or opt.title.lower() in c.title.lower())
        ]
        items.sort(key=lambda c: c.created_at, reverse=True)
        return _page(items, opt.skip, opt.limit)

    async def delete_collection(self, collection_id: UUID) -> None:
        self.collections[collection_id].deleted_at = _now()
        self.collection_books = [link for link in self.collection_books if link.collection_id != collection_id]

    def _with_book(self, link: CollectionBook) -> CollectionBook:
        out = copy.deepcopy(link)
        out.book = copy.deepcopy(self.books.get(link.book_id))
        return out

    async def list_collection_books(
        self, collection_id: UUID, opt: ListCollectionBooksOption
    ) -> tuple[list[CollectionBook], int]:
        items = [
            self._with_book(link) for link in self._links(collection_id)
            if not opt.title or opt.title.lower() in self.books[link.book_id].title.lower()
        ]
        items.sort(key=lambda link: link.created_at, reverse=True)
        return _page(items, opt.skip, opt.limit)

    async def add_collection_books(self, collection_id: UUID, book_ids: list[UUID]) -> list[CollectionBook]:
        book_ids = list(dict.fromkeys(book_ids))
        linked = {link.book_id for link in self.collection_books if link.collection_id == collection_id}
        for book_id in book_ids:
            if book_id not in linked:
                link = CollectionBook(id=uuid.uuid4(), collection_id=collection_id, book_id=book_id)
                self._stamp(link)
                self.collection_books.append(link)
        items = [
            self._with_book(link) for link in self.collection_books
            if link.collection_id == collection_id and link.book_id in book_ids
        ]
        items.sort(key=lambda link: link.created_at, reverse=True)
        return items

    async def remove_collection_books(self, collection_id: UUID, book_ids: list[UUID]) -> None:
        self.collection_books = [
            link for link in self.collection_books
            if not (link.collection_id == collection_id and link.book_id in book_ids)
        ]

    async def add_watchlist(self, watchlist: Watchlist) -> Watchlist:
        for w in self.watchlists:
            if w.user_id == watchlist.user_id and w.book_id == watchlist.book_id:
                raise AlreadyInWatchlist(watchlist.book_id)
        stored = copy.deepcopy(watchlist)
        stored.book = None
        self._stamp(stored)
        self.watchlists.append(stored)
        return copy.deepcopy(stored)

    async def delete_watchlist(self, user_id: UUID, book_id: UUID) -> bool:
        before = len(self.watchlists)
        self.watchlists = [w for w in self.watchlists if not (w.user_id == user_id and w.book_id == book_id)]
        return len(self.watchlists) < before

    async def list_watchlists(self, opt: ListWatchlistsOption) -> tuple[list[Watchlist], int]:
        items = []
        for w in self.watchlists:
            book = self._live_book(w.book_id)
            if book is None:
                continue
            if opt.user_ids and w.user_id not in opt.user_ids:
                continue
            if opt.book_ids and w.book_id not in opt.book_ids:
                continue
            if opt.library_ids and book.library_id not in opt.library_ids:
                continue
            if opt.title and opt.title.lower() not in book.title.lower():
                continue
            entry = copy.deepcopy(w)
            entry.book = copy.deepcopy(book)
            items.append(entry)
        items.sort(key=lambda w: w.created_at, reverse=True)
        return _page(items, opt.skip, opt.limit)

    # ── Plans ────────────────────────────────────────────────────

    async def create_membership(self, membership: Membership) -> Membership:
        stored = copy.deepcopy(membership)
        self._stamp(stored)
        self.memberships[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_membership(self, membership: Membership) -> Membership:
        self.memberships[membership.id] = copy.deepcopy(membership)
        return copy.deepcopy(membership)

    async def get_membership(self, membership_id: UUID, include_deleted: bool = False) -> Optional[Membership]:
        m = self.memberships.get(membership_id)
        if m is None or (m.deleted_at is not None and not include_deleted):
            return None
        return copy.deepcopy(m)

    async def list_memberships(self, opt: ListMembershipsOption) -> tuple[list[Membership], int]:
        items = [
            copy.deepcopy(m) for m in self.memberships.values()
            if m.deleted_at is None
            and (not opt.library_ids or m.library_id in opt.library_ids)
            and (not opt.name or opt.name.lower() in m.name.lower())
        ]
        items.sort(key=lambda m: m.created_at, reverse=True)
        return _page(items, opt.skip, opt.limit)

    async def create_subscription(self, subscription: Subscription) -> Subscription:
        stored = copy.deepcopy(subscription)
        stored.user = stored.membership = None
        self._stamp(stored)
        self.subscriptions[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_subscription(self, subscription: Subscription) -> Subscription:
        stored = copy.deepcopy(subscription)
        stored.user = stored.membership = None
        self.subscriptions[stored.id] = stored
        return copy.deepcopy(stored)

    def _load_subscription(self, sub_id: UUID) -> Optional[Subscription]:
        s = self.subscriptions.get(sub_id)
        if s is None:
            return None
        sub = copy.deepcopy(s)
        sub.user = copy.deepcopy(self.users.get(s.user_id))
        sub.membership = copy.deepcopy(self.memberships.get(s.membership_id))
        return sub

    async def get_subscription(self, subscription_id: UUID) -> Optional[Subscription]:
        s = self.subscriptions.get(subscription_id)
        if s is None or s.deleted_at is not None:
            return None
        return self._load_subscription(subscription_id)

    async def list_subscriptions(self, opt: ListSubscriptionsOption) -> tuple[list[Subscription], int]:
        now = opt.now or _now()
        items = []
        for s in self.subscriptions.values():
            if s.deleted_at is not None:
                continue
            if opt.user_ids and s.user_id not in opt.user_ids:
                continue
            if opt.membership_ids and s.membership_id not in opt.membership_ids:
                continue
            if opt.library_ids and self.memberships[s.membership_id].library_id not in opt.library_ids:
                continue
            if opt.is_active is not None and (s.expires_at > now) != opt.is_active:
                continue
            sub = copy.deepcopy(s)
            if opt.include_user:
                sub.user = copy.deepcopy(self.users.get(s.user_id))
            if opt.include_membership:
                sub.membership = copy.deepcopy(self.memberships.get(s.membership_id))
            items.append(sub)
        items.sort(key=lambda s: s.created_at, reverse=True)
        return _page(items, opt.skip, opt.limit)

    # ── Loans ────────────────────────────────────────────────────

    def _live_returning(self, borrowing_id: UUID) -> Optional[Returning]:
        for r in self.returnings:
            if r.borrowing_id == borrowing_id and r.deleted_at is None:
                return r
        return None

    def _live_lost(self, borrowing_id: UUID) -> Optional[Lost]:
        for lost in self.losts:
            if lost.borrowing_id == borrowing_id and lost.deleted_at is None:
                return lost
        return None

    def _hydrate(self, b: Borrowing, book: bool = True, subscription: bool = True,
                 staff: bool = True) -> Borrowing:
        out = copy.deepcopy(b)
        out.returning = copy.deepcopy(self._live_returning(b.id))
        out.lost = copy.deepcopy(self._live_lost(b.id))
        if book:
            out.book = copy.deepcopy(self.books.get(b.book_id))
        if subscription:
            out.subscription = self._load_subscription(b.subscription_id)
        if staff:
            out.staff = copy.deepcopy(self.staffs.get(b.staff_id))
        return out

    async def create_borrowing(self, borrowing: Borrowing) -> Borrowing:
        stored = copy.deepcopy(borrowing)
        self._stamp(stored)
        self.borrowings[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_borrowing(self, borrowing_id: UUID, for_update: bool = False) -> Optional[Borrowing]:
        b = self.borrowings.get(borrowing_id)
        if b is None or b.deleted_at is not None:
            return None
        return self._hydrate(b)

    def _match(self, b: Borrowing, opt: ListBorrowingsOption) -> bool:
        if b.deleted_at is not None:
            return False
        returned = self._live_returning(b.id) is not None
        lost = self._live_lost(b.id) is not None
        if opt.book_ids and b.book_id not in opt.book_ids:
            return False
        if opt.subscription_ids and b.subscription_id not in opt.subscription_ids:
            return False
        if opt.staff_ids and b.staff_id not in opt.staff_ids:
            return False
        if opt.user_ids and self.subscriptions[b.subscription_id].user_id not in opt.user_ids:
            return False
        if opt.library_ids and self.books[b.book_id].library_id not in opt.library_ids:
            return False
        if (opt.is_active or opt.is_overdue) and (returned or lost):
            return False
        if opt.is_overdue and not b.due_at < (opt.now or _now()):
            return False
        if opt.is_returned and not returned:
            return False
        if opt.is_lost and not lost:
            return False
        if opt.borrowed_at_from and b.borrowed_at < opt.borrowed_at_from:
            return False
        if opt.borrowed_at_to and b.borrowed_at > opt.borrowed_at_to:
            return False
        if opt.due_at_from and not b.due_at > opt.due_at_from:
            return False
        if opt.due_at_to and not b.due_at <= opt.due_at_to:
            return False
        return True

    async def list_borrowings(self, opt: ListBorrowingsOption) -> tuple[list[Borrowing], int]:
        matched = [b for b in self.borrowings.values() if self._match(b, opt)]
        matched.sort(key=lambda b: (getattr(b, opt.sort_by, b.created_at), self._order[b.id]),
                     reverse=opt.sort_desc)
        page, total = _page(matched, opt.skip, opt.limit)
        items = [
            self._hydrate(b, book=opt.include_book, subscription=opt.include_subscription,
                          staff=opt.include_staff)
            for b in page
        ]
        return items, total

    async def count_borrowings(self, opt: ListBorrowingsOption) -> int:
        return sum(1 for b in self.borrowings.values() if self._match(b, opt))

    async def create_returning(self, returning: Returning) -> Returning:
        self.returnings.append(copy.deepcopy(returning))
        return copy.deepcopy(returning)

    async def delete_returning(self, borrowing_id: UUID) -> None:
        live = self._live_returning(borrowing_id)
        if live is not None:
            live.deleted_at = _now()

    async def create_lost(self, lost: Lost) -> Lost:
        self.losts.append(copy.deepcopy(lost))
        return copy.deepcopy(lost)

    async def delete_lost(self, borrowing_id: UUID) -> None:
        live = self._live_lost(borrowing_id)
        if live is not None:
            live.deleted_at = _now()

    # ── Reviews ──────────────────────────────────────────────────

    def _load_review(self, r: Review) -> Review:
        out = copy.deepcopy(r)
        borrowing = self.borrowings.get(r.borrowing_id)
        if borrowing is not None:
            sub = self.subscriptions.get(borrowing.subscription_id)
            out.book_id = borrowing.book_id
            out.book = copy.deepcopy(self.books.get(borrowing.book_id))
            if sub is not None:
                out.user_id = sub.user_id
                out.user = copy.deepcopy(self.users.get(sub.user_id))
        return out

    async def create_review(self, review: Review) -> Review:
        for other in self.reviews.values():
            if other.borrowing_id == review.borrowing_id and other.deleted_at is None:
                raise BookAlreadyReviewed(review.borrowing_id)
        stored = copy.deepcopy(review)
        stored.borrowing = stored.user = stored.book = None
        stored.user_id = stored.book_id = None
        self._stamp(stored)
        stored.updated_at = stored.created_at
        self.reviews[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_review(self, review: Review) -> Review:
        stored = self.reviews[review.id]
        stored.rating = review.rating
        stored.comment = review.comment
        stored.updated_at = _now()
        return copy.deepcopy(stored)

    async def get_review(self, review_id: UUID) -> Optional[Review]:
        r = self.reviews.get(review_id)
        if r is None or r.deleted_at is not None:
            return None
        return self._load_review(r)

    async def list_reviews(self, opt: ListReviewsOption) -> tuple[list[Review], int]:
        items = []
        for r in self.reviews.values():
            borrowing = self.borrowings.get(r.borrowing_id)
            if r.deleted_at is not None or borrowing is None or borrowing.deleted_at is not None:
                continue
            review = self._load_review(r)
            if opt.borrowing_ids and r.borrowing_id not in opt.borrowing_ids:
                continue
            if opt.user_ids and review.user_id not in opt.user_ids:
                continue
            if opt.book_ids and review.book_id not in opt.book_ids:
                continue
            if opt.library_ids and self.books[borrowing.book_id].library_id not in opt.library_ids:
                continue
            if opt.rating is not None and r.rating != opt.rating:
                continue
            items.append(review)
        items.sort(key=lambda r: (getattr(r, opt.sort_by, r.created_at), self._order[r.id]), reverse=opt.sort_desc)
        return _page(items, opt.skip, opt.limit)

    async def delete_review(self, review_id: UUID) -> None:
        review = self.reviews.get(review_id)
        if review is not None and review.deleted_at is None:
            review.deleted_at = _now()

    # ── Notifications ────────────────────────────────────────────

    async def create_notification(self, notification: Notification) -> Notification:
        stored = copy.deepcopy(notification)
        self._stamp(stored)
        self.notifications[stored.id] = stored
        if self.on_notification is not None:
            self.on_notification(copy.deepcopy(stored))
        return copy.deepcopy(stored)

    async def list_notifications(self, opt: ListNotificationsOption) -> tuple[list[Notification], int, int]:
        mine = [n for n in self.notifications.values() if not opt.user_id or n.user_id == opt.user_id]
        unread = sum(1 for n in mine if n.read_at is None)
        if opt.is_unread is not None:
            mine = [n for n in mine if (n.read_at is None) == opt.is_unread]
        mine.sort(key=lambda n: n.created_at, reverse=True)
        page, total = _page([copy.deepcopy(n) for n in mine], opt.skip, opt.limit)
        return page, unread, total

    async def read_notification(self, notification_id: UUID, user_id: UUID, read_at: datetime) -> bool:
        n = self.notifications.get(notification_id)
        if n is None or n.user_id != user_id or n.read_at is not None:
            return False
        n.read_at = read_at
        return True

    async def read_all_notifications(self, user_id: UUID, read_at: datetime) -> int:
        count = 0
        for n in self.notifications.values():
            if n.user_id == user_id and n.read_at is None:
                n.read_at = read_at
                count += 1
        return count

    async def save_push_token(self, token: PushToken) -> PushToken:
        for existing in self.push_tokens:
            if existing.user_id == token.user_id and existing.token == token.token:
                existing.provider = token.provider
                existing.last_seen = token.last_seen
                return copy.deepcopy(existing)
        self.push_tokens.append(copy.deepcopy(token))
        return copy.deepcopy(token)

    async def list_push_tokens(self, user_id: UUID) -> list[PushToken]:
        return [copy.deepcopy(t) for t in self.push_tokens if t.user_id == user_id]

    async def delete_push_tokens(self, user_id: UUID, tokens: list[str]) -> None:
        self.push_tokens = [t for t in self.push_tokens if not (t.user_id == user_id and t.token in tokens)]

    # ── Jobs ─────────────────────────────────────────────────────

    async def create_job(self, job: Job) -> Job:
        stored = copy.deepcopy(job)
        stored.staff = None
        self._stamp(stored)
        self.jobs[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_job(self, job: Job) -> Job:
        stored = copy.deepcopy(job)
        stored.staff = None
        self.jobs[job.id] = stored
        return copy.deepcopy(job)

    async def get_job(self, job_id: UUID) -> Optional[Job]:
        j = self.jobs.get(job_id)
        if j is None:
            return None
        job = copy.deepcopy(j)
        job.staff = copy.deepcopy(self.staffs.get(j.staff_id))
        return job

    async def list_jobs(self, opt: ListJobsOption) -> tuple[list[Job], int]:
        items = []
        for j in self.jobs.values():
            if opt.staff_ids and j.staff_id not in opt.staff_ids:
                continue
            if opt.types and j.type not in opt.types:
                continue
            if opt.statuses and j.status.value not in opt.statuses:
                continue
            job = copy.deepcopy(j)
            if opt.include_staff:
                job.staff = copy.deepcopy(self.staffs.get(j.staff_id))
            items.append(job)
        items.sort(key=lambda j: j.created_at, reverse=True)
        return _page(items, opt.skip, opt.limit)

    async def delete_job(self, job_id: UUID) -> None:
        self.jobs.pop(job_id, None)


# ── Clients ──────────────────────────────────────────────────────

class FakeStorage(FileStorage):
    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.fail_moves = False

    async def upload_file(self, path: str, data: bytes) -> None:
        self.files[path] = data

    async def read_file(self, path: str) -> bytes:
        if path not in self.files:
            raise UpstreamError(f"object not found: {path}")
        return self.files[path]

    async def presigned_get_url(self, path: str) -> str:
        return f"https://storage.test/{path}?signature=get"

    async def temp_upload_url(self, name: str, user_id: Optional[str] = None) -> tuple[str, str]:
        path = f"temp/{(user_id or 'anon')[:8]}/{name}"
        return path, f"https://storage.test/{path}?signature=put"

    async def move_temp_to_public(self, source: str, dest_dir: str) -> str:
        if self.fail_moves or source not in self.files:
            raise UpstreamError(f"copy failed: {source}")
        dest = f"public/{dest_dir}/{source.rsplit('/', 1)[-1]}"
        self.files[dest] = self.files.pop(source)
        return dest


class FakeBroker(TaskBroker):
    def __init__(self):
        self.tasks: list[tuple[str, bytes, str]] = []
        self.fail = False
        self.closed = False

    async def enqueue(self, task_type: str, payload: bytes, queue: str = "default") -> str:
        if self.fail:
            raise UpstreamError("redis unavailable")
        self.tasks.append((task_type, payload, queue))
        return f"task-{len(self.tasks)}"

    async def close(self) -> None:
        self.closed = True


class FakeIdentity(IdentityProvider):
    def __init__(self):
        self.accounts: dict[str, str] = {}
        self.tokens: dict[str, str] = {}
        self.claims: dict[str, dict] = {}

    async def create_user(self, email: str, password: str, name: str) -> str:
        uid = f"uid-{len(self.accounts) + 1}"
        self.accounts[uid] = email
        return uid

    async def verify_id_token(self, token: str) -> str:
        if token not in self.tokens:
            raise UnauthorizedError("invalid id token")
        return self.tokens[token]

    async def set_custom_claims(self, uid: str, claims: dict) -> None:
        self.claims[uid] = claims


class FakePushSender(PushSender):
    provider = PushProvider.FCM

    def __init__(self, rejected: Optional[set[str]] = None):
        self.messages: list[PushMessage] = []
        self.rejected = rejected or set()

    async def send(self, message: PushMessage) -> PushResult:
        self.messages.append(message)
        invalid = [t for t in message.tokens if t in self.rejected]
        return PushResult(sent=len(message.tokens) - len(invalid), invalid_tokens=invalid)
