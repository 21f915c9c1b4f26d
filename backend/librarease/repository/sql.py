"""SQLAlchemy implementation of the repository.

Outside ``atomic()`` every call runs in its own short transaction; inside it
all calls share the bound session, so row locks taken by ``lock_book`` or
``get_borrowing(for_update=True)`` hold until the block exits.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

from sqlalchemy import Select, delete, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from librarease.entities import (
    AuthUser, Book, Borrowing, Collection, CollectionBook, GlobalRole, Job, JobStatus,
    Library, Lost, Membership, Notification, PushProvider, PushToken, Returning,
    Review, Staff, StaffRole, Subscription, User, Watchlist,
)
from librarease.models.tables import (
    AuthUserRow, BookRow, BorrowingRow, CollectionBookRow, CollectionRow, JobRow,
    LibraryRow, LostRow, MembershipRow, NotificationRow, PushTokenRow, ReturningRow,
    ReviewRow, StaffRow, SubscriptionRow, UserRow, WatchlistRow,
)
from librarease.repository.base import (
    ListBooksOption, ListBorrowingsOption, ListCollectionBooksOption, ListCollectionsOption,
    ListJobsOption, ListLibrariesOption, ListMembershipsOption, ListNotificationsOption,
    ListReviewsOption, ListStaffsOption, ListSubscriptionsOption, ListUsersOption,
    ListWatchlistsOption, Repository,
)
from librarease.services.errors import AlreadyInWatchlist, BookAlreadyReviewed, BookNotAvailable, StaffAlreadyExists

logger = logging.getLogger(__name__)


# ── Row → entity mapping ─────────────────────────────────────────

def _library(row: LibraryRow) -> Library:
    return Library(id=row.id, name=row.name, logo=row.logo,
                   created_at=row.created_at, deleted_at=row.deleted_at)


def _user(row: UserRow) -> User:
    return User(id=row.id, name=row.name, email=row.email, phone=row.phone,
                created_at=row.created_at, deleted_at=row.deleted_at)


def _auth_user(row: AuthUserRow) -> AuthUser:
    return AuthUser(uid=row.uid, user_id=row.user_id, global_role=GlobalRole(row.global_role))


def _staff(row: StaffRow) -> Staff:
    return Staff(id=row.id, name=row.name, user_id=row.user_id, library_id=row.library_id,
                 role=StaffRole(row.role), deleted_at=row.deleted_at)


def _book(row: BookRow) -> Book:
    return Book(id=row.id, library_id=row.library_id, code=row.code, title=row.title,
                author=row.author, year=row.year or 0, cover=row.cover,
                created_at=row.created_at, deleted_at=row.deleted_at)


def _membership(row: MembershipRow) -> Membership:
    return Membership(
        id=row.id, name=row.name, library_id=row.library_id, duration=row.duration,
        active_loan_limit=row.active_loan_limit, loan_period=row.loan_period,
        fine_per_day=row.fine_per_day, price=row.price, usage_limit=row.usage_limit,
        created_at=row.created_at, deleted_at=row.deleted_at,
    )


def _subscription(row: SubscriptionRow) -> Subscription:
    return Subscription(
        id=row.id, user_id=row.user_id, membership_id=row.membership_id,
        expires_at=row.expires_at, loan_period=row.loan_period, fine_per_day=row.fine_per_day,
        active_loan_limit=row.active_loan_limit, usage_limit=row.usage_limit, amount=row.amount,
        created_at=row.created_at, deleted_at=row.deleted_at,
    )


def _borrowing(row: BorrowingRow) -> Borrowing:
    return Borrowing(
        id=row.id, book_id=row.book_id, subscription_id=row.subscription_id,
        staff_id=row.staff_id, borrowed_at=row.borrowed_at, due_at=row.due_at,
        created_at=row.created_at, deleted_at=row.deleted_at,
    )


def _returning(row: ReturningRow) -> Returning:
    return Returning(id=row.id, borrowing_id=row.borrowing_id, staff_id=row.staff_id,
                     returned_at=row.returned_at, fine=row.fine, note=row.note,
                     deleted_at=row.deleted_at)


def _lost(row: LostRow) -> Lost:
    return Lost(id=row.id, borrowing_id=row.borrowing_id, staff_id=row.staff_id,
                reported_at=row.reported_at, fine=row.fine, note=row.note or "",
                deleted_at=row.deleted_at)


def _collection(row: CollectionRow) -> Collection:
    return Collection(id=row.id, library_id=row.library_id, title=row.title,
                      description=row.description, cover=row.cover,
                      created_at=row.created_at, deleted_at=row.deleted_at)


def _collection_book(row: CollectionBookRow) -> CollectionBook:
    return CollectionBook(id=row.id, collection_id=row.collection_id, book_id=row.book_id,
                          created_at=row.created_at)


def _watchlist(row: WatchlistRow) -> Watchlist:
    return Watchlist(id=row.id, user_id=row.user_id, book_id=row.book_id, created_at=row.created_at)


def _review(row: ReviewRow) -> Review:
    return Review(id=row.id, borrowing_id=row.borrowing_id, rating=row.rating, comment=row.comment,
                  created_at=row.created_at, updated_at=row.updated_at, deleted_at=row.deleted_at)


def _notification(row: NotificationRow) -> Notification:
    return Notification(
        id=row.id, user_id=row.user_id, title=row.title, message=row.message,
        reference_type=row.reference_type, reference_id=row.reference_id,
        read_at=row.read_at, created_at=row.created_at, updated_at=row.updated_at,
    )


def _push_token(row: PushTokenRow) -> PushToken:
    return PushToken(id=row.id, user_id=row.user_id, token=row.token,
                     provider=PushProvider(row.provider), last_seen=row.last_seen)


def _job(row: JobRow) -> Job:
    return Job(
        id=row.id, type=row.type, staff_id=row.staff_id, status=JobStatus(row.status),
        payload=row.payload or {}, result=row.result, error=row.error,
        started_at=row.started_at, finished_at=row.finished_at, created_at=row.created_at,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _paginate(session: AsyncSession, stmt: Select, skip: int, limit: int) -> tuple[list, int]:
    total = await session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
    rows = (await session.scalars(stmt.offset(skip).limit(limit))).all()
    return list(rows), total or 0


async def _by_id(session: AsyncSession, model, ids: Iterable[UUID], mapper) -> dict:
    ids = set(ids)
    if not ids:
        return {}
    rows = await session.scalars(select(model).where(model.id.in_(ids)))
    return {row.id: mapper(row) for row in rows}


def _violates(error: IntegrityError, constraint: str) -> bool:
    return constraint in str(error.orig)


class SqlRepository(Repository):
    """Repository over an ``async_sessionmaker``; optionally bound to one session."""

    def __init__(self, sessionmaker: async_sessionmaker, session: Optional[AsyncSession] = None):
        self._sessionmaker = sessionmaker
        self._bound = session

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self._bound is not None:
            yield self._bound
            return
        async with self._sessionmaker() as session:
            async with session.begin():
                yield session

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator["SqlRepository"]:
        if self._bound is not None:
            yield self
            return
        async with self._sessionmaker() as session:
            async with session.begin():
                yield SqlRepository(self._sessionmaker, session=session)

    async def _insert(self, row):
        async with self._session() as session:
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return row

    async def _update(self, model, id: UUID, values: dict):
        async with self._session() as session:
            row = await session.get(model, id)
            if row is None:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            await session.flush()
            await session.refresh(row)
            return row

    async def _soft_delete(self, model, *criteria) -> int:
        async with self._session() as session:
            result = await session.execute(
                update(model).where(model.deleted_at.is_(None), *criteria).values(deleted_at=_utcnow())
            )
            return result.rowcount

    async def lock_book(self, book_id: UUID) -> Optional[Book]:
        async with self._session() as session:
            row = await session.scalar(
                select(BookRow)
                .where(BookRow.id == book_id, BookRow.deleted_at.is_(None))
                .with_for_update()
            )
            return _book(row) if row else None

    # ── Users & identity ─────────────────────────────────────────

    async def create_user(self, user: User) -> User:
        row = await self._insert(UserRow(id=user.id, name=user.name, email=user.email, phone=user.phone))
        return _user(row)

    async def get_user(self, user_id: UUID) -> Optional[User]:
        async with self._session() as session:
            row = await session.get(UserRow, user_id)
            return _user(row) if row and row.deleted_at is None else None

    async def update_user(self, user: User) -> User:
        row = await self._update(UserRow, user.id, {"name": user.name, "email": user.email, "phone": user.phone})
        return _user(row)

    async def delete_user(self, user_id: UUID) -> None:
        await self._soft_delete(UserRow, UserRow.id == user_id)

    async def list_users(self, opt: ListUsersOption) -> tuple[list[User], int]:
        stmt = select(UserRow).where(UserRow.deleted_at.is_(None))
        if opt.ids:
            stmt = stmt.where(UserRow.id.in_(opt.ids))
        if opt.name:
            stmt = stmt.where(UserRow.name.ilike(f"%{opt.name}%"))
        if opt.email:
            stmt = stmt.where(UserRow.email.ilike(f"%{opt.email}%"))
        stmt = stmt.order_by(UserRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            return [_user(r) for r in rows], total

    async def create_auth_user(self, auth_user: AuthUser) -> AuthUser:
        row = await self._insert(AuthUserRow(
            uid=auth_user.uid, user_id=auth_user.user_id, global_role=auth_user.global_role.value,
        ))
        return _auth_user(row)

    async def get_auth_user_by_uid(self, uid: str) -> Optional[AuthUser]:
        async with self._session() as session:
            row = await session.scalar(select(AuthUserRow).where(AuthUserRow.uid == uid))
            return _auth_user(row) if row else None

    async def get_auth_user_by_user_id(self, user_id: UUID) -> Optional[AuthUser]:
        async with self._session() as session:
            row = await session.scalar(select(AuthUserRow).where(AuthUserRow.user_id == user_id))
            return _auth_user(row) if row else None

    # ── Libraries & staff ────────────────────────────────────────

    async def get_library(self, library_id: UUID) -> Optional[Library]:
        async with self._session() as session:
            row = await session.get(LibraryRow, library_id)
            return _library(row) if row and row.deleted_at is None else None

    async def create_library(self, library: Library) -> Library:
        row = await self._insert(LibraryRow(id=library.id, name=library.name, logo=library.logo))
        return _library(row)

    async def update_library(self, library: Library) -> Library:
        row = await self._update(LibraryRow, library.id, {"name": library.name, "logo": library.logo})
        return _library(row)

    async def delete_library(self, library_id: UUID) -> None:
        await self._soft_delete(LibraryRow, LibraryRow.id == library_id)

    async def list_libraries(self, opt: ListLibrariesOption) -> tuple[list[Library], int]:
        stmt = select(LibraryRow).where(LibraryRow.deleted_at.is_(None))
        if opt.ids:
            stmt = stmt.where(LibraryRow.id.in_(opt.ids))
        if opt.name:
            stmt = stmt.where(LibraryRow.name.ilike(f"%{opt.name}%"))
        stmt = stmt.order_by(LibraryRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            return [_library(r) for r in rows], total

    async def create_staff(self, staff: Staff) -> Staff:
        try:
            row = await self._insert(StaffRow(
                id=staff.id, name=staff.name, user_id=staff.user_id,
                library_id=staff.library_id, role=staff.role.value,
            ))
        except IntegrityError as e:
            if _violates(e, "uq_staffs_user_library"):
                raise StaffAlreadyExists(staff.user_id, staff.library_id) from e
            raise
        return _staff(row)

    async def update_staff(self, staff: Staff) -> Staff:
        row = await self._update(StaffRow, staff.id, {"name": staff.name, "role": staff.role.value})
        return _staff(row)

    async def get_staff(self, staff_id: UUID) -> Optional[Staff]:
        async with self._session() as session:
            row = await session.get(StaffRow, staff_id)
            if row is None or row.deleted_at is not None:
                return None
            staff = _staff(row)
            staff.user = (await _by_id(session, UserRow, [row.user_id], _user)).get(row.user_id)
            return staff

    async def list_staffs(self, opt: ListStaffsOption) -> tuple[list[Staff], int]:
        stmt = select(StaffRow).where(StaffRow.deleted_at.is_(None))
        if opt.user_ids:
            stmt = stmt.where(StaffRow.user_id.in_(opt.user_ids))
        if opt.library_ids:
            stmt = stmt.where(StaffRow.library_id.in_(opt.library_ids))
        if opt.role:
            stmt = stmt.where(StaffRow.role == opt.role)
        if opt.name:
            stmt = stmt.where(StaffRow.name.ilike(f"%{opt.name}%"))
        stmt = stmt.order_by(StaffRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            staffs = [_staff(r) for r in rows]
            if opt.include_user:
                users = await _by_id(session, UserRow, (s.user_id for s in staffs), _user)
                for s in staffs:
                    s.user = users.get(s.user_id)
            if opt.include_library:
                libs = await _by_id(session, LibraryRow, (s.library_id for s in staffs), _library)
                for s in staffs:
                    s.library = libs.get(s.library_id)
            return staffs, total

    # ── Catalog ──────────────────────────────────────────────────

    async def create_book(self, book: Book) -> Book:
        row = await self._insert(BookRow(
            id=book.id, library_id=book.library_id, code=book.code, title=book.title,
            author=book.author, year=book.year, cover=book.cover,
        ))
        return _book(row)

    async def update_book(self, book: Book) -> Book:
        row = await self._update(BookRow, book.id, {
            "code": book.code, "title": book.title, "author": book.author,
            "year": book.year, "cover": book.cover,
        })
        return _book(row)

    async def get_book(self, book_id: UUID) -> Optional[Book]:
        async with self._session() as session:
            row = await session.get(BookRow, book_id)
            return _book(row) if row and row.deleted_at is None else None

    async def list_books(self, opt: ListBooksOption) -> tuple[list[Book], int]:
        stmt = select(BookRow).where(BookRow.deleted_at.is_(None))
        if opt.library_ids:
            stmt = stmt.where(BookRow.library_id.in_(opt.library_ids))
        if opt.ids:
            stmt = stmt.where(BookRow.id.in_(opt.ids))
        if opt.code:
            stmt = stmt.where(BookRow.code == opt.code)
        if opt.title:
            stmt = stmt.where(BookRow.title.ilike(f"%{opt.title}%"))
        stmt = stmt.order_by(BookRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            return [_book(r) for r in rows], total

    # ── Collections & watchlists ─────────────────────────────────

    async def _book_counts(self, session: AsyncSession, collection_ids: list[UUID]) -> dict[UUID, int]:
        rows = await session.execute(
            select(CollectionBookRow.collection_id, func.count())
            .join(BookRow, BookRow.id == CollectionBookRow.book_id)
            .where(CollectionBookRow.collection_id.in_(collection_ids),
                   CollectionBookRow.deleted_at.is_(None),
                   BookRow.deleted_at.is_(None))
            .group_by(CollectionBookRow.collection_id)
        )
        return {collection_id: count for collection_id, count in rows}

    async def _fill_collections(self, session: AsyncSession, items: list[Collection],
                                include_library: bool = False) -> list[Collection]:
        if not items:
            return items
        counts = await self._book_counts(session, [c.id for c in items])
        libs = await _by_id(session, LibraryRow, (c.library_id for c in items), _library) if include_library else {}
        for c in items:
            c.book_count = counts.get(c.id, 0)
            c.library = libs.get(c.library_id)
        return items

    async def create_collection(self, collection: Collection) -> Collection:
        row = await self._insert(CollectionRow(
            id=collection.id, library_id=collection.library_id, title=collection.title,
            description=collection.description, cover=collection.cover,
        ))
        return _collection(row)

    async def update_collection(self, collection: Collection) -> Collection:
        row = await self._update(CollectionRow, collection.id, {
            "title": collection.title, "description": collection.description, "cover": collection.cover,
        })
        async with self._session() as session:
            return (await self._fill_collections(session, [_collection(row)]))[0]

    async def get_collection(self, collection_id: UUID) -> Optional[Collection]:
        async with self._session() as session:
            row = await session.get(CollectionRow, collection_id)
            if row is None or row.deleted_at is not None:
                return None
            return (await self._fill_collections(session, [_collection(row)], include_library=True))[0]

    async def list_collections(self, opt: ListCollectionsOption) -> tuple[list[Collection], int]:
        stmt = select(CollectionRow).where(CollectionRow.deleted_at.is_(None))
        if opt.library_ids:
            stmt = stmt.where(CollectionRow.library_id.in_(opt.library_ids))
        if opt.title:
            stmt = stmt.where(CollectionRow.title.ilike(f"%{opt.title}%"))
        stmt = stmt.order_by(CollectionRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            items = [_collection(r) for r in rows]
            return await self._fill_collections(session, items, include_library=opt.include_library), total

    async def delete_collection(self, collection_id: UUID) -> None:
        async with self._session() as session:
            now = _utcnow()
            await session.execute(update(CollectionBookRow)
                                  .where(CollectionBookRow.collection_id == collection_id,
                                         CollectionBookRow.deleted_at.is_(None))
                                  .values(deleted_at=now))
            await session.execute(update(CollectionRow)
                                  .where(CollectionRow.id == collection_id)
                                  .values(deleted_at=now))

    async def _with_books(self, session: AsyncSession, links: list[CollectionBook]) -> list[CollectionBook]:
        books = await _by_id(session, BookRow, (link.book_id for link in links), _book)
        for link in links:
            link.book = books.get(link.book_id)
        return links

    async def list_collection_books(
        self, collection_id: UUID, opt: ListCollectionBooksOption
    ) -> tuple[list[CollectionBook], int]:
        stmt = (
            select(CollectionBookRow)
            .join(BookRow, BookRow.id == CollectionBookRow.book_id)
            .where(CollectionBookRow.collection_id == collection_id,
                   CollectionBookRow.deleted_at.is_(None),
                   BookRow.deleted_at.is_(None))
        )
        if opt.title:
            stmt = stmt.where(BookRow.title.ilike(f"%{opt.title}%"))
        stmt = stmt.order_by(CollectionBookRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            return await self._with_books(session, [_collection_book(r) for r in rows]), total

    async def add_collection_books(self, collection_id: UUID, book_ids: list[UUID]) -> list[CollectionBook]:
        book_ids = list(dict.fromkeys(book_ids))
        if not book_ids:
            return []
        live = (
            select(CollectionBookRow)
            .where(CollectionBookRow.collection_id == collection_id,
                   CollectionBookRow.book_id.in_(book_ids),
                   CollectionBookRow.deleted_at.is_(None))
        )
        async with self._session() as session:
            linked = {row.book_id for row in await session.scalars(live)}
            for book_id in book_ids:
                if book_id not in linked:
                    session.add(CollectionBookRow(collection_id=collection_id, book_id=book_id))
            await session.flush()
            rows = await session.scalars(live.order_by(CollectionBookRow.created_at.desc()))
            return await self._with_books(session, [_collection_book(r) for r in rows])

    async def remove_collection_books(self, collection_id: UUID, book_ids: list[UUID]) -> None:
        if not book_ids:
            return
        await self._soft_delete(CollectionBookRow,
                                CollectionBookRow.collection_id == collection_id,
                                CollectionBookRow.book_id.in_(book_ids))

    async def add_watchlist(self, watchlist: Watchlist) -> Watchlist:
        try:
            row = await self._insert(WatchlistRow(id=watchlist.id, user_id=watchlist.user_id, book_id=watchlist.book_id))
        except IntegrityError as e:
            if _violates(e, "uq_watchlists_user_book"):
                raise AlreadyInWatchlist(watchlist.book_id) from e
            raise
        return _watchlist(row)

    async def delete_watchlist(self, user_id: UUID, book_id: UUID) -> bool:
        return await self._soft_delete(WatchlistRow,
                                       WatchlistRow.user_id == user_id,
                                       WatchlistRow.book_id == book_id) > 0

    async def list_watchlists(self, opt: ListWatchlistsOption) -> tuple[list[Watchlist], int]:
        stmt = (
            select(WatchlistRow)
            .join(BookRow, BookRow.id == WatchlistRow.book_id)
            .where(WatchlistRow.deleted_at.is_(None), BookRow.deleted_at.is_(None))
        )
        if opt.user_ids:
            stmt = stmt.where(WatchlistRow.user_id.in_(opt.user_ids))
        if opt.book_ids:
            stmt = stmt.where(WatchlistRow.book_id.in_(opt.book_ids))
        if opt.library_ids:
            stmt = stmt.where(BookRow.library_id.in_(opt.library_ids))
        if opt.title:
            stmt = stmt.where(BookRow.title.ilike(f"%{opt.title}%"))
        stmt = stmt.order_by(WatchlistRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            items = [_watchlist(r) for r in rows]
            books = await _by_id(session, BookRow, (w.book_id for w in items), _book)
            for w in items:
                w.book = books.get(w.book_id)
            return items, total

    # ── Plans ────────────────────────────────────────────────────

    async def create_membership(self, membership: Membership) -> Membership:
        row = await self._insert(MembershipRow(
            id=membership.id, name=membership.name, library_id=membership.library_id,
            duration=membership.duration, active_loan_limit=membership.active_loan_limit,
            loan_period=membership.loan_period, fine_per_day=membership.fine_per_day,
            price=membership.price, usage_limit=membership.usage_limit,
        ))
        return _membership(row)

    async def update_membership(self, membership: Membership) -> Membership:
        row = await self._update(MembershipRow, membership.id, {
            "name": membership.name, "duration": membership.duration,
            "active_loan_limit": membership.active_loan_limit, "loan_period": membership.loan_period,
            "fine_per_day": membership.fine_per_day, "price": membership.price,
            "usage_limit": membership.usage_limit,
        })
        return _membership(row)

    async def get_membership(self, membership_id: UUID, include_deleted: bool = False) -> Optional[Membership]:
        async with self._session() as session:
            row = await session.get(MembershipRow, membership_id)
            if row is None or (row.deleted_at is not None and not include_deleted):
                return None
            return _membership(row)

    async def list_memberships(self, opt: ListMembershipsOption) -> tuple[list[Membership], int]:
        stmt = select(MembershipRow).where(MembershipRow.deleted_at.is_(None))
        if opt.library_ids:
            stmt = stmt.where(MembershipRow.library_id.in_(opt.library_ids))
        if opt.name:
            stmt = stmt.where(MembershipRow.name.ilike(f"%{opt.name}%"))
        stmt = stmt.order_by(MembershipRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            return [_membership(r) for r in rows], total

    async def create_subscription(self, subscription: Subscription) -> Subscription:
        row = await self._insert(SubscriptionRow(
            id=subscription.id, user_id=subscription.user_id, membership_id=subscription.membership_id,
            expires_at=subscription.expires_at, loan_period=subscription.loan_period,
            fine_per_day=subscription.fine_per_day, active_loan_limit=subscription.active_loan_limit,
            usage_limit=subscription.usage_limit, amount=subscription.amount,
        ))
        return _subscription(row)

    async def update_subscription(self, subscription: Subscription) -> Subscription:
        row = await self._update(SubscriptionRow, subscription.id, {
            "expires_at": subscription.expires_at, "loan_period": subscription.loan_period,
            "fine_per_day": subscription.fine_per_day,
            "active_loan_limit": subscription.active_loan_limit,
            "usage_limit": subscription.usage_limit, "amount": subscription.amount,
        })
        return _subscription(row)

    async def get_subscription(self, subscription_id: UUID) -> Optional[Subscription]:
        async with self._session() as session:
            row = await session.get(SubscriptionRow, subscription_id)
            if row is None or row.deleted_at is not None:
                return None
            sub = _subscription(row)
            membership = await session.get(MembershipRow, row.membership_id)
            sub.membership = _membership(membership) if membership else None
            user = await session.get(UserRow, row.user_id)
            sub.user = _user(user) if user else None
            return sub

    async def list_subscriptions(self, opt: ListSubscriptionsOption) -> tuple[list[Subscription], int]:
        stmt = select(SubscriptionRow).where(SubscriptionRow.deleted_at.is_(None))
        if opt.user_ids:
            stmt = stmt.where(SubscriptionRow.user_id.in_(opt.user_ids))
        if opt.membership_ids:
            stmt = stmt.where(SubscriptionRow.membership_id.in_(opt.membership_ids))
        if opt.library_ids:
            stmt = stmt.where(SubscriptionRow.membership_id.in_(
                select(MembershipRow.id).where(MembershipRow.library_id.in_(opt.library_ids))
            ))
        if opt.is_active is not None:
            now = opt.now or _utcnow()
            stmt = stmt.where(
                SubscriptionRow.expires_at > now if opt.is_active else SubscriptionRow.expires_at <= now
            )
        stmt = stmt.order_by(SubscriptionRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            subs = [_subscription(r) for r in rows]
            if opt.include_user:
                users = await _by_id(session, UserRow, (s.user_id for s in subs), _user)
                for s in subs:
                    s.user = users.get(s.user_id)
            if opt.include_membership:
                mems = await _by_id(session, MembershipRow, (s.membership_id for s in subs), _membership)
                for s in subs:
                    s.membership = mems.get(s.membership_id)
            return subs, total

    # ── Loans ────────────────────────────────────────────────────

    async def create_borrowing(self, borrowing: Borrowing) -> Borrowing:
        try:
            row = await self._insert(BorrowingRow(
                id=borrowing.id, book_id=borrowing.book_id, subscription_id=borrowing.subscription_id,
                staff_id=borrowing.staff_id, borrowed_at=borrowing.borrowed_at, due_at=borrowing.due_at,
            ))
        except IntegrityError as e:
            if _violates(e, "uq_borrowings_active_book"):
                raise BookNotAvailable(borrowing.book_id) from e
            raise
        return _borrowing(row)

    async def _hydrate(
        self,
        session: AsyncSession,
        rows: list[BorrowingRow],
        include_book: bool = True,
        include_subscription: bool = True,
        include_staff: bool = True,
    ) -> list[Borrowing]:
        items = [_borrowing(r) for r in rows]
        if not items:
            return items
        ids = [b.id for b in items]

        returnings = await session.scalars(select(ReturningRow).where(
            ReturningRow.borrowing_id.in_(ids), ReturningRow.deleted_at.is_(None)))
        by_returning = {r.borrowing_id: _returning(r) for r in returnings}
        losts = await session.scalars(select(LostRow).where(
            LostRow.borrowing_id.in_(ids), LostRow.deleted_at.is_(None)))
        by_lost = {r.borrowing_id: _lost(r) for r in losts}

        books = await _by_id(session, BookRow, (b.book_id for b in items), _book) if include_book else {}
        staffs = await _by_id(session, StaffRow, (b.staff_id for b in items), _staff) if include_staff else {}
        subs: dict = {}
        if include_subscription:
            subs = await _by_id(session, SubscriptionRow, (b.subscription_id for b in items), _subscription)
            users = await _by_id(session, UserRow, (s.user_id for s in subs.values()), _user)
            mems = await _by_id(session, MembershipRow, (s.membership_id for s in subs.values()), _membership)
            for s in subs.values():
                s.user = users.get(s.user_id)
                s.membership = mems.get(s.membership_id)

        for b in items:
            b.returning = by_returning.get(b.id)
            b.lost = by_lost.get(b.id)
            b.book = books.get(b.book_id)
            b.staff = staffs.get(b.staff_id)
            b.subscription = subs.get(b.subscription_id)
        return items

    async def get_borrowing(self, borrowing_id: UUID, for_update: bool = False) -> Optional[Borrowing]:
        stmt = select(BorrowingRow).where(BorrowingRow.id == borrowing_id, BorrowingRow.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update()
        async with self._session() as session:
            row = await session.scalar(stmt)
            if row is None:
                return None
            return (await self._hydrate(session, [row]))[0]

    def _borrowings_query(self, opt: ListBorrowingsOption) -> Select:
        stmt = select(BorrowingRow).where(BorrowingRow.deleted_at.is_(None))
        has_returning = exists().where(
            ReturningRow.borrowing_id == BorrowingRow.id, ReturningRow.deleted_at.is_(None))
        has_lost = exists().where(
            LostRow.borrowing_id == BorrowingRow.id, LostRow.deleted_at.is_(None))

        if opt.book_ids:
            stmt = stmt.where(BorrowingRow.book_id.in_(opt.book_ids))
        if opt.subscription_ids:
            stmt = stmt.where(BorrowingRow.subscription_id.in_(opt.subscription_ids))
        if opt.staff_ids:
            stmt = stmt.where(BorrowingRow.staff_id.in_(opt.staff_ids))
        if opt.user_ids:
            stmt = stmt.where(BorrowingRow.subscription_id.in_(
                select(SubscriptionRow.id).where(SubscriptionRow.user_id.in_(opt.user_ids))))
        if opt.library_ids:
            stmt = stmt.where(BorrowingRow.book_id.in_(
                select(BookRow.id).where(BookRow.library_id.in_(opt.library_ids))))
        if opt.is_active or opt.is_overdue:
            stmt = stmt.where(~has_returning, ~has_lost)
        if opt.is_overdue:
            stmt = stmt.where(BorrowingRow.due_at < (opt.now or _utcnow()))
        if opt.is_returned:
            stmt = stmt.where(has_returning)
        if opt.is_lost:
            stmt = stmt.where(has_lost)
        if opt.borrowed_at_from:
            stmt = stmt.where(BorrowingRow.borrowed_at >= opt.borrowed_at_from)
        if opt.borrowed_at_to:
            stmt = stmt.where(BorrowingRow.borrowed_at <= opt.borrowed_at_to)
        if opt.due_at_from:
            stmt = stmt.where(BorrowingRow.due_at > opt.due_at_from)
        if opt.due_at_to:
            stmt = stmt.where(BorrowingRow.due_at <= opt.due_at_to)
        return stmt

    async def list_borrowings(self, opt: ListBorrowingsOption) -> tuple[list[Borrowing], int]:
        column = getattr(BorrowingRow, opt.sort_by, BorrowingRow.created_at)
        stmt = self._borrowings_query(opt).order_by(column.desc() if opt.sort_desc else column.asc())
        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            items = await self._hydrate(
                session, rows,
                include_book=opt.include_book,
                include_subscription=opt.include_subscription,
                include_staff=opt.include_staff,
            )
            return items, total

    async def count_borrowings(self, opt: ListBorrowingsOption) -> int:
        stmt = self._borrowings_query(opt)
        async with self._session() as session:
            total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
            return total or 0

    async def create_returning(self, returning: Returning) -> Returning:
        async with self._session() as session:
            row = ReturningRow(
                id=returning.id, borrowing_id=returning.borrowing_id, staff_id=returning.staff_id,
                returned_at=returning.returned_at, fine=returning.fine, note=returning.note,
            )
            session.add(row)
            await session.execute(update(BorrowingRow)
                                  .where(BorrowingRow.id == returning.borrowing_id)
                                  .values(closed_at=returning.returned_at))
            await session.flush()
            await session.refresh(row)
            return _returning(row)

    async def delete_returning(self, borrowing_id: UUID) -> None:
        async with self._session() as session:
            now = _utcnow()
            await session.execute(update(ReturningRow)
                                  .where(ReturningRow.borrowing_id == borrowing_id,
                                         ReturningRow.deleted_at.is_(None))
                                  .values(deleted_at=now))
            await session.execute(update(BorrowingRow)
                                  .where(BorrowingRow.id == borrowing_id)
                                  .values(closed_at=None))

    async def create_lost(self, lost: Lost) -> Lost:
        async with self._session() as session:
            row = LostRow(
                id=lost.id, borrowing_id=lost.borrowing_id, staff_id=lost.staff_id,
                reported_at=lost.reported_at, fine=lost.fine, note=lost.note,
            )
            session.add(row)
            await session.execute(update(BorrowingRow)
                                  .where(BorrowingRow.id == lost.borrowing_id)
                                  .values(closed_at=lost.reported_at))
            await session.flush()
            await session.refresh(row)
            return _lost(row)

    async def delete_lost(self, borrowing_id: UUID) -> None:
        async with self._session() as session:
            now = _utcnow()
            await session.execute(update(LostRow)
                                  .where(LostRow.borrowing_id == borrowing_id, LostRow.deleted_at.is_(None))
                                  .values(deleted_at=now))
            await session.execute(update(BorrowingRow)
                                  .where(BorrowingRow.id == borrowing_id)
                                  .values(closed_at=None))

    # ── Reviews ──────────────────────────────────────────────────

    async def _hydrate_reviews(self, session: AsyncSession, items: list[Review]) -> list[Review]:
        if not items:
            return items
        borrowings = await _by_id(session, BorrowingRow, (r.borrowing_id for r in items), _borrowing)
        subs = await _by_id(session, SubscriptionRow, (b.subscription_id for b in borrowings.values()), _subscription)
        users = await _by_id(session, UserRow, (s.user_id for s in subs.values()), _user)
        books = await _by_id(session, BookRow, (b.book_id for b in borrowings.values()), _book)
        for r in items:
            borrowing = borrowings.get(r.borrowing_id)
            if borrowing is None:
                continue
            sub = subs.get(borrowing.subscription_id)
            r.book_id = borrowing.book_id
            r.book = books.get(borrowing.book_id)
            r.user_id = sub.user_id if sub else None
            r.user = users.get(sub.user_id) if sub else None
        return items

    async def create_review(self, review: Review) -> Review:
        try:
            row = await self._insert(ReviewRow(
                id=review.id, borrowing_id=review.borrowing_id, rating=review.rating, comment=review.comment,
            ))
        except IntegrityError as e:
            if _violates(e, "uq_reviews_borrowing"):
                raise BookAlreadyReviewed(review.borrowing_id) from e
            raise
        return _review(row)

    async def update_review(self, review: Review) -> Review:
        row = await self._update(ReviewRow, review.id, {"rating": review.rating, "comment": review.comment})
        return _review(row)

    async def get_review(self, review_id: UUID) -> Optional[Review]:
        async with self._session() as session:
            row = await session.get(ReviewRow, review_id)
            if row is None or row.deleted_at is not None:
                return None
            return (await self._hydrate_reviews(session, [_review(row)]))[0]

    async def list_reviews(self, opt: ListReviewsOption) -> tuple[list[Review], int]:
        borrowings = select(BorrowingRow.id).where(BorrowingRow.deleted_at.is_(None))
        if opt.user_ids:
            borrowings = borrowings.where(BorrowingRow.subscription_id.in_(
                select(SubscriptionRow.id).where(SubscriptionRow.user_id.in_(opt.user_ids))))
        if opt.book_ids:
            borrowings = borrowings.where(BorrowingRow.book_id.in_(opt.book_ids))
        if opt.library_ids:
            borrowings = borrowings.where(BorrowingRow.book_id.in_(
                select(BookRow.id).where(BookRow.library_id.in_(opt.library_ids))))

        stmt = select(ReviewRow).where(ReviewRow.deleted_at.is_(None), ReviewRow.borrowing_id.in_(borrowings))
        if opt.borrowing_ids:
            stmt = stmt.where(ReviewRow.borrowing_id.in_(opt.borrowing_ids))
        if opt.rating is not None:
            stmt = stmt.where(ReviewRow.rating == opt.rating)
        column = getattr(ReviewRow, opt.sort_by, ReviewRow.created_at)
        stmt = stmt.order_by(column.desc() if opt.sort_desc else column.asc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            return await self._hydrate_reviews(session, [_review(r) for r in rows]), total

    async def delete_review(self, review_id: UUID) -> None:
        await self._soft_delete(ReviewRow, ReviewRow.id == review_id)

    # ── Notifications ────────────────────────────────────────────

    async def create_notification(self, notification: Notification) -> Notification:
        row = await self._insert(NotificationRow(
            id=notification.id, user_id=notification.user_id, title=notification.title,
            message=notification.message, reference_type=notification.reference_type,
            reference_id=notification.reference_id,
        ))
        return _notification(row)

    async def list_notifications(self, opt: ListNotificationsOption) -> tuple[list[Notification], int, int]:
        stmt = select(NotificationRow)
        if opt.user_id:
            stmt = stmt.where(NotificationRow.user_id == opt.user_id)
        if opt.is_unread is not None:
            stmt = stmt.where(
                NotificationRow.read_at.is_(None) if opt.is_unread else NotificationRow.read_at.is_not(None)
            )
        stmt = stmt.order_by(NotificationRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            unread_stmt = select(func.count()).select_from(NotificationRow).where(
                NotificationRow.read_at.is_(None))
            if opt.user_id:
                unread_stmt = unread_stmt.where(NotificationRow.user_id == opt.user_id)
            unread = await session.scalar(unread_stmt)
            return [_notification(r) for r in rows], unread or 0, total

    async def read_notification(self, notification_id: UUID, user_id: UUID, read_at: datetime) -> bool:
        async with self._session() as session:
            result = await session.execute(
                update(NotificationRow)
                .where(NotificationRow.id == notification_id,
                       NotificationRow.user_id == user_id,
                       NotificationRow.read_at.is_(None))
                .values(read_at=read_at)
            )
            return result.rowcount > 0

    async def read_all_notifications(self, user_id: UUID, read_at: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(
                update(NotificationRow)
                .where(NotificationRow.user_id == user_id, NotificationRow.read_at.is_(None))
                .values(read_at=read_at)
            )
            return result.rowcount

    async def save_push_token(self, token: PushToken) -> PushToken:
        async with self._session() as session:
            row = await session.scalar(select(PushTokenRow).where(
                PushTokenRow.user_id == token.user_id,
                PushTokenRow.token == token.token,
                PushTokenRow.deleted_at.is_(None),
            ))
            if row is None:
                row = PushTokenRow(id=token.id, user_id=token.user_id, token=token.token)
                session.add(row)
            row.provider = token.provider.value
            row.last_seen = token.last_seen or _utcnow()
            await session.flush()
            await session.refresh(row)
            return _push_token(row)

    async def list_push_tokens(self, user_id: UUID) -> list[PushToken]:
        async with self._session() as session:
            rows = await session.scalars(select(PushTokenRow).where(
                PushTokenRow.user_id == user_id, PushTokenRow.deleted_at.is_(None)))
            return [_push_token(r) for r in rows]

    async def delete_push_tokens(self, user_id: UUID, tokens: list[str]) -> None:
        if not tokens:
            return
        async with self._session() as session:
            await session.execute(
                update(PushTokenRow)
                .where(PushTokenRow.user_id == user_id,
                       PushTokenRow.token.in_(tokens),
                       PushTokenRow.deleted_at.is_(None))
                .values(deleted_at=_utcnow())
            )

    # ── Jobs ─────────────────────────────────────────────────────

    async def create_job(self, job: Job) -> Job:
        row = await self._insert(JobRow(
            id=job.id, type=job.type, staff_id=job.staff_id, status=job.status.value,
            payload=job.payload, result=job.result, error=job.error,
        ))
        return _job(row)

    async def update_job(self, job: Job) -> Job:
        row = await self._update(JobRow, job.id, {
            "status": job.status.value, "result": job.result, "error": job.error,
            "started_at": job.started_at, "finished_at": job.finished_at,
        })
        return _job(row)

    async def get_job(self, job_id: UUID) -> Optional[Job]:
        async with self._session() as session:
            row = await session.get(JobRow, job_id)
            if row is None:
                return None
            job = _job(row)
            staff = await session.get(StaffRow, row.staff_id)
            job.staff = _staff(staff) if staff else None
            return job

    async def list_jobs(self, opt: ListJobsOption) -> tuple[list[Job], int]:
        stmt = select(JobRow)
        if opt.staff_ids:
            stmt = stmt.where(JobRow.staff_id.in_(opt.staff_ids))
        if opt.types:
            stmt = stmt.where(JobRow.type.in_(opt.types))
        if opt.statuses:
            stmt = stmt.where(or_(*(JobRow.status == s for s in opt.statuses)))
        stmt = stmt.order_by(JobRow.created_at.desc())

        async with self._session() as session:
            rows, total = await _paginate(session, stmt, opt.skip, opt.limit)
            jobs = [_job(r) for r in rows]
            if opt.include_staff:
                staffs = await _by_id(session, StaffRow, (j.staff_id for j in jobs), _staff)
                for j in jobs:
                    j.staff = staffs.get(j.staff_id)
            return jobs, total

    async def delete_job(self, job_id: UUID) -> None:
        async with self._session() as session:
            await session.execute(delete(JobRow).where(JobRow.id == job_id))
