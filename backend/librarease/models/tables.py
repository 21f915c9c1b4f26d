"""SQLAlchemy ORM models: all database tables."""

import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    Integer, String, Text, Boolean, DateTime, ForeignKey, Index, Uuid, text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from librarease.database import Base


def _not_deleted(name: str, *columns: str) -> Index:
    """Unique index that only covers live (non soft-deleted) rows."""
    return Index(name, *columns, unique=True, postgresql_where=text("deleted_at IS NULL"))


class _Row:
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ── Tenancy & people ─────────────────────────────────────────────

class LibraryRow(_Row, Base):
    __tablename__ = "libraries"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    logo: Mapped[Optional[str]] = mapped_column(String(500))


class UserRow(_Row, Base):
    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(300), unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))


class AuthUserRow(Base):
    __tablename__ = "auth_users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    uid: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), unique=True)
    global_role: Mapped[str] = mapped_column(String(20), default="USER")  # SUPERADMIN | ADMIN | USER
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class StaffRow(_Row, Base):
    __tablename__ = "staffs"
    __table_args__ = (
        _not_deleted("uq_staffs_user_library", "user_id", "library_id"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"))
    library_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("libraries.id"))
    role: Mapped[str] = mapped_column(String(10), default="STAFF")  # ADMIN | STAFF


# ── Catalog ──────────────────────────────────────────────────────

class BookRow(_Row, Base):
    __tablename__ = "books"
    __table_args__ = (
        _not_deleted("uq_books_library_code", "library_id", "code"),
    )

    library_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("libraries.id"), index=True)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    author: Mapped[str] = mapped_column(String(300), nullable=False)
    year: Mapped[int] = mapped_column(Integer, default=0)
    cover: Mapped[Optional[str]] = mapped_column(String(500))


class CollectionRow(_Row, Base):
    __tablename__ = "collections"

    library_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("libraries.id"), index=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    cover: Mapped[Optional[str]] = mapped_column(String(500))


class CollectionBookRow(_Row, Base):
    __tablename__ = "collection_books"
    __table_args__ = (
        _not_deleted("uq_collection_books", "collection_id", "book_id"),
    )

    collection_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("collections.id"))
    book_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("books.id"))


class WatchlistRow(_Row, Base):
    __tablename__ = "watchlists"
    __table_args__ = (
        _not_deleted("uq_watchlists_user_book", "user_id", "book_id"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"))
    book_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("books.id"))


# ── Plans ────────────────────────────────────────────────────────

class MembershipRow(_Row, Base):
    __tablename__ = "memberships"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    library_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("libraries.id"), index=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    active_loan_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    loan_period: Mapped[int] = mapped_column(Integer, nullable=False)
    fine_per_day: Mapped[int] = mapped_column(Integer, default=0)
    price: Mapped[int] = mapped_column(Integer, default=0)
    usage_limit: Mapped[int] = mapped_column(Integer, default=0)


class SubscriptionRow(_Row, Base):
    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), index=True)
    membership_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("memberships.id"), index=True)
    # Snapshot of the membership at purchase time
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    loan_period: Mapped[int] = mapped_column(Integer, nullable=False)
    fine_per_day: Mapped[int] = mapped_column(Integer, default=0)
    active_loan_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    usage_limit: Mapped[int] = mapped_column(Integer, default=0)
    amount: Mapped[int] = mapped_column(Integer, default=0)


# ── Loans ────────────────────────────────────────────────────────

class BorrowingRow(_Row, Base):
    __tablename__ = "borrowings"
    __table_args__ = (
        # closed_at mirrors the existence of a live returning/lost child
        Index(
            "uq_borrowings_active_book", "book_id", unique=True,
            postgresql_where=text("closed_at IS NULL AND deleted_at IS NULL"),
        ),
        Index("idx_borrowings_due", "due_at"),
    )

    book_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("books.id"), index=True)
    subscription_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("subscriptions.id"), index=True)
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staffs.id"))
    borrowed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    due_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class ReturningRow(_Row, Base):
    __tablename__ = "returnings"
    __table_args__ = (
        _not_deleted("uq_returnings_borrowing", "borrowing_id"),
    )

    borrowing_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("borrowings.id"))
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staffs.id"))
    returned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    fine: Mapped[int] = mapped_column(Integer, default=0)
    note: Mapped[Optional[str]] = mapped_column(Text)


class LostRow(_Row, Base):
    __tablename__ = "losts"
    __table_args__ = (
        _not_deleted("uq_losts_borrowing", "borrowing_id"),
    )

    borrowing_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("borrowings.id"))
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staffs.id"))
    reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    fine: Mapped[int] = mapped_column(Integer, default=0)
    note: Mapped[str] = mapped_column(Text, default="")


class ReviewRow(_Row, Base):
    __tablename__ = "reviews"
    __table_args__ = (
        _not_deleted("uq_reviews_borrowing", "borrowing_id"),
    )

    borrowing_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("borrowings.id"))
    rating: Mapped[int] = mapped_column(Integer, nullable=False)  # 0-5
    comment: Mapped[Optional[str]] = mapped_column(Text)


# ── Notifications ────────────────────────────────────────────────

class NotificationRow(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_user_unread", "user_id", "read_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"))
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    reference_type: Mapped[Optional[str]] = mapped_column(String(50))
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PushTokenRow(_Row, Base):
    __tablename__ = "push_tokens"
    __table_args__ = (
        _not_deleted("uq_push_tokens_user_token", "user_id", "token"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"))
    token: Mapped[str] = mapped_column(String(500), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)  # fcm | apns | webpush
    last_seen: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ── Jobs ─────────────────────────────────────────────────────────

class JobRow(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_staff_status", "staff_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staffs.id"))
    status: Mapped[str] = mapped_column(String(20), default="PENDING")
    payload: Mapped[dict] = mapped_column(JSONB, default=dict)
    result: Mapped[Optional[dict]] = mapped_column(JSONB)
    error: Mapped[Optional[str]] = mapped_column(Text)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ── Assets ───────────────────────────────────────────────────────

class AssetRow(_Row, Base):
    __tablename__ = "assets"
    __table_args__ = (
        Index("idx_assets_owner", "owner_type", "owner_id"),
    )

    owner_type: Mapped[str] = mapped_column(String(20), nullable=False)  # books | collections | libraries
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    colors: Mapped[Optional[dict]] = mapped_column(JSONB)
