"""Re-export all SQLAlchemy models for Alembic and import convenience."""

from librarease.models.tables import (  # noqa: F401
    LibraryRow, UserRow, AuthUserRow, StaffRow,
    BookRow, CollectionRow, CollectionBookRow, WatchlistRow,
    MembershipRow, SubscriptionRow,
    BorrowingRow, ReturningRow, LostRow, ReviewRow,
    NotificationRow, PushTokenRow,
    JobRow,
    AssetRow,
)
