"""Error taxonomy shared by every core operation.

The HTTP layer maps ``kind`` to a status code; nothing should ever need to
inspect the message text.
"""

from typing import Optional
from uuid import UUID


class LibrareaseError(Exception):
    """Base class. ``kind`` selects the status code, ``code`` is machine-readable."""

    kind = "internal"
    code = "internal_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code.replace("_", " "))


class ValidationError(LibrareaseError):
    kind = "validation"
    code = "validation_error"


class NotFoundError(LibrareaseError):
    kind = "not_found"

    def __init__(self, entity: str, id: object, code: Optional[str] = None):
        self.entity = entity
        self.id = id
        self.code = code or f"{entity}_not_found"
        super().__init__(f"{entity} {id} not found")


class UnauthorizedError(LibrareaseError):
    kind = "unauthorized"
    code = "unauthorized"


class UpstreamError(LibrareaseError):
    kind = "upstream"
    code = "upstream_error"


class InternalError(LibrareaseError):
    kind = "internal"
    code = "internal_error"


# ── Domain invariants (conflicts) ────────────────────────────────

class ConflictError(LibrareaseError):
    kind = "conflict"
    code = "conflict"


class MembershipExpired(ConflictError):
    code = "membership_expired"

    def __init__(self, subscription_id: UUID):
        super().__init__(f"membership subscription {subscription_id} expired")


class MembershipDeleted(ConflictError):
    code = "membership_deleted"

    def __init__(self, membership_id: UUID):
        super().__init__(f"membership {membership_id} is deleted")


class UsageLimitReached(ConflictError):
    code = "usage_limit_reached"

    def __init__(self, subscription_id: UUID, limit: int):
        super().__init__(f"subscription {subscription_id} has reached the usage limit {limit}")


class ActiveLoanLimitReached(ConflictError):
    code = "active_loan_limit_reached"

    def __init__(self, subscription_id: UUID, limit: int):
        super().__init__(f"subscription {subscription_id} has reached the active loan limit {limit}")


class BookNotAvailable(ConflictError):
    code = "book_not_available"

    def __init__(self, book_id: UUID, reason: str = "borrowed"):
        super().__init__(f"book {book_id} is not available ({reason})")


class BookNotInLibrary(ConflictError):
    code = "book_not_in_library"

    def __init__(self, book_id: UUID, library_id: UUID):
        super().__init__(f"book {book_id} is not in library {library_id}")


class StaffNotInLibrary(ConflictError):
    code = "staff_not_in_library"

    def __init__(self, staff_id: Optional[UUID], library_id: UUID):
        super().__init__(f"staff {staff_id} is not from library {library_id}")


class AlreadyReturned(ConflictError):
    code = "already_returned"

    def __init__(self, borrowing_id: UUID):
        super().__init__(f"borrowing {borrowing_id} already returned")


class AlreadyLost(ConflictError):
    code = "already_lost"

    def __init__(self, borrowing_id: UUID):
        super().__init__(f"borrowing {borrowing_id} already reported lost")


class NotReturned(ConflictError):
    code = "not_returned"

    def __init__(self, borrowing_id: UUID):
        super().__init__(f"borrowing {borrowing_id} has not been returned")


class NotLost(ConflictError):
    code = "not_lost"

    def __init__(self, borrowing_id: UUID):
        super().__init__(f"borrowing {borrowing_id} has not been reported lost")


class InvalidReturnDate(ConflictError):
    code = "invalid_return_date"

    def __init__(self):
        super().__init__("returned at date is before borrowed at date")


class InvalidReportDate(ConflictError):
    code = "invalid_report_date"

    def __init__(self):
        super().__init__("reported at date is before borrowed at date")


class NotLatestBorrowing(ConflictError):
    code = "not_latest_borrowing"

    def __init__(self, borrowing_id: UUID):
        super().__init__(f"borrowing {borrowing_id} is not the latest borrowing for the book")


class BookCodeTaken(ConflictError):
    code = "book_code_taken"

    def __init__(self, code: str):
        super().__init__(f"code '{code}' already exists")


class NoChangesDetected(ConflictError):
    code = "no_changes_detected"

    def __init__(self):
        super().__init__("no changes detected")


class StaffAlreadyExists(ConflictError):
    code = "staff_already_exists"

    def __init__(self, user_id: UUID, library_id: UUID):
        super().__init__(f"user {user_id} is already staff of library {library_id}")


class BookAlreadyReviewed(ConflictError):
    code = "book_already_reviewed"

    def __init__(self, borrowing_id: UUID):
        super().__init__(f"borrowing {borrowing_id} already has a review")


class AlreadyInWatchlist(ConflictError):
    code = "already_in_watchlist"

    def __init__(self, book_id: UUID):
        super().__init__(f"book {book_id} is already in the watchlist")


class JobStateError(ConflictError):
    code = "job_state_error"


class JobNotCompleted(ConflictError):
    code = "job_not_completed"

    def __init__(self, job_id: UUID):
        super().__init__(f"job {job_id} is not completed")


STATUS_BY_KIND = {
    "validation": 422,
    "not_found": 404,
    "conflict": 400,
    "unauthorized": 401,
    "upstream": 500,
    "internal": 500,
}
