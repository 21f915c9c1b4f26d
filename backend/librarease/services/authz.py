"""Role checks shared by every library-scoped operation.

Global SUPERADMIN/ADMIN pass everywhere. A USER needs a live Staff row in the
target library; library ADMIN staff may act on behalf of any staff member of
that library, plain STAFF always act as themselves.
"""

from typing import Optional
from uuid import UUID

from librarease.entities import Actor, Staff, StaffRole
from librarease.repository.base import ListStaffsOption, Repository
from librarease.services.errors import NotFoundError, UnauthorizedError, ValidationError


async def staff_of(repo: Repository, actor: Actor, library_id: Optional[UUID] = None) -> list[Staff]:
    """The actor's staff rows, optionally restricted to one library."""
    staffs, _ = await repo.list_staffs(ListStaffsOption(
        user_ids=[actor.user_id],
        library_ids=[library_id] if library_id else [],
        limit=500,
    ))
    return staffs


async def require_library_staff(
    repo: Repository, actor: Actor, library_id: UUID, admin_only: bool = False
) -> Optional[Staff]:
    """Return the actor's staff row in the library (None for global admins)."""
    if actor.is_global_admin:
        return None
    staffs = await staff_of(repo, actor, library_id)
    if not staffs:
        raise UnauthorizedError(f"user {actor.user_id} is not staff of library {library_id}")
    staff = staffs[0]
    if admin_only and staff.role != StaffRole.ADMIN:
        raise UnauthorizedError(f"user {actor.user_id} is not admin of library {library_id}")
    return staff


async def resolve_acting_staff(
    repo: Repository, actor: Actor, library_id: UUID, staff_id: Optional[UUID]
) -> Staff:
    """Pick the staff record a loan action is recorded under.

    STAFF-role actors are always recorded as themselves regardless of the
    requested ``staff_id``. The returned staff is not checked against
    ``library_id``; loan operations report that as ``StaffNotInLibrary``.
    """
    own = await require_library_staff(repo, actor, library_id)
    if own is not None and own.role == StaffRole.STAFF:
        return own
    if own is not None and staff_id is None:
        return own

    if staff_id is None:
        raise ValidationError("staff_id is required")
    staff = await repo.get_staff(staff_id)
    if staff is None:
        raise NotFoundError("staff", staff_id)
    return staff


async def library_scope(
    repo: Repository, actor: Actor, requested: list[UUID]
) -> Optional[list[UUID]]:
    """Libraries a listing may cover.

    ``None`` means the actor is not staff anywhere (or is a global admin with
    no filter) and callers must fall back to their own scope. Staff see the
    intersection of the requested libraries with the ones they work in.
    """
    if actor.is_global_admin:
        return requested or None
    assigned = [s.library_id for s in await staff_of(repo, actor)]
    if not assigned:
        return None
    if not requested:
        return assigned
    allowed = [lib for lib in requested if lib in assigned]
    if not allowed:
        raise UnauthorizedError("not staff of the requested libraries")
    return allowed
