"""Staff assignments: which users work in which library, and as what.

A user holds at most one live staff row per library. Every change to a
user's assignments republishes their identity claims.
"""

import logging
import uuid
from typing import Optional
from uuid import UUID

from librarease.entities import Actor, Staff, StaffRole
from librarease.repository.base import ListStaffsOption, Repository
from librarease.services.auth import AuthService
from librarease.services.authz import library_scope, require_library_staff
from librarease.services.errors import NotFoundError, StaffAlreadyExists, UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)


def _role(value) -> StaffRole:
    try:
        return StaffRole(value)
    except ValueError as e:
        raise ValidationError(f"invalid staff role: {value}") from e


class StaffService:
    def __init__(self, repo: Repository, auth: AuthService):
        self.repo = repo
        self.auth = auth

    async def list_staffs(self, actor: Actor, opt: ListStaffsOption) -> tuple[list[Staff], int]:
        """Staff see their libraries' rosters; everyone else only their own rows."""
        scope = await library_scope(self.repo, actor, opt.library_ids)
        if scope is None and not actor.is_global_admin:
            opt.user_ids = [actor.user_id]
        else:
            opt.library_ids = scope or []
        return await self.repo.list_staffs(opt)

    async def get_staff(self, staff_id: UUID) -> Staff:
        staff = await self.repo.get_staff(staff_id)
        if staff is None:
            raise NotFoundError("staff", staff_id)
        return staff

    async def create_staff(
        self,
        actor: Actor,
        library_id: UUID,
        user_id: UUID,
        name: Optional[str] = None,
        role: StaffRole = StaffRole.STAFF,
    ) -> Staff:
        await require_library_staff(self.repo, actor, library_id, admin_only=True)
        if await self.repo.get_library(library_id) is None:
            raise NotFoundError("library", library_id)
        user = await self.repo.get_user(user_id)
        if user is None:
            raise NotFoundError("user", user_id)

        existing, _ = await self.repo.list_staffs(ListStaffsOption(user_ids=[user_id], library_ids=[library_id], limit=1))
        if existing:
            raise StaffAlreadyExists(user_id, library_id)

        staff = await self.repo.create_staff(Staff(
            id=uuid.uuid4(), name=(name or user.name).strip(), user_id=user_id,
            library_id=library_id, role=_role(role),
        ))
        logger.info(f"Staff {staff.id} ({staff.role.value}) assigned: user {user_id} in library {library_id}")
        await self.auth.refresh_claims(user_id)
        return staff

    async def update_staff(
        self, actor: Actor, staff_id: UUID, name: Optional[str] = None, role: Optional[StaffRole] = None
    ) -> Staff:
        staff = await self.get_staff(staff_id)
        own = await require_library_staff(self.repo, actor, staff.library_id, admin_only=True)
        if own is not None and own.id == staff.id and role is not None and _role(role) != staff.role:
            raise UnauthorizedError("library admins cannot change their own role")
        if name is not None:
            if not name.strip():
                raise ValidationError("name must not be blank")
            staff.name = name.strip()
        role_changed = role is not None and _role(role) != staff.role
        if role is not None:
            staff.role = _role(role)

        updated = await self.repo.update_staff(staff)
        if role_changed:
            await self.auth.refresh_claims(staff.user_id)
        return updated
