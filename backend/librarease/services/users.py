"""User profiles and the per-user book watchlist."""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from librarease.entities import Actor, GlobalRole, Staff, User, Watchlist
from librarease.repository.base import ListStaffsOption, ListUsersOption, ListWatchlistsOption, Repository
from librarease.services.authz import staff_of
from librarease.services.errors import NotFoundError, UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "email", "phone")


@dataclass
class Profile:
    """The caller's user row, global role and staff assignments."""
    user: User
    global_role: GlobalRole
    staffs: list[Staff] = field(default_factory=list)


class UserService:
    def __init__(self, repo: Repository):
        self.repo = repo

    async def _require_staff_or_admin(self, actor: Actor) -> None:
        if actor.is_global_admin:
            return
        if not await staff_of(self.repo, actor):
            raise UnauthorizedError("only staff can look up other users")

    async def list_users(self, actor: Actor, opt: ListUsersOption) -> tuple[list[User], int]:
        await self._require_staff_or_admin(actor)
        return await self.repo.list_users(opt)

    async def get_user(self, actor: Actor, user_id: UUID) -> User:
        if user_id != actor.user_id:
            await self._require_staff_or_admin(actor)
        user = await self.repo.get_user(user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    async def get_me(self, actor: Actor) -> Profile:
        user = await self.get_user(actor, actor.user_id)
        staffs, _ = await self.repo.list_staffs(ListStaffsOption(
            user_ids=[actor.user_id], include_library=True, limit=500,
        ))
        return Profile(user=user, global_role=actor.role, staffs=staffs)

    async def create_user(
        self, actor: Actor, name: str, email: Optional[str] = None, phone: Optional[str] = None
    ) -> User:
        """A patron record without a login, created at the desk."""
        await self._require_staff_or_admin(actor)
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")
        user = await self.repo.create_user(User(id=uuid.uuid4(), name=name, email=email or None, phone=phone or None))
        logger.info(f"User {user.id} created by {actor.user_id}")
        return user

    async def update_user(self, actor: Actor, user_id: UUID, **changes) -> User:
        if user_id != actor.user_id and not actor.is_global_admin:
            raise UnauthorizedError("users can only update themselves")
        user = await self.get_user(actor, user_id)

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"unexpected user fields: {sorted(unknown)}")
        for name, value in changes.items():
            if value is not None:
                setattr(user, name, value)
        if not user.name.strip():
            raise ValidationError("name must not be blank")
        return await self.repo.update_user(user)

    async def delete_user(self, actor: Actor, user_id: UUID) -> None:
        if not actor.is_global_admin:
            raise UnauthorizedError("only global admins can delete users")
        if await self.repo.get_user(user_id) is None:
            raise NotFoundError("user", user_id)
        await self.repo.delete_user(user_id)
        logger.info(f"User {user_id} deleted by {actor.user_id}")

    # ── Watchlist ────────────────────────────────────────────────

    async def list_watchlist(self, actor: Actor, opt: ListWatchlistsOption) -> tuple[list[Watchlist], int]:
        opt.user_ids = [actor.user_id]
        return await self.repo.list_watchlists(opt)

    async def add_to_watchlist(self, actor: Actor, book_id: UUID) -> Watchlist:
        book = await self.repo.get_book(book_id)
        if book is None:
            raise NotFoundError("book", book_id)
        entry = await self.repo.add_watchlist(Watchlist(id=uuid.uuid4(), user_id=actor.user_id, book_id=book_id))
        entry.book = book
        return entry

    async def remove_from_watchlist(self, actor: Actor, book_id: UUID) -> None:
        if not await self.repo.delete_watchlist(actor.user_id, book_id):
            raise NotFoundError("watchlist", book_id, code="watchlist_entry_not_found")
