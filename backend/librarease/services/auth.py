"""Registration and request identity resolution."""

import logging
import uuid
from typing import Optional
from uuid import UUID

from librarease.clients.base import IdentityProvider
from librarease.entities import Actor, AuthUser, GlobalRole, StaffRole, User
from librarease.repository.base import ListStaffsOption, Repository
from librarease.services.errors import UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, repo: Repository, identity: IdentityProvider, allow_user_id_header: bool = False):
        self.repo = repo
        self.identity = identity
        self.allow_user_id_header = allow_user_id_header

    async def _claims(self, auth_user: AuthUser) -> dict:
        """``id`` and ``role``, plus the libraries the user staffs, split by staff role."""
        claims = {"id": str(auth_user.user_id), "role": auth_user.global_role.value}
        staffs, _ = await self.repo.list_staffs(ListStaffsOption(user_ids=[auth_user.user_id], limit=500))
        admin_libs = [str(s.library_id) for s in staffs if s.role == StaffRole.ADMIN]
        staff_libs = [str(s.library_id) for s in staffs if s.role == StaffRole.STAFF]
        if admin_libs:
            claims["admin_libs"] = admin_libs
        if staff_libs:
            claims["staff_libs"] = staff_libs
        return claims

    async def register(self, name: str, email: str, password: str, phone: Optional[str] = None) -> User:
        """Create the identity account, the user row, its auth mapping, then publish claims."""
        if not (name and email and password):
            raise ValidationError("name, email and password are required")

        uid = await self.identity.create_user(email, password, name)
        user = await self.repo.create_user(User(id=uuid.uuid4(), name=name, email=email, phone=phone))
        auth_user = await self.repo.create_auth_user(AuthUser(uid=uid, user_id=user.id, global_role=GlobalRole.USER))
        await self.identity.set_custom_claims(uid, await self._claims(auth_user))
        logger.info(f"Registered user {user.id} (uid={uid})")
        return user

    async def refresh_claims(self, user_id: UUID) -> None:
        """Republish the user's claims after their staff assignments changed."""
        auth_user = await self.repo.get_auth_user_by_user_id(user_id)
        if auth_user is None:
            logger.info(f"User {user_id} has no login, claims not refreshed")
            return
        await self.identity.set_custom_claims(auth_user.uid, await self._claims(auth_user))

    async def _actor(self, auth_user: AuthUser) -> Actor:
        if await self.repo.get_user(auth_user.user_id) is None:
            raise UnauthorizedError(f"user {auth_user.user_id} is deleted")
        return Actor(user_id=auth_user.user_id, role=auth_user.global_role)

    async def resolve_actor(self, authorization: Optional[str], user_id_header: Optional[str] = None) -> Actor:
        """``Authorization: Bearer <id token>``; ``X-User-Id`` is honoured in development only."""
        if authorization and authorization.lower().startswith("bearer "):
            uid = await self.identity.verify_id_token(authorization[7:].strip())
            auth_user = await self.repo.get_auth_user_by_uid(uid)
            if auth_user is None:
                raise UnauthorizedError(f"no user for uid {uid}")
            return await self._actor(auth_user)

        if self.allow_user_id_header and user_id_header:
            try:
                user_id = UUID(user_id_header)
            except ValueError as e:
                raise UnauthorizedError("invalid X-User-Id header") from e
            auth_user = await self.repo.get_auth_user_by_user_id(user_id)
            if auth_user is None:
                raise UnauthorizedError(f"no user {user_id}")
            return await self._actor(auth_user)

        raise UnauthorizedError("missing credentials")
