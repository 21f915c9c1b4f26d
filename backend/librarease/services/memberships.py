"""Membership plans. Edits here never touch existing subscriptions."""

import logging
import uuid
from uuid import UUID

from librarease.entities import Actor, Membership
from librarease.repository.base import ListMembershipsOption, Repository
from librarease.services.authz import require_library_staff
from librarease.services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "duration", "active_loan_limit", "loan_period", "fine_per_day", "price", "usage_limit")


def _validate(m: Membership) -> None:
    if not m.name:
        raise ValidationError("name is required")
    if m.duration <= 0 or m.loan_period <= 0:
        raise ValidationError("duration and loan_period must be positive")
    if m.active_loan_limit <= 0:
        raise ValidationError("active_loan_limit must be positive")
    if m.fine_per_day < 0 or m.price < 0 or m.usage_limit < 0:
        raise ValidationError("fine_per_day, price and usage_limit must not be negative")


class MembershipService:
    def __init__(self, repo: Repository):
        self.repo = repo

    async def create_membership(
        self,
        actor: Actor,
        library_id: UUID,
        name: str,
        duration: int,
        active_loan_limit: int,
        loan_period: int,
        fine_per_day: int = 0,
        price: int = 0,
        usage_limit: int = 0,
    ) -> Membership:
        await require_library_staff(self.repo, actor, library_id, admin_only=True)
        if await self.repo.get_library(library_id) is None:
            raise NotFoundError("library", library_id)
        membership = Membership(
            id=uuid.uuid4(), name=name, library_id=library_id, duration=duration,
            active_loan_limit=active_loan_limit, loan_period=loan_period,
            fine_per_day=fine_per_day, price=price, usage_limit=usage_limit,
        )
        _validate(membership)
        created = await self.repo.create_membership(membership)
        logger.info(f"Membership {created.id} created in library {library_id}")
        return created

    async def update_membership(self, actor: Actor, membership_id: UUID, **changes) -> Membership:
        membership = await self.repo.get_membership(membership_id)
        if membership is None:
            raise NotFoundError("membership", membership_id)
        await require_library_staff(self.repo, actor, membership.library_id, admin_only=True)

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"unexpected membership fields: {sorted(unknown)}")
        for name, value in changes.items():
            if value is not None:
                setattr(membership, name, value)
        _validate(membership)
        return await self.repo.update_membership(membership)

    async def get_membership(self, membership_id: UUID) -> Membership:
        membership = await self.repo.get_membership(membership_id)
        if membership is None:
            raise NotFoundError("membership", membership_id)
        return membership

    async def list_memberships(self, opt: ListMembershipsOption) -> tuple[list[Membership], int]:
        return await self.repo.list_memberships(opt)
