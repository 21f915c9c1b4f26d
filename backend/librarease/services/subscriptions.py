"""Subscriptions and the terms they freeze at purchase time.

A subscription copies its membership's loan period, fine rate, loan limits and
price when it is created. Later membership edits never reach existing
subscriptions; only an explicit subscription update changes those fields.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

from librarease.entities import Actor, Subscription
from librarease.repository.base import ListSubscriptionsOption, Repository
from librarease.services.authz import library_scope, require_library_staff
from librarease.services.errors import MembershipDeleted, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Fields an admin may overwrite on an existing subscription
SNAPSHOT_FIELDS = ("expires_at", "loan_period", "fine_per_day", "active_loan_limit", "usage_limit", "amount")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionService:
    def __init__(self, repo: Repository, clock: Callable[[], datetime] = utcnow):
        self.repo = repo
        self.clock = clock

    async def create_subscription(self, actor: Actor, user_id: UUID, membership_id: UUID) -> Subscription:
        membership = await self.repo.get_membership(membership_id, include_deleted=True)
        if membership is None:
            raise NotFoundError("membership", membership_id)
        await require_library_staff(self.repo, actor, membership.library_id)
        if membership.deleted_at is not None:
            raise MembershipDeleted(membership.id)
        if await self.repo.get_user(user_id) is None:
            raise NotFoundError("user", user_id)

        sub = await self.repo.create_subscription(Subscription(
            id=uuid.uuid4(),
            user_id=user_id,
            membership_id=membership.id,
            expires_at=self.clock() + timedelta(days=membership.duration),
            loan_period=membership.loan_period,
            fine_per_day=membership.fine_per_day,
            active_loan_limit=membership.active_loan_limit,
            usage_limit=membership.usage_limit,
            amount=membership.price,
        ))
        sub.membership = membership
        logger.info(f"Subscription {sub.id} created for user {user_id} on membership {membership.id}")
        return sub

    async def update_subscription(self, actor: Actor, subscription_id: UUID, **changes) -> Subscription:
        """Overwrite the given snapshot fields; ``None`` keeps the stored value."""
        sub = await self.repo.get_subscription(subscription_id)
        if sub is None:
            raise NotFoundError("subscription", subscription_id)
        await require_library_staff(self.repo, actor, sub.membership.library_id, admin_only=True)

        unknown = set(changes) - set(SNAPSHOT_FIELDS)
        if unknown:
            raise ValidationError(f"unexpected subscription fields: {sorted(unknown)}")
        for name, value in changes.items():
            if value is not None:
                setattr(sub, name, value)

        updated = await self.repo.update_subscription(sub)
        updated.membership = sub.membership
        updated.user = sub.user
        return updated

    async def get_subscription(self, actor: Actor, subscription_id: UUID) -> Subscription:
        sub = await self.repo.get_subscription(subscription_id)
        if sub is None:
            raise NotFoundError("subscription", subscription_id)
        if not actor.is_global_admin and sub.user_id != actor.user_id:
            await require_library_staff(self.repo, actor, sub.membership.library_id)
        return sub

    async def list_subscriptions(self, actor: Actor, opt: ListSubscriptionsOption) -> tuple[list[Subscription], int]:
        scope = await library_scope(self.repo, actor, opt.library_ids)
        if scope is not None:
            opt.library_ids = scope
        elif not actor.is_global_admin:
            opt.user_ids = [actor.user_id]
        if opt.now is None:
            opt.now = self.clock()
        return await self.repo.list_subscriptions(opt)
