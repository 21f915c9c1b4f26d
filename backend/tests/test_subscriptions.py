"""Subscriptions snapshot their plan terms at creation."""

from datetime import datetime, timedelta, timezone

import pytest

from librarease.repository.base import ListSubscriptionsOption
from librarease.services.errors import MembershipDeleted, UnauthorizedError, ValidationError


async def test_membership_edits_do_not_touch_existing_subscriptions(services, world, clock):
    clock.now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    admin = world.actor(world.admin)
    plan = await services.memberships.create_membership(
        admin, world.library.id, name="M1", duration=30, active_loan_limit=3, loan_period=14, fine_per_day=100,
    )
    sub = await services.subscriptions.create_subscription(admin, world.reader.id, plan.id)
    assert sub.expires_at == clock.now + timedelta(days=30)
    assert (sub.loan_period, sub.fine_per_day, sub.active_loan_limit) == (14, 100, 3)

    await services.memberships.update_membership(admin, plan.id, fine_per_day=500)

    stored = await services.subscriptions.get_subscription(admin, sub.id)
    assert stored.fine_per_day == 100
    assert (await services.memberships.get_membership(plan.id)).fine_per_day == 500


async def test_subscription_amount_is_plan_price(services, repo, world):
    plan = repo.add_membership(world.library, price=25_000)
    sub = await services.subscriptions.create_subscription(world.actor(world.clerk), world.reader.id, plan.id)
    assert sub.amount == 25_000


async def test_deleted_plan_cannot_be_subscribed(services, repo, world, clock):
    plan = repo.add_membership(world.library)
    repo.memberships[plan.id].deleted_at = clock.now
    with pytest.raises(MembershipDeleted):
        await services.subscriptions.create_subscription(world.actor(world.admin), world.reader.id, plan.id)


async def test_only_library_admins_edit_plans(services, repo, world):
    plan = repo.add_membership(world.library)
    with pytest.raises(UnauthorizedError):
        await services.memberships.update_membership(world.actor(world.clerk), plan.id, price=1)


async def test_plan_terms_are_validated(services, world):
    with pytest.raises(ValidationError):
        await services.memberships.create_membership(
            world.actor(world.admin), world.library.id,
            name="Broken", duration=0, active_loan_limit=1, loan_period=7,
        )


async def test_admin_can_override_snapshot_fields(services, repo, world):
    plan = repo.add_membership(world.library)
    admin = world.actor(world.admin)
    sub = await services.subscriptions.create_subscription(admin, world.reader.id, plan.id)

    updated = await services.subscriptions.update_subscription(admin, sub.id, active_loan_limit=5, fine_per_day=None)
    assert updated.active_loan_limit == 5
    assert updated.fine_per_day == plan.fine_per_day


async def test_unknown_update_fields_are_rejected(services, repo, world):
    plan = repo.add_membership(world.library)
    admin = world.actor(world.admin)
    sub = await services.subscriptions.create_subscription(admin, world.reader.id, plan.id)

    with pytest.raises(ValidationError, match="colour"):
        await services.memberships.update_membership(admin, plan.id, colour="red")
    with pytest.raises(ValidationError, match="user_id"):
        await services.subscriptions.update_subscription(admin, sub.id, user_id=world.clerk.id)


async def test_active_filter_uses_expiry(services, repo, world, clock):
    plan = repo.add_membership(world.library, duration=10)
    admin = world.actor(world.admin)
    await services.subscriptions.create_subscription(admin, world.reader.id, plan.id)
    clock.advance(days=11)
    await services.subscriptions.create_subscription(admin, world.reader.id, plan.id)

    active, total = await services.subscriptions.list_subscriptions(admin, ListSubscriptionsOption(is_active=True))
    assert total == 1
    assert active[0].expires_at > clock.now
