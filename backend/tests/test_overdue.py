"""Periodic overdue and due-soon reminders."""

from datetime import timedelta

from librarease.queue.broker import TaskPayload
from librarease.queue.handlers import build_mux


async def _borrow(services, repo, world, code, due_at):
    admin = world.actor(world.admin)
    plan = repo.add_membership(world.library, active_loan_limit=10)
    sub = await services.subscriptions.create_subscription(admin, world.reader.id, plan.id)
    return await services.loans.create_borrowing(
        admin, repo.add_book(world.library, code, title=code).id, sub.id,
        borrowed_at=due_at - timedelta(days=7), due_at=due_at,
    )


async def test_reminders_cover_the_last_interval_only(services, repo, world, clock):
    now = clock.now
    await _borrow(services, repo, world, "just-overdue", now - timedelta(minutes=10))
    await _borrow(services, repo, world, "long-overdue", now - timedelta(hours=5))
    await _borrow(services, repo, world, "due-tomorrow", now + timedelta(days=1) - timedelta(minutes=5))
    await _borrow(services, repo, world, "due-later", now + timedelta(days=3))
    await services.background.wait_idle()
    repo.notifications.clear()

    counts = await services.overdue.check_overdue()

    assert counts == {"overdue": 1, "due_soon": 1}
    titles = sorted(n.title for n in repo.notifications.values())
    assert titles == ["Book Due Soon", "Book Overdue"]


async def test_returned_books_get_no_reminder(services, repo, world, clock):
    borrowing = await _borrow(services, repo, world, "back", clock.now - timedelta(minutes=1))
    await services.loans.return_borrowing(world.actor(world.admin), borrowing.id)

    assert await services.overdue.check_overdue() == {"overdue": 0, "due_soon": 0}


async def test_worker_handler_runs_the_check(services, repo, world, clock):
    await _borrow(services, repo, world, "late", clock.now - timedelta(minutes=1))
    handler = build_mux(services).get("check:overdue")
    await handler(TaskPayload(job_id=None, type="check:overdue"))
    await services.background.wait_idle()
    assert any(n.title == "Book Overdue" for n in repo.notifications.values())
