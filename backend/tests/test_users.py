"""User profiles, desk-created patrons and the personal watchlist."""

import pytest

from librarease.entities import GlobalRole, StaffRole
from librarease.repository.base import ListUsersOption, ListWatchlistsOption
from librarease.services.errors import AlreadyInWatchlist, NotFoundError, UnauthorizedError, ValidationError


async def test_me_lists_staff_assignments(services, world):
    profile = await services.users.get_me(world.actor(world.admin))
    assert profile.user.id == world.admin.id
    assert profile.global_role == GlobalRole.USER
    assert [(s.library.name, s.role) for s in profile.staffs] == [("Central", StaffRole.ADMIN)]


async def test_readers_only_see_themselves(services, world):
    reader = world.actor(world.reader)
    assert (await services.users.get_user(reader, world.reader.id)).name == "Rita"
    with pytest.raises(UnauthorizedError):
        await services.users.get_user(reader, world.clerk.id)
    with pytest.raises(UnauthorizedError):
        await services.users.list_users(reader, ListUsersOption())


async def test_staff_search_users_by_name(services, world):
    items, total = await services.users.list_users(world.actor(world.clerk), ListUsersOption(name="RI"))
    assert (total, items[0].id) == (1, world.reader.id)


async def test_staff_create_walk_in_patrons(services, repo, world):
    user = await services.users.create_user(world.actor(world.clerk), " Walter ", email="")
    assert (user.name, user.email) == ("Walter", None)
    assert await repo.get_auth_user_by_user_id(user.id) is None

    with pytest.raises(UnauthorizedError):
        await services.users.create_user(world.actor(world.reader), "Sneaky")


async def test_users_update_their_own_profile(services, world):
    reader = world.actor(world.reader)
    updated = await services.users.update_user(reader, world.reader.id, phone="555-0100", email=None)
    assert (updated.phone, updated.email) == ("555-0100", "rita@example.com")

    with pytest.raises(UnauthorizedError):
        await services.users.update_user(reader, world.clerk.id, name="Hacked")
    with pytest.raises(ValidationError):
        await services.users.update_user(reader, world.reader.id, name=" ")
    with pytest.raises(ValidationError, match="deleted_at"):
        await services.users.update_user(reader, world.reader.id, deleted_at=None)


async def test_deleted_user_can_no_longer_authenticate(services, world):
    with pytest.raises(UnauthorizedError):
        await services.users.delete_user(world.actor(world.admin), world.reader.id)

    await services.users.delete_user(world.actor(world.superadmin), world.reader.id)
    with pytest.raises(UnauthorizedError):
        await services.auth.resolve_actor(None, str(world.reader.id))
    with pytest.raises(NotFoundError):
        await services.users.get_user(world.actor(world.superadmin), world.reader.id)


# ── Watchlist ────────────────────────────────────────────────────

async def test_watchlist_entries_are_unique(services, repo, world):
    reader = world.actor(world.reader)
    book = repo.add_book(world.library, "W1", title="Watership Down")

    entry = await services.users.add_to_watchlist(reader, book.id)
    assert entry.book.title == "Watership Down"
    with pytest.raises(AlreadyInWatchlist):
        await services.users.add_to_watchlist(reader, book.id)

    other = await services.users.add_to_watchlist(world.actor(world.clerk), book.id)
    assert other.user_id == world.clerk.id


async def test_watchlist_is_private_and_filterable(services, repo, world):
    reader = world.actor(world.reader)
    near = repo.add_book(world.library, "N1", title="Near")
    far = repo.add_book(world.other_library, "F1", title="Far")
    await services.users.add_to_watchlist(reader, near.id)
    await services.users.add_to_watchlist(reader, far.id)
    await services.users.add_to_watchlist(world.actor(world.clerk), near.id)

    items, total = await services.users.list_watchlist(reader, ListWatchlistsOption(user_ids=[world.clerk.id]))
    assert total == 2
    assert {w.user_id for w in items} == {world.reader.id}

    items, _ = await services.users.list_watchlist(reader, ListWatchlistsOption(library_ids=[world.other_library.id]))
    assert [w.book.title for w in items] == ["Far"]


async def test_watchlist_removal(services, repo, world):
    reader = world.actor(world.reader)
    book = repo.add_book(world.library, "R1")
    await services.users.add_to_watchlist(reader, book.id)

    await services.users.remove_from_watchlist(reader, book.id)
    _, total = await services.users.list_watchlist(reader, ListWatchlistsOption())
    assert total == 0

    with pytest.raises(NotFoundError) as exc:
        await services.users.remove_from_watchlist(reader, book.id)
    assert exc.value.code == "watchlist_entry_not_found"


async def test_unknown_book_cannot_be_watched(services, world):
    with pytest.raises(NotFoundError):
        await services.users.add_to_watchlist(world.actor(world.reader), world.library.id)
