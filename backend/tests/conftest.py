"""Shared fixtures: an in-memory service container on a controllable clock."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from librarease.clients.push import PushDispatcher
from librarease.container import Services, build_services
from librarease.entities import Actor, GlobalRole, Library, Staff, StaffRole, User
from librarease.services.notification_hub import NotificationHub

from fakes import FakeBroker, FakeIdentity, FakePushSender, FakeRepository, FakeStorage

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class World:
    library: Library
    other_library: Library
    admin: User
    admin_staff: Staff
    clerk: User
    clerk_staff: Staff
    outsider_staff: Staff
    reader: User
    superadmin: User

    def actor(self, user: User) -> Actor:
        role = GlobalRole.SUPERADMIN if user is self.superadmin else GlobalRole.USER
        return Actor(user_id=user.id, role=role)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def push_sender() -> FakePushSender:
    return FakePushSender()


@pytest.fixture
def hub(repo: FakeRepository) -> NotificationHub:
    """A hub fed straight from the repository, standing in for the insert trigger."""
    hub = NotificationHub()
    repo.on_notification = hub.broadcast
    return hub


@pytest.fixture
def services(repo, storage, broker, identity, push_sender, hub, clock) -> Services:
    return build_services(
        repo=repo,
        storage=storage,
        broker=broker,
        identity=identity,
        push=PushDispatcher([push_sender]),
        hub=hub,
        clock=clock,
        allow_user_id_header=True,
    )


@pytest.fixture
def world(repo: FakeRepository) -> World:
    library = repo.add_library("Central")
    other = repo.add_library("Branch")
    admin = repo.add_user("Ada")
    clerk = repo.add_user("Carl")
    outsider = repo.add_user("Olga")
    return World(
        library=library,
        other_library=other,
        admin=admin,
        admin_staff=repo.add_staff(admin, library, StaffRole.ADMIN),
        clerk=clerk,
        clerk_staff=repo.add_staff(clerk, library, StaffRole.STAFF),
        outsider_staff=repo.add_staff(outsider, other, StaffRole.STAFF),
        reader=repo.add_user("Rita"),
        superadmin=repo.add_user("Root", role=GlobalRole.SUPERADMIN),
    )
