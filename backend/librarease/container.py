"""Wires ports and services together once per process."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from librarease.clients.base import FileStorage, IdentityProvider, TaskBroker
from librarease.clients.push import PushDispatcher
from librarease.repository.base import Repository
from librarease.services.auth import AuthService
from librarease.services.background import BackgroundTasks
from librarease.services.book_import import BookImportService
from librarease.services.books import BookService
from librarease.services.borrowing_export import BorrowingExportService
from librarease.services.collections import CollectionService
from librarease.services.files import FileService
from librarease.services.jobs import JobService
from librarease.services.libraries import LibraryService
from librarease.services.loans import LoanService, utcnow
from librarease.services.memberships import MembershipService
from librarease.services.notification_hub import NotificationHub
from librarease.services.notifications import NotificationService
from librarease.services.overdue import OverdueService
from librarease.services.reviews import ReviewService
from librarease.services.staffs import StaffService
from librarease.services.subscriptions import SubscriptionService
from librarease.services.users import UserService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    repo: Repository
    storage: FileStorage
    broker: TaskBroker
    identity: IdentityProvider
    background: BackgroundTasks
    notifications: NotificationService
    loans: LoanService
    subscriptions: SubscriptionService
    memberships: MembershipService
    books: BookService
    jobs: JobService
    exports: BorrowingExportService
    imports: BookImportService
    overdue: OverdueService
    auth: AuthService
    files: FileService
    libraries: LibraryService
    staffs: StaffService
    users: UserService
    collections: CollectionService
    reviews: ReviewService
    hub: Optional[NotificationHub] = None
    clock: Callable[[], datetime] = utcnow

    async def aclose(self) -> None:
        await self.background.shutdown()
        await self.broker.close()


def build_services(
    repo: Repository,
    storage: FileStorage,
    broker: TaskBroker,
    identity: IdentityProvider,
    push: Optional[PushDispatcher] = None,
    hub: Optional[NotificationHub] = None,
    clock: Callable[[], datetime] = utcnow,
    allow_user_id_header: bool = False,
    overdue_interval_seconds: int = 3600,
) -> Services:
    background = BackgroundTasks()
    notifications = NotificationService(repo, push=push, hub=hub, background=background, clock=clock)
    jobs = JobService(repo, broker, notifications, storage=storage, clock=clock)
    auth = AuthService(repo, identity, allow_user_id_header=allow_user_id_header)
    return Services(
        repo=repo,
        storage=storage,
        broker=broker,
        identity=identity,
        background=background,
        notifications=notifications,
        loans=LoanService(repo, notifications, clock=clock),
        subscriptions=SubscriptionService(repo, clock=clock),
        memberships=MembershipService(repo),
        books=BookService(repo, storage=storage),
        jobs=jobs,
        exports=BorrowingExportService(repo, storage, jobs, clock=clock),
        imports=BookImportService(repo, storage, jobs),
        overdue=OverdueService(repo, notifications, interval_seconds=overdue_interval_seconds, clock=clock),
        auth=auth,
        files=FileService(storage),
        libraries=LibraryService(repo, storage=storage),
        staffs=StaffService(repo, auth),
        users=UserService(repo),
        collections=CollectionService(repo, storage=storage),
        reviews=ReviewService(repo),
        hub=hub,
        clock=clock,
    )


def services_from_settings(settings, with_hub: bool = False) -> Services:
    """Production wiring: SQL repository, S3, Redis broker, identity REST and FCM."""
    from librarease.clients.identity import RestIdentityProvider
    from librarease.clients.push import FcmSender
    from librarease.clients.storage import S3FileStorage
    from librarease.database import async_session
    from librarease.queue.broker import RedisBroker
    from librarease.repository.sql import SqlRepository

    push = PushDispatcher()
    if settings.has_push:
        push.register(FcmSender(settings.fcm_server_key))
    else:
        logger.info("FCM not configured, push delivery disabled")

    return build_services(
        repo=SqlRepository(async_session),
        storage=S3FileStorage.from_settings(settings),
        broker=RedisBroker.from_settings(settings),
        identity=RestIdentityProvider(
            settings.identity_base_url,
            settings.identity_api_key,
            settings.identity_credentials_file,
        ),
        push=push,
        hub=NotificationHub(settings.listen_dsn) if with_hub else None,
        allow_user_id_header=settings.is_development,
        overdue_interval_seconds=settings.overdue_check_interval_seconds,
    )
