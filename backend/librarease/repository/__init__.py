from librarease.repository.base import (  # noqa: F401
    ListBooksOption, ListBorrowingsOption, ListJobsOption, ListMembershipsOption,
    ListNotificationsOption, ListStaffsOption, ListSubscriptionsOption, Repository,
)
