"""Curated book collections, each owned by one library."""

import logging
import uuid
from typing import Optional
from uuid import UUID

from librarease.clients.base import FileStorage
from librarease.entities import Actor, Collection, CollectionBook
from librarease.repository.base import (
    ListBooksOption, ListCollectionBooksOption, ListCollectionsOption, Repository,
)
from librarease.services.authz import require_library_staff
from librarease.services.errors import BookNotInLibrary, NotFoundError, ValidationError
from librarease.services.files import publish_temp

logger = logging.getLogger(__name__)


class CollectionService:
    def __init__(self, repo: Repository, storage: Optional[FileStorage] = None):
        self.repo = repo
        self.storage = storage

    async def list_collections(self, opt: ListCollectionsOption) -> tuple[list[Collection], int]:
        return await self.repo.list_collections(opt)

    async def get_collection(self, collection_id: UUID) -> Collection:
        collection = await self.repo.get_collection(collection_id)
        if collection is None:
            raise NotFoundError("collection", collection_id)
        return collection

    async def create_collection(
        self,
        actor: Actor,
        library_id: UUID,
        title: str,
        description: Optional[str] = None,
        cover: Optional[str] = None,
    ) -> Collection:
        await require_library_staff(self.repo, actor, library_id)
        if await self.repo.get_library(library_id) is None:
            raise NotFoundError("library", library_id)
        title = (title or "").strip()
        if not title:
            raise ValidationError("title is required")

        collection_id = uuid.uuid4()
        cover_path = await publish_temp(self.storage, cover, f"collections/{collection_id}/cover") if cover else None
        collection = await self.repo.create_collection(Collection(
            id=collection_id, library_id=library_id, title=title, description=description, cover=cover_path,
        ))
        logger.info(f"Collection {collection.id} created in library {library_id}")
        return collection

    async def update_collection(
        self,
        actor: Actor,
        collection_id: UUID,
        title: Optional[str] = None,
        description: Optional[str] = None,
        cover: Optional[str] = None,
    ) -> Collection:
        collection = await self.get_collection(collection_id)
        await require_library_staff(self.repo, actor, collection.library_id)
        if title is not None:
            if not title.strip():
                raise ValidationError("title must not be blank")
            collection.title = title.strip()
        if description is not None:
            collection.description = description
        if cover:
            path = await publish_temp(self.storage, cover, f"collections/{collection_id}/cover")
            collection.cover = path or collection.cover
        return await self.repo.update_collection(collection)

    async def delete_collection(self, actor: Actor, collection_id: UUID) -> None:
        collection = await self.get_collection(collection_id)
        await require_library_staff(self.repo, actor, collection.library_id)
        await self.repo.delete_collection(collection_id)
        logger.info(f"Collection {collection_id} deleted")

    async def list_collection_books(
        self, collection_id: UUID, opt: ListCollectionBooksOption
    ) -> tuple[list[CollectionBook], int]:
        await self.get_collection(collection_id)
        return await self.repo.list_collection_books(collection_id, opt)

    async def set_collection_books(self, actor: Actor, collection_id: UUID, book_ids: list[UUID]) -> list[CollectionBook]:
        """Make ``book_ids`` the exact membership of the collection; duplicates collapse."""
        collection = await self.get_collection(collection_id)
        await require_library_staff(self.repo, actor, collection.library_id)

        wanted = list(dict.fromkeys(book_ids))
        if wanted:
            found, _ = await self.repo.list_books(ListBooksOption(ids=wanted, limit=len(wanted)))
            by_id = {b.id: b for b in found}
            for book_id in wanted:
                book = by_id.get(book_id)
                if book is None:
                    raise NotFoundError("book", book_id)
                if book.library_id != collection.library_id:
                    raise BookNotInLibrary(book_id, collection.library_id)

        async with self.repo.atomic() as tx:
            current, _ = await tx.list_collection_books(collection_id, ListCollectionBooksOption(limit=10_000))
            removed = [link.book_id for link in current if link.book_id not in wanted]
            await tx.remove_collection_books(collection_id, removed)
            links = await tx.add_collection_books(collection_id, wanted)
        logger.info(f"Collection {collection_id} now holds {len(links)} book(s), {len(removed)} removed")
        return links
