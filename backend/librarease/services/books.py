"""Catalog management with per-library unique book codes."""

import logging
import uuid
from typing import Optional
from uuid import UUID

from librarease.clients.base import FileStorage
from librarease.entities import Actor, Book
from librarease.repository.base import ListBooksOption, Repository
from librarease.services.authz import require_library_staff
from librarease.services.errors import BookCodeTaken, NotFoundError, ValidationError
from librarease.services.files import publish_temp

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("code", "title", "author", "year")


class BookService:
    def __init__(self, repo: Repository, storage: Optional[FileStorage] = None):
        self.repo = repo
        self.storage = storage

    async def _ensure_code_free(self, library_id: UUID, code: str, book_id: Optional[UUID] = None) -> None:
        existing, _ = await self.repo.list_books(ListBooksOption(library_ids=[library_id], code=code, limit=1))
        if existing and existing[0].id != book_id:
            raise BookCodeTaken(code)

    async def create_book(
        self,
        actor: Actor,
        library_id: UUID,
        code: str,
        title: str,
        author: str,
        year: int = 0,
        cover: Optional[str] = None,
    ) -> Book:
        await require_library_staff(self.repo, actor, library_id)
        if not (code and title and author):
            raise ValidationError("code, title and author are required")
        await self._ensure_code_free(library_id, code)

        book_id = uuid.uuid4()
        cover_path = await publish_temp(self.storage, cover, f"books/{book_id}/cover") if cover else None
        book = await self.repo.create_book(Book(
            id=book_id, library_id=library_id, code=code, title=title,
            author=author, year=year, cover=cover_path,
        ))
        logger.info(f"Book {book.id} created in library {library_id} (code={code})")
        return book

    async def update_book(self, actor: Actor, book_id: UUID, cover: Optional[str] = None, **changes) -> Book:
        book = await self.repo.get_book(book_id)
        if book is None:
            raise NotFoundError("book", book_id)
        await require_library_staff(self.repo, actor, book.library_id)

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"unexpected book fields: {sorted(unknown)}")
        new_code = changes.get("code")
        if new_code and new_code != book.code:
            await self._ensure_code_free(book.library_id, new_code, book.id)
        for name, value in changes.items():
            if value is not None:
                setattr(book, name, value)
        if cover:
            book.cover = await publish_temp(self.storage, cover, f"books/{book.id}/cover") or book.cover
        return await self.repo.update_book(book)

    async def get_book(self, book_id: UUID) -> Book:
        book = await self.repo.get_book(book_id)
        if book is None:
            raise NotFoundError("book", book_id)
        return book

    async def list_books(self, opt: ListBooksOption) -> tuple[list[Book], int]:
        return await self.repo.list_books(opt)
