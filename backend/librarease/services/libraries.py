"""Libraries: the tenants every catalog, plan and loan belongs to."""

import logging
import uuid
from typing import Optional
from uuid import UUID

from librarease.clients.base import FileStorage
from librarease.entities import Actor, Library
from librarease.repository.base import ListLibrariesOption, Repository
from librarease.services.authz import require_library_staff
from librarease.services.errors import NotFoundError, UnauthorizedError, ValidationError
from librarease.services.files import publish_temp

logger = logging.getLogger(__name__)


class LibraryService:
    def __init__(self, repo: Repository, storage: Optional[FileStorage] = None):
        self.repo = repo
        self.storage = storage

    async def list_libraries(self, opt: ListLibrariesOption) -> tuple[list[Library], int]:
        return await self.repo.list_libraries(opt)

    async def get_library(self, library_id: UUID) -> Library:
        library = await self.repo.get_library(library_id)
        if library is None:
            raise NotFoundError("library", library_id)
        return library

    async def create_library(self, actor: Actor, name: str, logo: Optional[str] = None) -> Library:
        """Global admins only; the first library ADMIN is assigned through staff creation."""
        if not actor.is_global_admin:
            raise UnauthorizedError("only global admins can create libraries")
        name = (name or "").strip()
        if not name:
            raise ValidationError("name is required")

        library_id = uuid.uuid4()
        logo_path = await publish_temp(self.storage, logo, f"libraries/{library_id}/logo") if logo else None
        library = await self.repo.create_library(Library(id=library_id, name=name, logo=logo_path))
        logger.info(f"Library {library.id} created by {actor.user_id}")
        return library

    async def update_library(
        self, actor: Actor, library_id: UUID, name: Optional[str] = None, logo: Optional[str] = None
    ) -> Library:
        library = await self.get_library(library_id)
        await require_library_staff(self.repo, actor, library_id, admin_only=True)
        if name is not None:
            if not name.strip():
                raise ValidationError("name must not be blank")
            library.name = name.strip()
        if logo:
            library.logo = await publish_temp(self.storage, logo, f"libraries/{library_id}/logo") or library.logo
        return await self.repo.update_library(library)

    async def delete_library(self, actor: Actor, library_id: UUID) -> None:
        if not actor.is_global_admin:
            raise UnauthorizedError("only global admins can delete libraries")
        await self.get_library(library_id)
        await self.repo.delete_library(library_id)
        logger.info(f"Library {library_id} deleted by {actor.user_id}")
