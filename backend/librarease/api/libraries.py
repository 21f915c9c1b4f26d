"""Library (tenant) endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor
from librarease.repository.base import ListLibrariesOption

router = APIRouter()


class LibraryCreate(BaseModel):
    name: str
    logo: Optional[str] = None      # temp upload path


class LibraryUpdate(BaseModel):
    name: Optional[str] = None
    logo: Optional[str] = None


@router.get("/libraries")
async def list_libraries(
    id: Optional[list[UUID]] = Query(None),
    name: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    items, total = await services.libraries.list_libraries(
        ListLibrariesOption(ids=id or [], name=name, skip=skip, limit=limit)
    )
    return envelope(items, total=total, skip=skip, limit=limit)


@router.post("/libraries", status_code=201)
async def create_library(
    body: LibraryCreate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Global admins only."""
    return envelope(await services.libraries.create_library(actor, **body.model_dump()))


@router.get("/libraries/{library_id}")
async def get_library(
    library_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.libraries.get_library(library_id))


@router.put("/libraries/{library_id}")
async def update_library(
    library_id: UUID,
    body: LibraryUpdate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Global admins and the library's ADMIN staff."""
    return envelope(await services.libraries.update_library(actor, library_id, **body.model_dump()))


@router.delete("/libraries/{library_id}")
async def delete_library(
    library_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    await services.libraries.delete_library(actor, library_id)
    return envelope(message="library deleted")
