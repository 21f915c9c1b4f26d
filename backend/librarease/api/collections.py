"""Curated collections of a library's books."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor
from librarease.repository.base import ListCollectionBooksOption, ListCollectionsOption

router = APIRouter()


class CollectionCreate(BaseModel):
    library_id: UUID
    title: str
    description: Optional[str] = None
    cover: Optional[str] = None     # temp upload path


class CollectionUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    cover: Optional[str] = None


class CollectionBooks(BaseModel):
    book_ids: list[UUID]


@router.get("/collections")
async def list_collections(
    library_id: Optional[list[UUID]] = Query(None),
    title: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    opt = ListCollectionsOption(
        library_ids=library_id or [], title=title, include_library=True, skip=skip, limit=limit,
    )
    items, total = await services.collections.list_collections(opt)
    return envelope(items, total=total, skip=skip, limit=limit)


@router.post("/collections", status_code=201)
async def create_collection(
    body: CollectionCreate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.collections.create_collection(actor, **body.model_dump()))


@router.get("/collections/{collection_id}")
async def get_collection(
    collection_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.collections.get_collection(collection_id))


@router.put("/collections/{collection_id}")
async def update_collection(
    collection_id: UUID,
    body: CollectionUpdate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.collections.update_collection(actor, collection_id, **body.model_dump()))


@router.delete("/collections/{collection_id}")
async def delete_collection(
    collection_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    await services.collections.delete_collection(actor, collection_id)
    return envelope(message="collection deleted")


# ── Membership ───────────────────────────────────────────────────

@router.get("/collections/{collection_id}/books")
async def list_collection_books(
    collection_id: UUID,
    title: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    items, total = await services.collections.list_collection_books(
        collection_id, ListCollectionBooksOption(title=title, skip=skip, limit=limit),
    )
    return envelope(items, total=total, skip=skip, limit=limit)


@router.put("/collections/{collection_id}/books")
async def set_collection_books(
    collection_id: UUID,
    body: CollectionBooks,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Replace the collection's books with ``book_ids``."""
    links = await services.collections.set_collection_books(actor, collection_id, body.book_ids)
    return envelope(links, total=len(links))
