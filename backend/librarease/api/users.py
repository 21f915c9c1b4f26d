"""User profile and watchlist endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor
from librarease.repository.base import ListUsersOption, ListWatchlistsOption

router = APIRouter()


class UserCreate(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class WatchlistAdd(BaseModel):
    book_id: UUID


@router.get("/users")
async def list_users(
    id: Optional[list[UUID]] = Query(None),
    name: Optional[str] = None,
    email: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Staff and global admins only."""
    items, total = await services.users.list_users(
        actor, ListUsersOption(ids=id or [], name=name, email=email, skip=skip, limit=limit)
    )
    return envelope(items, total=total, skip=skip, limit=limit)


@router.post("/users", status_code=201)
async def create_user(
    body: UserCreate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.users.create_user(actor, **body.model_dump()))


# ── The caller ───────────────────────────────────────────────────

@router.get("/users/me")
async def get_me(
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.users.get_me(actor))


@router.get("/users/me/watchlist")
async def list_watchlist(
    library_id: Optional[list[UUID]] = Query(None),
    title: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    items, total = await services.users.list_watchlist(
        actor, ListWatchlistsOption(library_ids=library_id or [], title=title, skip=skip, limit=limit)
    )
    return envelope(items, total=total, skip=skip, limit=limit)


@router.post("/users/me/watchlist", status_code=201)
async def add_to_watchlist(
    body: WatchlistAdd,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.users.add_to_watchlist(actor, body.book_id))


@router.delete("/users/me/watchlist/{book_id}")
async def remove_from_watchlist(
    book_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    await services.users.remove_from_watchlist(actor, book_id)
    return envelope(message="removed from watchlist")


# ── By id ────────────────────────────────────────────────────────

@router.get("/users/{user_id}")
async def get_user(
    user_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.users.get_user(actor, user_id))


@router.put("/users/{user_id}")
async def update_user(
    user_id: UUID,
    body: UserUpdate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.users.update_user(actor, user_id, **body.model_dump()))


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    await services.users.delete_user(actor, user_id)
    return envelope(message="user deleted")
