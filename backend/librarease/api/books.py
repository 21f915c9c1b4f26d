"""Book catalogue endpoints, including CSV import."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor
from librarease.repository.base import ListBooksOption

router = APIRouter()


class BookCreate(BaseModel):
    library_id: UUID
    code: str
    title: str
    author: str
    year: int = 0
    cover: Optional[str] = None     # temp upload path


class BookUpdate(BaseModel):
    code: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    year: Optional[int] = None
    cover: Optional[str] = None


class ImportConfirm(BaseModel):
    library_id: UUID
    path: str


@router.get("/books")
async def list_books(
    library_id: Optional[list[UUID]] = Query(None),
    id: Optional[list[UUID]] = Query(None),
    code: Optional[str] = None,
    title: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    items, total = await services.books.list_books(ListBooksOption(
        library_ids=library_id or [], ids=id or [], code=code, title=title, skip=skip, limit=limit,
    ))
    return envelope(items, total=total, skip=skip, limit=limit)


@router.post("/books", status_code=201)
async def create_book(
    body: BookCreate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    book = await services.books.create_book(actor, **body.model_dump())
    return envelope(book)


@router.post("/books/import")
async def preview_import(
    library_id: UUID = Form(...),
    file: UploadFile = File(...),
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Upload a CSV and get a per-row preview; nothing is written to the catalogue yet."""
    data = await file.read()
    preview = await services.imports.preview_import(actor, library_id, file.filename or "import.csv", data)
    return envelope(preview)


@router.post("/books/import/confirm", status_code=201)
async def confirm_import(
    body: ImportConfirm,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """Queue the previewed file for processing; returns the job."""
    job = await services.imports.confirm_import(actor, body.library_id, body.path)
    return envelope(job)


@router.get("/books/{book_id}")
async def get_book(
    book_id: UUID,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    return envelope(await services.books.get_book(book_id))


@router.put("/books/{book_id}")
async def update_book(
    book_id: UUID,
    body: BookUpdate,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    book = await services.books.update_book(actor, book_id, **body.model_dump())
    return envelope(book)
