"""Presigned temp uploads."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from librarease.api.deps import get_actor, get_services
from librarease.api.responses import envelope
from librarease.container import Services
from librarease.entities import Actor

router = APIRouter()


class UploadRequest(BaseModel):
    name: str


@router.post("/files/upload")
async def temp_upload(
    body: UploadRequest,
    actor: Actor = Depends(get_actor),
    services: Services = Depends(get_services),
):
    """PUT the file to ``url``, then pass ``path`` to the endpoint that consumes it."""
    upload = await services.files.temp_upload(actor, body.name)
    return envelope(upload)
