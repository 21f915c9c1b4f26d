"""Account registration."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from librarease.api.deps import get_services
from librarease.api.responses import envelope
from librarease.container import Services

router = APIRouter()


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    phone: Optional[str] = None


@router.post("/auth/register", status_code=201)
async def register(body: RegisterRequest, services: Services = Depends(get_services)):
    """Create an identity account and its user row."""
    user = await services.auth.register(body.name, body.email, body.password, body.phone)
    return envelope(user)
