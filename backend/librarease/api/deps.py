"""FastAPI dependencies shared by the routers."""

from typing import Optional

from fastapi import Depends, Header, Request

from librarease.container import Services
from librarease.entities import Actor


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_actor(
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> Actor:
    """Resolve the caller once per request; raises UnauthorizedError (→ 401)."""
    return await services.auth.resolve_actor(authorization, x_user_id)
