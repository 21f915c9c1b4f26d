"""Response envelope and error mapping.

Every body is ``{"data": ..., "meta": {...}}`` on success and
``{"error": code, "message": text}`` on failure.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from librarease.entities import Borrowing
from librarease.services.errors import STATUS_BY_KIND, LibrareaseError

logger = logging.getLogger(__name__)


def serialize(value: Any, now: Optional[datetime] = None) -> Any:
    """Dataclass entities → JSON-ready data; borrowings gain a derived ``status``."""
    if isinstance(value, list):
        return [serialize(v, now) for v in value]
    data = jsonable_encoder(value)
    if isinstance(value, Borrowing):
        data["status"] = value.status(now or datetime.now(timezone.utc))
    return data


def envelope(
    data: Any = None,
    *,
    total: Optional[int] = None,
    skip: Optional[int] = None,
    limit: Optional[int] = None,
    unread: Optional[int] = None,
    message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """``now`` is the instant borrowing statuses are derived from; pass the service clock."""
    body: dict = {"data": serialize(data, now)}
    meta = {k: v for k, v in (("total", total), ("skip", skip), ("limit", limit), ("unread", unread)) if v is not None}
    if meta:
        body["meta"] = meta
    if message:
        body["message"] = message
    return body


async def librarease_error_handler(request: Request, exc: LibrareaseError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    return JSONResponse(status_code=status, content={"error": exc.code, "message": str(exc)})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"{request.method} {request.url.path} crashed", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "internal_error", "message": "internal server error"})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LibrareaseError, librarease_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
