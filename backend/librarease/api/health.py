"""Health and system status endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Service health check: reports notification hub state."""
    services = getattr(request.app.state, "services", None)
    hub = services.hub if services else None
    return {
        "status": "ok",
        "version": request.app.version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "hub": {
            "listening": bool(hub and hub.is_listening),
            "subscribers": hub.subscriber_count if hub else 0,
        },
    }
