"""Health check router (unauthenticated)."""

from fastapi import APIRouter

from waydroid_api.config import VERSION
from waydroid_api.errors import utc_timestamp

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness only -- does not touch the container."""
    return {"status": "healthy", "timestamp": utc_timestamp(), "version": VERSION}
