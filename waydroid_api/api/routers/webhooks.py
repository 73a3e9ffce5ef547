"""Webhook router -- subscription management for lifecycle events."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from waydroid_api.api.deps import get_control_plane, require_auth
from waydroid_api.control_plane import ControlPlane
from waydroid_api.errors import utc_timestamp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"], dependencies=[Depends(require_auth)])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CreateWebhookRequest(BaseModel):
    """Request body for registering a webhook.

    Only types are checked here; URL scheme and event names are validated
    by the registry so they surface as ``ERR_INVALID_INPUT``.
    """

    url: str = Field(..., description="Absolute http(s) URL to POST events to")
    events: list[str] = Field(..., description="Events to subscribe to")
    secret: str | None = Field(None, description="Shared secret for X-Webhook-Signature")


class UpdateWebhookRequest(BaseModel):
    enabled: bool


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("")
def list_webhooks(cp: ControlPlane = Depends(get_control_plane)) -> list[dict]:
    """All registrations, secrets omitted."""
    return cp.webhooks.list()


@router.post("")
def create_webhook(
    body: CreateWebhookRequest,
    cp: ControlPlane = Depends(get_control_plane),
) -> dict:
    webhook_id = cp.webhooks.register(body.url, body.events, body.secret)
    return {"success": True, "webhook_id": webhook_id, "timestamp": utc_timestamp()}


@router.get("/{webhook_id}")
def get_webhook(webhook_id: str, cp: ControlPlane = Depends(get_control_plane)) -> dict:
    return cp.webhooks.get(webhook_id)


@router.patch("/{webhook_id}")
def update_webhook(
    webhook_id: str,
    body: UpdateWebhookRequest,
    cp: ControlPlane = Depends(get_control_plane),
) -> dict:
    """Enable or disable a webhook without deleting it."""
    webhook = cp.webhooks.set_enabled(webhook_id, body.enabled)
    return {"success": True, "webhook": webhook}


@router.delete("/{webhook_id}")
def delete_webhook(webhook_id: str, cp: ControlPlane = Depends(get_control_plane)) -> dict:
    cp.webhooks.delete(webhook_id)
    return {"success": True}
