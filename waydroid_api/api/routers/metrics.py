"""Prometheus scrape endpoint."""

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST

from waydroid_api.api.deps import get_control_plane, require_auth
from waydroid_api.control_plane import ControlPlane

router = APIRouter(tags=["metrics"])


@router.get("/metrics", dependencies=[Depends(require_auth)])
def metrics(cp: ControlPlane = Depends(get_control_plane)) -> PlainTextResponse:
    return PlainTextResponse(cp.metrics.export_prometheus(), media_type=CONTENT_TYPE_LATEST)
