"""Device router -- container status, apps, properties, screenshots, logs.

Every endpoint shells out through the :class:`CommandExecutor`; inputs
that end up on the waydroid command line are validated here first.
Successful state changes queue a lifecycle event that the request
pipeline fans out to webhooks after the response is recorded.
"""

import logging
import re

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from waydroid_api.api.deps import get_control_plane, require_auth
from waydroid_api.control_plane import ControlPlane
from waydroid_api.errors import InvalidInputError, utc_timestamp
from waydroid_api.middleware.pipeline import queue_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["device"], dependencies=[Depends(require_auth)])

MAX_PACKAGE_NAME_LENGTH = 200
MAX_INTENT_LENGTH = 500
MAX_PROPERTY_NAME_LENGTH = 100
MAX_PROPERTY_VALUE_LENGTH = 500

_PACKAGE_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z][a-zA-Z0-9_]*)+$")
_PROPERTY_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

CONTAINER_RESTART_TIMEOUT = 30.0


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class PackageRequest(BaseModel):
    package: str = Field(..., description="Android package name, e.g. com.android.settings")


class IntentRequest(BaseModel):
    intent: str


class PropertyRequest(BaseModel):
    name: str
    value: str


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_package(package: str) -> str:
    package = package.strip()
    if not package:
        raise InvalidInputError("Package name required")
    if len(package) > MAX_PACKAGE_NAME_LENGTH or not _PACKAGE_PATTERN.match(package):
        logger.warning("Invalid package name rejected: %s", package[:MAX_PACKAGE_NAME_LENGTH])
        raise InvalidInputError("Invalid package name format")
    return package


def validate_intent(intent: str) -> str:
    intent = intent.strip()
    if not intent:
        raise InvalidInputError("Intent required")
    if len(intent) > MAX_INTENT_LENGTH or ";" in intent or "|" in intent:
        logger.warning("Invalid intent rejected: %s...", intent[:50])
        raise InvalidInputError("Invalid intent format")
    return intent


def validate_property_name(name: str) -> str:
    name = name.strip()
    if (
        not name
        or len(name) > MAX_PROPERTY_NAME_LENGTH
        or not _PROPERTY_PATTERN.match(name)
    ):
        raise InvalidInputError("Invalid property name")
    return name


def validate_property_value(value: str) -> str:
    if len(value) > MAX_PROPERTY_VALUE_LENGTH or _CONTROL_CHARS.search(value):
        raise InvalidInputError("Invalid property value")
    return value


def parse_app_list(output: str) -> list[str]:
    """Package names from ``waydroid app list`` (raw lines if none are labelled)."""
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    packages = [
        line.split(":", 1)[1].strip()
        for line in lines
        if line.lower().startswith("packagename:")
    ]
    return packages or lines


# ---------------------------------------------------------------------------
# Read-only endpoints
# ---------------------------------------------------------------------------


@router.get("/status")
def container_status(request: Request, cp: ControlPlane = Depends(get_control_plane)) -> dict:
    result = cp.executor.run("status", timeout=5, check=False)
    status = "running" if result.ok else "stopped"
    logger.info("Status check: %s", status)
    queue_event(request.state, "status_check", {"status": status})
    return {"status": status, "output": result.stdout.strip(), "timestamp": utc_timestamp()}


@router.get("/version")
def versions(request: Request, cp: ControlPlane = Depends(get_control_plane)) -> dict:
    result = cp.executor.run("--version", timeout=5)
    return {
        "waydroid_version": result.stdout.strip(),
        "api_version": getattr(request.state, "api_version", cp.versions.default),
        "timestamp": utc_timestamp(),
    }


@router.get("/apps")
def list_apps(cp: ControlPlane = Depends(get_control_plane)) -> dict:
    result = cp.executor.run("app", "list", timeout=10)
    apps = parse_app_list(result.stdout)
    logger.info("App list retrieved: %d apps", len(apps))
    return {"apps": apps, "count": len(apps), "timestamp": utc_timestamp()}


@router.get("/properties/{name}")
def get_property(name: str, cp: ControlPlane = Depends(get_control_plane)) -> dict:
    name = validate_property_name(name)
    result = cp.executor.run("prop", "get", name, timeout=5)
    return {"name": name, "value": result.stdout.strip(), "timestamp": utc_timestamp()}


@router.get("/screenshot")
def screenshot(cp: ControlPlane = Depends(get_control_plane)) -> Response:
    png = cp.executor.run_binary("shell", "screencap", "-p", timeout=10)
    return Response(content=png, media_type="image/png")


@router.get("/logs")
def logs(
    lines: int = Query(100, ge=1, le=5000),
    cp: ControlPlane = Depends(get_control_plane),
) -> dict:
    result = cp.executor.run("shell", "logcat", "-d", "-t", str(lines), timeout=10)
    entries = result.stdout.splitlines()
    return {"lines": entries, "count": len(entries), "timestamp": utc_timestamp()}


# ---------------------------------------------------------------------------
# State-changing endpoints
# ---------------------------------------------------------------------------


@router.post("/app/launch")
def launch_app(
    body: PackageRequest,
    request: Request,
    cp: ControlPlane = Depends(get_control_plane),
) -> dict:
    package = validate_package(body.package)
    logger.info("Launching app: %s", package)
    cp.executor.run("app", "launch", package)
    queue_event(request.state, "app_launched", {"package": package})
    return {"success": True, "package": package, "timestamp": utc_timestamp()}


@router.post("/app/stop")
def stop_app(
    body: PackageRequest,
    request: Request,
    cp: ControlPlane = Depends(get_control_plane),
) -> dict:
    package = validate_package(body.package)
    logger.info("Stopping app: %s", package)
    cp.executor.run("shell", "am", "force-stop", package, timeout=10)
    queue_event(request.state, "app_stopped", {"package": package})
    return {"success": True, "package": package, "timestamp": utc_timestamp()}


@router.post("/app/intent")
def send_intent(body: IntentRequest, cp: ControlPlane = Depends(get_control_plane)) -> dict:
    intent = validate_intent(body.intent)
    logger.info("Sending intent: %s", intent[:100])
    result = cp.executor.run("app", "intent", intent)
    return {"success": True, "output": result.stdout.strip(), "timestamp": utc_timestamp()}


@router.post("/properties")
def set_property(
    body: PropertyRequest,
    request: Request,
    cp: ControlPlane = Depends(get_control_plane),
) -> dict:
    name = validate_property_name(body.name)
    value = validate_property_value(body.value)
    cp.executor.run("prop", "set", name, value, timeout=5)
    logger.info("Property %s set", name)
    queue_event(request.state, "properties_changed", {"name": name, "value": value})
    return {"success": True, "name": name, "value": value, "timestamp": utc_timestamp()}


@router.post("/container/restart")
def restart_container(request: Request, cp: ControlPlane = Depends(get_control_plane)) -> dict:
    logger.warning("Container restart requested")
    cp.executor.run("container", "restart", timeout=CONTAINER_RESTART_TIMEOUT)
    queue_event(request.state, "container_restarted", {})
    return {"success": True, "message": "Container restart initiated", "timestamp": utc_timestamp()}
