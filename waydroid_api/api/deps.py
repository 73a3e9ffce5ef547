"""Router dependencies -- control-plane access and bearer auth."""

import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from waydroid_api.control_plane import ControlPlane
from waydroid_api.errors import UnauthorizedError

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def get_control_plane(request: Request) -> ControlPlane:
    """The :class:`ControlPlane` that ``create_app`` attached to the app."""
    return request.app.state.control_plane


def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    control_plane: ControlPlane = Depends(get_control_plane),
) -> None:
    """Reject the request with 401 unless it carries a valid bearer credential.

    No-op when authentication is disabled (no token and no JWT secret).
    """
    verifier = control_plane.credentials
    if not verifier.enabled:
        return
    if credentials is None:
        logger.warning(
            "Unauthenticated access attempt from %s to %s",
            getattr(request.state, "client_key", "-"), request.url.path,
        )
        raise UnauthorizedError("Missing authentication token")
    if not verifier.is_valid(credentials.credentials):
        logger.warning(
            "Invalid credential from %s to %s",
            getattr(request.state, "client_key", "-"), request.url.path,
        )
        raise UnauthorizedError("Invalid authentication token")
