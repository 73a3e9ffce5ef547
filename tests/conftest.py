"""Shared test fixtures -- reduces boilerplate across test modules.

Provides:
- ``settings`` -- isolated ``Settings`` pointing at ``tmp_path``
- ``control_plane`` -- a fresh :class:`ControlPlane` with a mocked command
  executor and a recording webhook dispatcher
- ``client`` -- ``TestClient`` against an app built on that control plane
- ``auth_header`` -- helper returning a valid bearer header
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from waydroid_api.config import Settings
from waydroid_api.control_plane import ControlPlane
from waydroid_api.main import create_app
from waydroid_api.services.command_executor import CommandExecutor, CommandResult

API_TOKEN = "test-token-for-unit-tests"


class RecordingDispatcher:
    """Stands in for WebhookDispatcher; remembers what would have been sent."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []

    def dispatch(self, event: str, data: dict | None = None) -> int:
        self.calls.append((event, data or {}))
        return 1

    async def aclose(self) -> None:
        return None


def ok_result(stdout: str = "", *args: str) -> CommandResult:
    """A successful CommandResult with *stdout*."""
    return CommandResult(("waydroid", *args), 0, stdout, "")


def auth_header(token: str = API_TOKEN) -> dict:
    """Return an ``Authorization`` header dict with a bearer token."""
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        API_TOKEN=API_TOKEN,
        API_TOKEN_FILE="",
        JWT_SECRET="",
        RATE_LIMIT_CONFIG_FILE="",
        WEBHOOKS_FILE=str(tmp_path / "webhooks.json"),
    )


@pytest.fixture
def control_plane(settings) -> ControlPlane:
    cp = ControlPlane.from_settings(settings)
    cp.executor = MagicMock(spec=CommandExecutor)
    cp.executor.run.return_value = ok_result()
    cp.dispatcher = RecordingDispatcher()
    return cp


@pytest.fixture
def client(control_plane) -> TestClient:
    """A fresh ``TestClient`` wrapping an isolated app."""
    return TestClient(create_app(control_plane), raise_server_exceptions=False)
