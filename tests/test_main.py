"""Tests for app assembly, lifespan and logging setup."""

import logging
from logging.handlers import RotatingFileHandler

from fastapi.testclient import TestClient

from waydroid_api.main import configure_logging, create_app


def test_app_exposes_control_plane(control_plane):
    app = create_app(control_plane)
    assert app.state.control_plane is control_plane
    paths = {route.path for route in app.routes}
    for expected in ("/health", "/status", "/apps", "/webhooks", "/webhooks/{webhook_id}", "/metrics"):
        assert expected in paths


def test_docs_hidden_unless_debug(control_plane):
    client = TestClient(create_app(control_plane))
    assert client.get("/docs").status_code == 404


def test_shutdown_closes_dispatcher(control_plane):
    closed = []

    async def aclose():
        closed.append(True)

    control_plane.dispatcher.aclose = aclose
    with TestClient(create_app(control_plane)) as client:
        assert client.get("/health").status_code == 200
        assert closed == []
    assert closed == [True]


def test_configure_logging_with_file(settings, tmp_path, monkeypatch):
    captured: dict = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))
    settings.LOG_FILE = str(tmp_path / "logs" / "api.log")
    settings.LOG_LEVEL = "debug"

    configure_logging(settings)

    assert captured["level"] == logging.DEBUG
    assert captured["force"] is True
    file_handlers = [h for h in captured["handlers"] if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1

    record = logging.makeLogRecord({
        "name": "waydroid_api.test", "msg": "hello file",
        "levelno": logging.INFO, "levelname": "INFO",
    })
    file_handlers[0].emit(record)
    for handler in captured["handlers"]:
        handler.close()
    text = (tmp_path / "logs" / "api.log").read_text(encoding="utf-8")
    assert "hello file" in text
    assert "\033[" not in text


def test_configure_logging_without_file(settings, monkeypatch):
    captured: dict = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: captured.update(kwargs))
    settings.LOG_FILE = ""
    configure_logging(settings)
    assert not any(isinstance(h, RotatingFileHandler) for h in captured["handlers"])
