"""Waydroid API -- FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI

from waydroid_api.api.routers.device import router as device_router
from waydroid_api.api.routers.health import router as health_router
from waydroid_api.api.routers.metrics import router as metrics_router
from waydroid_api.api.routers.webhooks import router as webhooks_router
from waydroid_api.config import VERSION, Settings, settings
from waydroid_api.control_plane import ControlPlane
from waydroid_api.middleware import RequestPipeline, setup_exception_handlers

logger = logging.getLogger(__name__)


class _ColorFormatter(logging.Formatter):
    """ANSI-colored log formatter for terminal output."""

    _COLORS = {
        logging.DEBUG:    "\033[36m",     # cyan
        logging.INFO:     "\033[32m",     # green
        logging.WARNING:  "\033[33m",     # yellow
        logging.ERROR:    "\033[31m",     # red
        logging.CRITICAL: "\033[1;31m",   # bold red
    }
    _RESET = "\033[0m"
    _DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self._COLORS.get(record.levelno, "")
        ts = self.formatTime(record, "%H:%M:%S")
        name = record.name.split(".")[-1][:20]
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"
        return (
            f"{self._DIM}{ts}{self._RESET} "
            f"{color}{record.levelname:<8s}{self._RESET} "
            f"{self._DIM}[{name:>20s}]{self._RESET} "
            f"{color}{msg}{self._RESET}"
        )


class _PlainFormatter(logging.Formatter):
    """Plain-text formatter for file logs (no ANSI codes)."""

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        name = record.name.split(".")[-1][:20]
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"
        return f"{ts} {record.levelname:<8s} [{name:>20s}] {msg}"


def configure_logging(cfg: Settings) -> None:
    """Colored stderr logging plus an optional rotating file log."""
    level = getattr(logging, cfg.LOG_LEVEL.upper(), logging.INFO)

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(_ColorFormatter())
    handlers: list[logging.Handler] = [stream]

    if cfg.LOG_FILE:
        log_path = Path(cfg.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(log_path),
            maxBytes=10 * 1024 * 1024,  # 10 MB per file
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(_PlainFormatter())
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # Our pipeline writes its own access lines; uvicorn's would duplicate them.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(control_plane: ControlPlane | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass a pre-built *control_plane* to isolate state (tests); by default
    one is built from the process settings.
    """
    cp = control_plane or ControlPlane.from_settings(settings)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        """Application lifespan: startup and shutdown hooks."""
        if "pytest" not in sys.modules:
            configure_logging(cp.settings)
        logger.info(
            "Starting Waydroid API %s (auth %s, %d webhook(s))",
            VERSION,
            "enabled" if cp.credentials.enabled else "DISABLED",
            len(cp.webhooks),
        )
        yield
        # Let in-flight webhook deliveries finish before the loop goes away.
        await cp.dispatcher.aclose()
        logger.info("Waydroid API shut down")

    application = FastAPI(
        title="Waydroid API",
        version=VERSION,
        description="Remote control of a Waydroid container",
        lifespan=lifespan,
        docs_url="/docs" if cp.settings.DEBUG else None,
        redoc_url="/redoc" if cp.settings.DEBUG else None,
    )
    application.state.control_plane = cp

    # Structured error envelopes -- see waydroid_api/middleware/exception_handler.py.
    setup_exception_handlers(application)

    application.add_middleware(RequestPipeline, control_plane=cp)

    application.include_router(health_router)
    application.include_router(device_router)
    application.include_router(webhooks_router)
    application.include_router(metrics_router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    configure_logging(settings)
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
