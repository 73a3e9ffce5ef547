"""ASGI middleware and exception handlers for the Waydroid API."""

from waydroid_api.middleware.exception_handler import setup_exception_handlers
from waydroid_api.middleware.pipeline import RequestPipeline, queue_event

__all__ = ["RequestPipeline", "queue_event", "setup_exception_handlers"]
