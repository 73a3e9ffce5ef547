"""Fire-and-forget webhook delivery.

``dispatch`` snapshots the matching subscriptions and schedules one
asyncio task per delivery on the running loop, then returns immediately.
Deliveries share one ``httpx.AsyncClient``, are capped by a semaphore and
each one has its own deadline.  Failures are logged and counted -- they
never reach the request that triggered the event.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace

import httpx

from waydroid_api.config import VERSION
from waydroid_api.errors import utc_timestamp
from waydroid_api.services.metrics import MetricsCollector
from waydroid_api.services.webhook_registry import (
    WEBHOOK_EVENTS,
    WebhookRegistration,
    WebhookRegistry,
)
from waydroid_api.webhooks import SIGNATURE_HEADER, compute_signature

logger = logging.getLogger(__name__)

USER_AGENT = f"waydroid-api-webhooks/{VERSION}"


def build_payload(event: str, data: dict | None) -> bytes:
    """Serialize the delivery body exactly once so the signature matches it."""
    body = {"event": event, "timestamp": utc_timestamp(), "data": data or {}}
    return json.dumps(body, default=str).encode("utf-8")


class WebhookDispatcher:
    """Delivers lifecycle events to subscribed, enabled webhooks.

    Args:
        registry: Source of subscriptions.
        metrics: Optional collector for delivery success/failure counts.
        timeout: Per-delivery deadline in seconds.
        max_concurrency: Upper bound on in-flight deliveries.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        registry: WebhookRegistry,
        *,
        metrics: MetricsCollector | None = None,
        timeout: float = 5.0,
        max_concurrency: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._registry = registry
        self._metrics = metrics
        self._timeout = timeout
        self._max_concurrency = max_concurrency
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._semaphore: asyncio.Semaphore | None = None
        self._tasks: set[asyncio.Task] = set()

    # ── public API ────────────────────────────────────────────

    def dispatch(self, event: str, data: dict | None = None) -> int:
        """Schedule deliveries of *event*.  Returns how many were scheduled.

        Must be called from code running on the event loop.
        """
        if event not in WEBHOOK_EVENTS:
            raise ValueError(f"Unknown webhook event: {event}")
        targets = self._registry.subscribers(event)
        if not targets:
            return 0

        loop = asyncio.get_running_loop()
        body = build_payload(event, data)
        for reg in targets:
            task = loop.create_task(self._deliver(replace(reg), event, body))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        logger.debug("Dispatching %s to %d webhook(s)", event, len(targets))
        return len(targets)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Drain outstanding deliveries and close the HTTP client (app shutdown)."""
        await self.drain()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._semaphore = None

    # ── internals ─────────────────────────────────────────────

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrency)
        return self._semaphore

    async def _deliver(self, reg: WebhookRegistration, event: str, body: bytes) -> None:
        headers = {"Content-Type": "application/json"}
        if reg.secret:
            headers[SIGNATURE_HEADER] = compute_signature(body, reg.secret)

        async with self._get_semaphore():
            try:
                response = await asyncio.wait_for(
                    self._get_client().post(reg.url, content=body, headers=headers),
                    timeout=self._timeout,
                )
                response.raise_for_status()
            except asyncio.TimeoutError:
                self._failed(reg, event, f"timed out after {self._timeout:g}s")
            except httpx.HTTPStatusError as exc:
                self._failed(reg, event, f"HTTP {exc.response.status_code}")
            except httpx.HTTPError as exc:
                self._failed(reg, event, f"{type(exc).__name__}: {exc}")
            except Exception:
                logger.exception("Unexpected error delivering %s to webhook %s", event, reg.id)
                self._failed(reg, event, "unexpected error")
            else:
                logger.info(
                    "Delivered %s to webhook %s (HTTP %s)",
                    event, reg.id, response.status_code,
                )
                if self._metrics is not None:
                    self._metrics.record_webhook_delivery(True)

    def _failed(self, reg: WebhookRegistration, event: str, reason: str) -> None:
        logger.warning("Webhook %s delivery of %s to %s failed: %s", reg.id, event, reg.url, reason)
        if self._metrics is not None:
            self._metrics.record_webhook_delivery(False)
