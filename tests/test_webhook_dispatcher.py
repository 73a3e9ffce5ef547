"""Tests for async webhook delivery."""

import asyncio
import json

import httpx
import pytest

from waydroid_api.services.metrics import MetricsCollector
from waydroid_api.services.webhook_dispatcher import WebhookDispatcher
from waydroid_api.services.webhook_registry import WebhookRegistry
from waydroid_api.webhooks import compute_signature


class Receiver:
    """httpx MockTransport handler that records every delivery."""

    def __init__(self, status: int = 200, delay: float = 0.0) -> None:
        self.status = status
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.requests.append(request)
        return httpx.Response(self.status)

    def urls(self) -> list[str]:
        return sorted(str(r.url) for r in self.requests)


def _dispatcher(registry, receiver, **kwargs) -> tuple[WebhookDispatcher, MetricsCollector]:
    metrics = MetricsCollector()
    dispatcher = WebhookDispatcher(
        registry,
        metrics=metrics,
        transport=httpx.MockTransport(receiver),
        **kwargs,
    )
    return dispatcher, metrics


@pytest.mark.asyncio
async def test_only_enabled_matching_webhooks_receive():
    registry = WebhookRegistry()
    registry.register("https://a.example.com/hook", ["app_launched"])
    registry.register("https://b.example.com/hook", ["app_stopped"])
    disabled = registry.register("https://c.example.com/hook", ["app_launched"])
    registry.set_enabled(disabled, False)
    receiver = Receiver()
    dispatcher, _ = _dispatcher(registry, receiver)

    scheduled = dispatcher.dispatch("app_launched", {"package": "com.example"})
    await dispatcher.drain()

    assert scheduled == 1
    assert receiver.urls() == ["https://a.example.com/hook"]
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_disabling_stops_future_deliveries():
    registry = WebhookRegistry()
    webhook_id = registry.register("https://a.example.com/hook", ["status_check"])
    receiver = Receiver()
    dispatcher, _ = _dispatcher(registry, receiver)

    dispatcher.dispatch("status_check", {})
    await dispatcher.drain()
    registry.set_enabled(webhook_id, False)
    assert dispatcher.dispatch("status_check", {}) == 0
    await dispatcher.drain()

    assert len(receiver.requests) == 1
    assert len(registry) == 1
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_payload_shape():
    registry = WebhookRegistry()
    registry.register("https://a.example.com/hook", ["app_launched"])
    receiver = Receiver()
    dispatcher, _ = _dispatcher(registry, receiver)

    dispatcher.dispatch("app_launched", {"package": "com.example"})
    await dispatcher.drain()

    request = receiver.requests[0]
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/json"
    assert request.headers["user-agent"].startswith("waydroid-api-webhooks/")
    body = json.loads(request.content)
    assert set(body) == {"event", "timestamp", "data"}
    assert body["event"] == "app_launched"
    assert body["data"] == {"package": "com.example"}
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_signature_matches_hmac_of_body():
    registry = WebhookRegistry()
    registry.register("https://a.example.com/hook", ["app_launched"], secret="S")
    receiver = Receiver()
    dispatcher, _ = _dispatcher(registry, receiver)

    dispatcher.dispatch("app_launched", {"package": "com.example"})
    await dispatcher.drain()

    request = receiver.requests[0]
    assert request.headers["x-webhook-signature"] == compute_signature(request.content, "S")
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_no_secret_means_no_signature_header():
    registry = WebhookRegistry()
    registry.register("https://a.example.com/hook", ["app_launched"])
    receiver = Receiver()
    dispatcher, _ = _dispatcher(registry, receiver)

    dispatcher.dispatch("app_launched", {})
    await dispatcher.drain()

    assert "x-webhook-signature" not in receiver.requests[0].headers
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_non_2xx_is_counted_not_raised():
    registry = WebhookRegistry()
    registry.register("https://a.example.com/hook", ["app_stopped"])
    receiver = Receiver(status=500)
    dispatcher, metrics = _dispatcher(registry, receiver)

    dispatcher.dispatch("app_stopped", {})
    await dispatcher.drain()

    assert metrics.webhook_deliveries() == {"success": 0, "failure": 1}
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_connection_error_is_counted_not_raised():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    registry = WebhookRegistry()
    registry.register("https://down.example.com/hook", ["app_stopped"])
    registry.register("https://also-down.example.com/hook", ["app_stopped"])
    metrics = MetricsCollector()
    dispatcher = WebhookDispatcher(registry, metrics=metrics, transport=httpx.MockTransport(refuse))

    assert dispatcher.dispatch("app_stopped", {}) == 2
    await dispatcher.drain()

    assert metrics.webhook_deliveries()["failure"] == 2
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_slow_receiver_is_abandoned_after_timeout():
    registry = WebhookRegistry()
    registry.register("https://slow.example.com/hook", ["container_restarted"])
    receiver = Receiver(delay=1.0)
    dispatcher, metrics = _dispatcher(registry, receiver, timeout=0.05)

    dispatcher.dispatch("container_restarted", {})
    await asyncio.wait_for(dispatcher.drain(), timeout=0.9)

    assert receiver.requests == []
    assert metrics.webhook_deliveries()["failure"] == 1
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_dispatch_returns_before_delivery_completes():
    registry = WebhookRegistry()
    registry.register("https://a.example.com/hook", ["app_launched"])
    receiver = Receiver(delay=0.05)
    dispatcher, metrics = _dispatcher(registry, receiver)

    dispatcher.dispatch("app_launched", {})
    assert dispatcher.in_flight == 1
    assert receiver.requests == []

    await dispatcher.drain()
    assert dispatcher.in_flight == 0
    assert metrics.webhook_deliveries()["success"] == 1
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    active = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return httpx.Response(204)

    registry = WebhookRegistry()
    for i in range(8):
        registry.register(f"https://h{i}.example.com/hook", ["status_check"])
    dispatcher = WebhookDispatcher(
        registry, max_concurrency=2, transport=httpx.MockTransport(handler),
    )

    dispatcher.dispatch("status_check", {})
    await dispatcher.drain()

    assert peak <= 2
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_registry_changes_do_not_affect_in_flight_delivery():
    registry = WebhookRegistry()
    webhook_id = registry.register("https://a.example.com/hook", ["app_launched"], secret="S")
    receiver = Receiver(delay=0.02)
    dispatcher, _ = _dispatcher(registry, receiver)

    dispatcher.dispatch("app_launched", {})
    registry.delete(webhook_id)
    await dispatcher.drain()

    assert receiver.urls() == ["https://a.example.com/hook"]
    assert "x-webhook-signature" in receiver.requests[0].headers
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_unknown_event_is_a_programming_error():
    dispatcher = WebhookDispatcher(WebhookRegistry())
    with pytest.raises(ValueError):
        dispatcher.dispatch("app_exploded", {})
