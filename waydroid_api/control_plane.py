"""The shared, mutable state of one API process.

Everything the request pipeline and the routers touch across requests
lives on a :class:`ControlPlane` that ``create_app`` attaches to
``app.state``.  Tests build their own instance instead of patching
module globals.
"""

from dataclasses import dataclass

from waydroid_api.api.rate_limit import RateLimiter, load_rate_limit_config
from waydroid_api.api.versioning import VersionNegotiator
from waydroid_api.auth import CredentialVerifier
from waydroid_api.config import Settings
from waydroid_api.services.command_executor import CommandExecutor
from waydroid_api.services.metrics import MetricsCollector
from waydroid_api.services.webhook_dispatcher import WebhookDispatcher
from waydroid_api.services.webhook_registry import WebhookRegistry


@dataclass
class ControlPlane:
    settings: Settings
    rate_limiter: RateLimiter
    webhooks: WebhookRegistry
    dispatcher: WebhookDispatcher
    metrics: MetricsCollector
    versions: VersionNegotiator
    credentials: CredentialVerifier
    executor: CommandExecutor

    @classmethod
    def from_settings(cls, settings: Settings) -> "ControlPlane":
        metrics = MetricsCollector()
        webhooks = WebhookRegistry(settings.WEBHOOKS_FILE or None)
        return cls(
            settings=settings,
            rate_limiter=RateLimiter(load_rate_limit_config(settings.RATE_LIMIT_CONFIG_FILE)),
            webhooks=webhooks,
            dispatcher=WebhookDispatcher(
                webhooks,
                metrics=metrics,
                timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
                max_concurrency=settings.WEBHOOK_MAX_CONCURRENCY,
            ),
            metrics=metrics,
            versions=VersionNegotiator(),
            credentials=CredentialVerifier(
                token=settings.API_TOKEN,
                token_file=settings.API_TOKEN_FILE or None,
                jwt_secret=settings.JWT_SECRET,
            ),
            executor=CommandExecutor(
                binary=settings.WAYDROID_BIN,
                default_timeout=settings.COMMAND_TIMEOUT_SECONDS,
            ),
        )
