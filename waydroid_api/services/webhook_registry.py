"""Durable webhook subscription store.

Registrations live in memory and are flushed to a JSON file (mode 0600)
after every mutation; a mutation whose flush fails is undone in memory
before the error propagates.  The file holds secrets in plaintext, so
only the API user should be able to read it.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import tempfile
import threading
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from urllib.parse import urlparse

from waydroid_api.errors import InvalidInputError, NotFoundError, utc_timestamp

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS: frozenset[str] = frozenset({
    "status_check",
    "app_launched",
    "app_stopped",
    "properties_changed",
    "container_restarted",
})

_ALLOWED_SCHEMES = frozenset({"http", "https"})
_MAX_URL_LENGTH = 2048


@dataclass
class WebhookRegistration:
    id: str
    url: str
    events: list[str]
    secret: str | None = None
    enabled: bool = True
    created: str = field(default_factory=utc_timestamp)

    def public_dict(self) -> dict:
        """Registration as returned by the API -- secret replaced by a flag."""
        data = asdict(self)
        data.pop("secret")
        data["has_secret"] = bool(self.secret)
        return data

    @classmethod
    def from_dict(cls, raw: dict) -> WebhookRegistration:
        """Rebuild a stored registration, re-checking what ``register`` checks."""
        return cls(
            id=str(raw["id"]),
            url=validate_webhook_url(raw["url"]),
            events=validate_events(raw["events"]),
            secret=validate_secret(raw.get("secret")),
            enabled=bool(raw.get("enabled", True)),
            created=str(raw.get("created") or utc_timestamp()),
        )


def validate_webhook_url(url: object) -> str:
    if not isinstance(url, str) or not url.strip():
        raise InvalidInputError("Webhook url is required")
    url = url.strip()
    if len(url) > _MAX_URL_LENGTH:
        raise InvalidInputError("Webhook url is too long")
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES or not parsed.netloc:
        raise InvalidInputError("Webhook url must be an absolute http or https URL")
    return url


def validate_events(events: object) -> list[str]:
    if not isinstance(events, (list, tuple, set, frozenset)) or not events:
        raise InvalidInputError("At least one event is required")
    if not all(isinstance(e, str) for e in events):
        raise InvalidInputError("Events must be strings")
    unknown = sorted(str(e) for e in events if e not in WEBHOOK_EVENTS)
    if unknown:
        raise InvalidInputError(
            f"Unknown event(s): {', '.join(unknown)}",
            details={"allowed_events": sorted(WEBHOOK_EVENTS)},
        )
    return sorted(set(events))


def validate_secret(secret: object) -> str | None:
    if secret is not None and not isinstance(secret, str):
        raise InvalidInputError("Webhook secret must be a string")
    return secret or None


class WebhookRegistry:
    """CRUD + enable/disable over webhook registrations.

    Args:
        path: Backing JSON file.  ``None`` keeps the registry in memory
            only, which is what the tests use.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._items: dict[str, WebhookRegistration] = {}
        self._load()

    # ── queries ───────────────────────────────────────────────

    def list(self) -> list[dict]:
        with self._lock:
            return [reg.public_dict() for reg in self._items.values()]

    def get(self, webhook_id: str) -> dict:
        with self._lock:
            reg = self._items.get(webhook_id)
            if reg is None:
                raise NotFoundError(f"Webhook {webhook_id} not found")
            return reg.public_dict()

    def subscribers(self, event: str) -> list[WebhookRegistration]:
        """Copies of every enabled registration subscribed to *event*."""
        with self._lock:
            return [
                replace(reg, events=list(reg.events))
                for reg in self._items.values()
                if reg.enabled and event in reg.events
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    # ── mutations ─────────────────────────────────────────────

    def register(self, url: object, events: object, secret: object = None) -> str:
        """Validate and store a new subscription.  Returns its id."""
        url = validate_webhook_url(url)
        events = validate_events(events)

        reg = WebhookRegistration(
            id=secrets.token_hex(16),
            url=url,
            events=events,
            secret=validate_secret(secret),
        )
        with self._lock:
            self._items[reg.id] = reg
            try:
                self._flush_locked()
            except BaseException:
                del self._items[reg.id]
                raise
        logger.info("Registered webhook %s -> %s (%s)", reg.id, url, ", ".join(events))
        return reg.id

    def delete(self, webhook_id: str) -> None:
        with self._lock:
            if webhook_id not in self._items:
                raise NotFoundError(f"Webhook {webhook_id} not found")
            previous = dict(self._items)
            del self._items[webhook_id]
            try:
                self._flush_locked()
            except BaseException:
                self._items = previous
                raise
        logger.info("Deleted webhook %s", webhook_id)

    def set_enabled(self, webhook_id: str, enabled: bool) -> dict:
        with self._lock:
            reg = self._items.get(webhook_id)
            if reg is None:
                raise NotFoundError(f"Webhook {webhook_id} not found")
            was_enabled = reg.enabled
            reg.enabled = bool(enabled)
            try:
                self._flush_locked()
            except BaseException:
                reg.enabled = was_enabled
                raise
            result = reg.public_dict()
        logger.info("Webhook %s %s", webhook_id, "enabled" if enabled else "disabled")
        return result

    # ── persistence ───────────────────────────────────────────

    def _load(self) -> None:
        if self._path is None:
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, ValueError) as exc:
            logger.error("Could not read webhook registry %s: %s", self._path, exc)
            return
        if not isinstance(raw, list):
            logger.error("Webhook registry %s is not a JSON array -- ignoring", self._path)
            return
        for entry in raw:
            try:
                reg = WebhookRegistration.from_dict(entry)
            except (KeyError, TypeError, InvalidInputError) as exc:
                logger.warning("Skipping malformed webhook entry %r: %s", entry, exc)
                continue
            self._items[reg.id] = reg
        logger.info("Loaded %d webhook(s) from %s", len(self._items), self._path)

    def _flush_locked(self) -> None:
        """Write-then-rename so a crash mid-write never truncates the registry."""
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps([asdict(reg) for reg in self._items.values()], indent=2)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
