"""In-memory sliding-window rate limiter.

Buckets are keyed by ``(client_key, tier)`` and hold the monotonic
timestamps of the requests admitted in the current window.  Not shared
across processes -- the API runs as a single uvicorn worker.
"""

import json
import logging
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    DEFAULT = "default"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class TierLimit:
    max_requests: int
    window_seconds: int


DEFAULT_LIMITS: dict[Tier, TierLimit] = {
    Tier.DEFAULT: TierLimit(max_requests=100, window_seconds=60),
    Tier.AUTHENTICATED: TierLimit(max_requests=500, window_seconds=60),
}


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-tier limits, fixed for the lifetime of the process."""

    limits: Mapping[Tier, TierLimit]

    def for_tier(self, tier: Tier | str) -> TierLimit:
        return self.limits[Tier(tier)]

    @classmethod
    def defaults(cls) -> "RateLimitConfig":
        return cls(limits=dict(DEFAULT_LIMITS))

    @classmethod
    def from_dict(cls, raw: Mapping) -> "RateLimitConfig":
        """Build a config from ``{"<tier>": {"requests": int, "window": int}}``.

        Unknown tiers are ignored and malformed entries keep the default,
        so a partially valid file still applies the parts that are valid.
        """
        limits = dict(DEFAULT_LIMITS)
        for name, entry in raw.items():
            try:
                tier = Tier(name)
            except ValueError:
                logger.warning("Ignoring unknown rate-limit tier %r", name)
                continue
            requests = entry.get("requests") if isinstance(entry, Mapping) else None
            window = entry.get("window") if isinstance(entry, Mapping) else None
            if not _positive_int(requests) or not _positive_int(window):
                logger.warning(
                    "Invalid rate-limit entry for tier %r (%r) -- keeping default",
                    name, entry,
                )
                continue
            limits[tier] = TierLimit(max_requests=requests, window_seconds=window)
        return cls(limits=limits)


def _positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def load_rate_limit_config(path: str | Path | None) -> RateLimitConfig:
    """Load the tier config from *path*, falling back to the defaults.

    Fails open: a missing, unreadable or malformed file never stops the
    server, it just means the built-in limits apply.
    """
    if not path:
        return RateLimitConfig.defaults()
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.info("No rate-limit config at %s -- using defaults", path)
        return RateLimitConfig.defaults()
    except (OSError, ValueError) as exc:
        logger.warning("Could not load rate-limit config %s (%s) -- using defaults", path, exc)
        return RateLimitConfig.defaults()
    if not isinstance(raw, dict):
        logger.warning("Rate-limit config %s is not a JSON object -- using defaults", path)
        return RateLimitConfig.defaults()
    return RateLimitConfig.from_dict(raw)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: float = 0.0

    @property
    def retry_after_seconds(self) -> int:
        """``retry_after`` rounded up for the ``Retry-After`` header (min 1)."""
        return max(1, math.ceil(self.retry_after))


class RateLimiter:
    """Sliding-window request counter per client key and tier.

    Args:
        config: Tier limits.  Defaults to the built-in limits.
        clock: Monotonic time source, injectable for tests.
    """

    _PRUNE_INTERVAL: int = 500  # sweep idle buckets every N calls

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RateLimitConfig.defaults()
        self._clock = clock
        self._buckets: dict[tuple[str, Tier], list[float]] = {}
        self._lock = threading.Lock()
        self._call_count = 0

    def check(self, client_key: str, tier: Tier | str) -> RateLimitDecision:
        """Admit or reject one request from *client_key* at *tier*."""
        tier = Tier(tier)
        limit = self.config.for_tier(tier)
        key = (client_key, tier)

        with self._lock:
            now = self._clock()
            self._call_count += 1
            if self._call_count % self._PRUNE_INTERVAL == 0:
                self._sweep_locked(now)

            cutoff = now - limit.window_seconds
            timestamps = [t for t in self._buckets.get(key, []) if t > cutoff]

            if len(timestamps) >= limit.max_requests:
                self._buckets[key] = timestamps
                retry_after = limit.window_seconds - (now - timestamps[0])
                return RateLimitDecision(allowed=False, retry_after=max(retry_after, 0.0))

            timestamps.append(now)
            self._buckets[key] = timestamps
            return RateLimitDecision(allowed=True)

    def sweep(self) -> int:
        """Drop buckets with no activity inside their window.  Returns the count."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def _sweep_locked(self, now: float) -> int:
        dead = [
            key for key, ts in self._buckets.items()
            if not ts or ts[-1] <= now - self.config.for_tier(key[1]).window_seconds
        ]
        for key in dead:
            del self._buckets[key]
        return len(dead)

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)


def client_key_from(headers: Mapping[str, str], peer: str | None) -> str:
    """Rate-limit key: first ``X-Forwarded-For`` hop, else the socket peer."""
    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return peer or "unknown"
