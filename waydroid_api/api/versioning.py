"""API version negotiation.

A request may pin its version in three places.  The first one present
wins, in this order:

1. Path prefix -- ``/v1/status``
2. ``X-API-Version`` header
3. ``api_version`` query parameter

With none of them, the latest supported version applies.
"""

import re
from typing import Mapping

from waydroid_api.errors import InvalidVersionError

SUPPORTED_VERSIONS: tuple[str, ...] = ("1.0", "2.0", "3.0")
DEFAULT_VERSION = SUPPORTED_VERSIONS[-1]

VERSION_HEADER = "X-API-Version"
SUPPORTED_HEADER = "X-Supported-Versions"
VERSION_QUERY_PARAM = "api_version"

_PATH_PREFIX = re.compile(r"^/v(?P<version>\d+(?:\.\d+)?)(?P<rest>/.*)?$")


def normalize_version(raw: str) -> str:
    """``"v2"``, ``"2"`` and ``"2.0"`` all become ``"2.0"``."""
    value = raw.strip()
    if value[:1] in ("v", "V"):
        value = value[1:]
    if value.isdigit():
        value = f"{int(value)}.0"
    return value


def strip_prefix(path: str) -> str:
    """Path with any ``/v{N}`` prefix removed (``/v3/metrics`` -> ``/metrics``)."""
    match = _PATH_PREFIX.match(path)
    if match is None:
        return path
    return match.group("rest") or "/"


class VersionNegotiator:
    """Resolves the version governing a request."""

    def __init__(
        self,
        supported: tuple[str, ...] = SUPPORTED_VERSIONS,
        default: str | None = None,
    ) -> None:
        self.supported = supported
        self.default = default or supported[-1]

    @property
    def supported_header(self) -> str:
        return ",".join(self.supported)

    def resolve(
        self,
        path: str,
        headers: Mapping[str, str],
        query: Mapping[str, str],
    ) -> str:
        """Return the resolved version or raise :class:`InvalidVersionError`."""
        match = _PATH_PREFIX.match(path)
        if match is not None:
            return self._check(match.group("version"), source="path")

        header = headers.get(VERSION_HEADER.lower()) or headers.get(VERSION_HEADER)
        if header:
            return self._check(header, source="header")

        param = query.get(VERSION_QUERY_PARAM)
        if param:
            return self._check(param, source="query")

        return self.default

    def _check(self, raw: str, *, source: str) -> str:
        version = normalize_version(raw)
        if version not in self.supported:
            raise InvalidVersionError(
                f"Unsupported API version '{raw}'",
                details={"source": source, "supported_versions": list(self.supported)},
            )
        return version
