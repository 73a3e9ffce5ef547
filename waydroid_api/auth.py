"""Bearer credential verification.

Two kinds of credential are accepted:

* the static API token written by the installer (``API_TOKEN_FILE``) or
  given inline (``API_TOKEN``), compared in constant time;
* HS256 JWTs signed with ``JWT_SECRET`` (audience/issuer ``waydroid-api``).

Issuing credentials is the installer's job, not this module's.
"""

import logging
import secrets
from pathlib import Path

import jwt
from cachetools import TTLCache

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
_JWT_AUD = "waydroid-api"
_JWT_ISS = "waydroid-api"

# Token file is re-read at most this often, so rotating it needs no restart.
_TOKEN_FILE_TTL = 30


class CredentialVerifier:
    """Decides whether a bearer credential is valid."""

    def __init__(
        self,
        *,
        token: str = "",
        token_file: str | Path | None = None,
        jwt_secret: str = "",
    ) -> None:
        self._token = token.strip()
        self._token_file = Path(token_file) if token_file else None
        self._jwt_secret = jwt_secret
        self._file_cache: TTLCache[str, str | None] = TTLCache(maxsize=1, ttl=_TOKEN_FILE_TTL)

    @property
    def enabled(self) -> bool:
        """False when no credential source is configured (open access).

        An unreadable token file keeps auth enabled and rejects every
        static token, matching the installer's fail-closed behaviour.
        """
        return self._static_token() != "" or bool(self._jwt_secret)

    def is_valid(self, credential: str | None) -> bool:
        if not credential:
            return False
        static = self._static_token()
        if static and secrets.compare_digest(credential.encode(), static.encode()):
            return True
        if self._jwt_secret:
            try:
                decode_token(credential, self._jwt_secret)
                return True
            except jwt.PyJWTError:
                return False
        return False

    def _static_token(self) -> str | None:
        """Configured static token; ``""`` when none, ``None`` when unreadable."""
        if self._token:
            return self._token
        if self._token_file is None:
            return ""
        try:
            return self._file_cache["token"]
        except KeyError:
            pass
        value: str | None
        try:
            value = self._token_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            value = ""
        except OSError as exc:
            logger.error("Failed to read token file %s: %s", self._token_file, exc)
            value = None
        self._file_cache["token"] = value
        return value


def decode_token(token: str, secret: str) -> dict:
    """Decode and validate a JWT.  Raises ``jwt.PyJWTError`` on failure."""
    return jwt.decode(
        token,
        secret,
        algorithms=[ALGORITHM],
        audience=_JWT_AUD,
        issuer=_JWT_ISS,
        options={"require": ["exp", "iat", "sub", "aud", "iss"]},
    )


def bearer_token(authorization: str | None) -> str | None:
    """Credential from an ``Authorization: Bearer ...`` header value."""
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()
