"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Nothing is required: every setting has a
default that matches the layout the container installer creates under
``/etc/waydroid-api``.
"""

VERSION = "3.0.0"

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings -- sourced from environment / ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- server --
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # -------------------------------------------------------------------------
    # Authentication.
    #
    # A bearer credential is valid when it matches the static token (inline
    # API_TOKEN wins over the token file) or is an HS256 JWT signed with
    # JWT_SECRET.  With no token and no secret, auth is disabled entirely.
    # -------------------------------------------------------------------------
    API_TOKEN_FILE: str = "/etc/waydroid-api/token"
    API_TOKEN: str = ""
    JWT_SECRET: str = ""

    # -- control plane --
    RATE_LIMIT_CONFIG_FILE: str = "/etc/waydroid-api/rate-limits.json"
    WEBHOOKS_FILE: str = "/etc/waydroid-api/webhooks.json"
    WEBHOOK_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    WEBHOOK_MAX_CONCURRENCY: int = Field(default=10, ge=1)
    MAX_BODY_BYTES: int = Field(default=10_240, ge=0)  # 10 KiB

    # -- command executor --
    WAYDROID_BIN: str = "waydroid"
    COMMAND_TIMEOUT_SECONDS: float = Field(default=15.0, gt=0)


settings = Settings()
