"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      signing secrets therefore become process-wide state fixed at startup.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_secret_key -> ACCESS_SECRET_KEY).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved -- secret policy and the access/refresh TTL ordering.

Security notes:
  [S1] Access and refresh tokens are signed with two distinct secrets. A
       refresh token must never verify as an access token and vice versa, so
       identical secrets are rejected at startup.

  [S2] Secrets shorter than 32 chars are rejected outright. HS256 relies on
       key entropy.

  [S3] In production mode (DEBUG not set or false), a missing secret is a hard
       startup failure. Dev mode generates throwaway secrets with a warning.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("cchat.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'cchat_auth.db'}"

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # either generates dev secrets or raises, so callers never see "".
    access_secret_key: str = ""
    refresh_secret_key: str = ""
    access_token_ttl_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_ttl_seconds: int = Field(default=30 * 24 * 60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    # bcrypt cost factor. 12 is ~250ms on commodity hardware; tests use 4.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    store_timeout_seconds: float = Field(default=4.0, gt=0)

    # ------------------------------------------------------------------
    # HTTP transport
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    cookie_domain: str = ""
    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Password reset delivery (empty URL = reset disabled)
    # ------------------------------------------------------------------

    reset_notify_url: str = ""
    reset_notify_token: str = ""
    reset_notify_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy [S1][S2][S3].

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject short secrets and identical access/refresh secrets.
        """
        for field_name in ("access_secret_key", "refresh_secret_key"):
            env_name = field_name.upper()
            if not getattr(self, field_name):
                if self.debug:
                    setattr(self, field_name, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Sessions will not persist across restarts.", env_name
                    )
                else:
                    raise ValueError(
                        f"{env_name} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, field_name)) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{env_name} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.access_secret_key == self.refresh_secret_key:
            raise ValueError("ACCESS_SECRET_KEY and REFRESH_SECRET_KEY must be different.")
        return self

    @model_validator(mode="after")
    def validate_token_ttls(self) -> "Settings":
        """Access tokens must expire well before refresh tokens."""
        if self.access_token_ttl_seconds >= self.refresh_token_ttl_seconds:
            raise ValueError("ACCESS_TOKEN_TTL_SECONDS must be shorter than REFRESH_TOKEN_TTL_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
