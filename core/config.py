"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). List fields are read as JSON arrays.

  @model_validator(mode="after"): dev mode generates a signing key with a
      warning, production mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       the backup-code HMAC both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("feedbackauth.config")

_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'feedback_auth.db'}"

# Requests under these prefixes never need a bearer token: auth endpoints,
# health check, both API description versions, the docs UIs and metrics.
DEFAULT_PUBLIC_PATH_PREFIXES: tuple[str, ...] = (
    "/api/v1/auth/",
    "/api/v1/health",
    "/v1/api-docs",
    "/v3/api-docs",
    "/swagger-ui",
    "/redoc",
    "/metrics",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    app_version: str = "1.0.0"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Bearer tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = 3600
    public_path_prefixes: list[str] = list(DEFAULT_PUBLIC_PATH_PREFIXES)

    # ------------------------------------------------------------------
    # Credential lifecycle
    # ------------------------------------------------------------------

    # Lifetime of the challenge token a password login returns when the
    # account has two-factor enabled.
    two_factor_challenge_seconds: int = 300
    reset_token_expire_hours: int = 24
    totp_issuer: str = "YowyobFeedback"
    backup_code_count: int = 10
    backup_code_length: int = 8

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:3001"]
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.backup_code_count < 1:
            raise ValueError("BACKUP_CODE_COUNT must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
