"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for CropKeeper happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  Frozen AuthConfig: the auth layer never reads Settings ambiently. The
      codec and cookie policy receive an immutable AuthConfig at construction,
      so tests can build one directly with any secret, TTL, or environment.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing relies
  on key entropy -- a short key weakens every issued credential.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
  hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("cropkeeper.config")

MAX_ACCESS_TTL_SECONDS = 24 * 60 * 60
MAX_REFRESH_TTL_SECONDS = 7 * 24 * 60 * 60

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'cropkeeper.db'}"


@dataclass(frozen=True)
class AuthConfig:
    """Immutable view of the settings the auth layer depends on.

    production drives cookie flags (secure + samesite=none for a separately
    hosted frontend). csrf_allow_header_only enables the private-browsing
    fallback in the CSRF guard.
    """

    secret_key: str
    production: bool = False
    access_ttl_seconds: int = MAX_ACCESS_TTL_SECONDS
    refresh_ttl_seconds: int = MAX_REFRESH_TTL_SECONDS
    csrf_ttl_seconds: int = 24 * 60 * 60
    csrf_allow_header_only: bool = True
    algorithm: str = "HS256"


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
    environment: str = "development"  # "development" or "production"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = MAX_ACCESS_TTL_SECONDS
    refresh_token_ttl_seconds: int = MAX_REFRESH_TTL_SECONDS
    csrf_allow_header_only: bool = True

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:3000"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Resolve SECRET_KEY or refuse to start.

        DEBUG=true with no key: a random signing key is generated for this
        process. Every credential and session is lost on restart.

        Otherwise a missing key is fatal, and any key under 32 characters is
        rejected regardless of mode.
        """
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY is not set. Provide it via the environment or .env, "
                    "or set DEBUG=true for a throwaway development key."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; signing credentials with a generated key (DEBUG mode).")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_token_ttls(self) -> "Settings":
        """Cap credential lifetimes: access <= 24h, refresh <= 7 days."""
        if not 0 < self.access_token_ttl_seconds <= MAX_ACCESS_TTL_SECONDS:
            raise ValueError(f"ACCESS_TOKEN_TTL_SECONDS must be between 1 and {MAX_ACCESS_TTL_SECONDS}.")
        if not 0 < self.refresh_token_ttl_seconds <= MAX_REFRESH_TTL_SECONDS:
            raise ValueError(f"REFRESH_TOKEN_TTL_SECONDS must be between 1 and {MAX_REFRESH_TTL_SECONDS}.")
        return self

    def auth_config(self) -> AuthConfig:
        """Freeze the auth-relevant settings into an AuthConfig."""
        return AuthConfig(
            secret_key=self.secret_key,
            production=self.is_production,
            access_ttl_seconds=self.access_token_ttl_seconds,
            refresh_ttl_seconds=self.refresh_token_ttl_seconds,
            csrf_allow_header_only=self.csrf_allow_header_only,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
