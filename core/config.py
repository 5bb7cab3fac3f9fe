"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       the HMAC fingerprints of refresh sessions both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random key per process would invalidate every
       refresh token on restart and break multi-instance deployments.

  [M8] PASSWORD_HASH_ROUNDS below 12 is rejected. bcrypt cost is the only
       thing standing between a leaked users table and offline cracking.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("marketplace.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'marketplace_auth.db'}"

# Providers the integration layer knows how to talk to. A provider is only
# *enabled* when ENABLE_OAUTH is on and its client credentials are configured.
SUPPORTED_PROVIDERS: tuple[str, ...] = ("google", "kakao", "naver")


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens and refresh sessions
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 15 * 60
    # One canonical refresh lifetime: token exp, whitelist expiry and cookie
    # max-age are all derived from this value.
    refresh_token_expire_days: int = 14
    refresh_session_cap: int = 5
    session_sweep_interval_seconds: int = 60 * 60
    password_hash_rounds: int = 12

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    # None means "derive from DEBUG": Secure everywhere except local dev.
    secure_cookies: Optional[bool] = None
    cookie_domain: str = ""
    refresh_cookie_path: str = "/auth"

    # ------------------------------------------------------------------
    # OAuth providers (empty string means the provider is disabled)
    # ------------------------------------------------------------------

    enable_oauth: bool = False
    google_client_id: str = ""
    google_client_secret: str = ""
    kakao_client_id: str = ""
    kakao_client_secret: str = ""
    naver_client_id: str = ""
    naver_client_secret: str = ""

    oauth_default_role: str = "INFLUENCER"
    oauth_redirect_success: str = "http://localhost:3000/auth/success"
    oauth_redirect_failure: str = "http://localhost:3000/auth/failure"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    signup_rate_limit: str = "5/minute"
    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def cookies_secure(self) -> bool:
        if self.secure_cookies is None:
            return not self.debug
        return self.secure_cookies

    @property
    def refresh_token_expire_seconds(self) -> int:
        return self.refresh_token_expire_days * 24 * 60 * 60

    def provider_credentials(self, provider: str) -> tuple[str, str]:
        """Return (client_id, client_secret) for a supported provider."""
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported OAuth provider: {provider!r}")
        return getattr(self, f"{provider}_client_id"), getattr(self, f"{provider}_client_secret")

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_auth_policy(self) -> "Settings":
        """Reject weak hashing and nonsensical session settings [M8]."""
        if self.password_hash_rounds < 12:
            raise ValueError("PASSWORD_HASH_ROUNDS must be at least 12.")
        if self.refresh_session_cap < 1:
            raise ValueError("REFRESH_SESSION_CAP must be at least 1.")
        if self.access_token_expire_seconds <= 0 or self.refresh_token_expire_days <= 0:
            raise ValueError("Token lifetimes must be positive.")
        if self.oauth_default_role not in ("INFLUENCER", "ADVERTISER"):
            raise ValueError("OAUTH_DEFAULT_ROLE must be INFLUENCER or ADVERTISER.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
