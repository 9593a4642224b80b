"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AgentPro happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. SECRET_KEY and SEED_ADMIN_PASSWORD are
      both DEBUG-conditional: dev mode tolerates their absence, production
      mode refuses to start without them.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  [M8] SEED_ADMIN_PASSWORD is checked against the strong password policy at
       startup. A short or missing admin password is a hard failure outside
       DEBUG, never silently defaulted.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or documents/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("agentpro.config")

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


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
    database_url: str = f"sqlite:///{_PROJECT_ROOT / 'agentpro.db'}"
    upload_dir: str = str(_PROJECT_ROOT / "uploads")
    # Agent logos only; document uploads are not size-capped.
    logo_max_bytes: int = 5 * 1024 * 1024
    # Public origin of the web front end. Reset links point here.
    app_base_url: str = "http://localhost:3000"

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 8 * 3600

    # Password reset tokens live for one hour.
    reset_token_ttl_seconds: int = 3600

    # Two password policies coexist: a basic one for self-service reset,
    # registration and user edits, and a strong one for the seeded admin.
    basic_password_min_length: int = 6
    strong_password_min_length: int = 12

    # ------------------------------------------------------------------
    # Seed admin
    # ------------------------------------------------------------------

    seed_admin_email: str = "admin@agentpro.com"
    seed_admin_name: str = "מנהל ראשי"
    seed_admin_phone: str = "050-0000000"
    seed_admin_password: str = ""

    # ------------------------------------------------------------------
    # Email (SMTP). Empty host means messages are only logged.
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from_address: str = "no-reply@agentpro.com"
    mail_from_name: str = "AgentPro"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    api_rate_window_seconds: int = 60
    api_rate_max_requests: int = 100
    auth_rate_window_seconds: int = 900
    auth_rate_max_requests: int = 10
    upload_rate_window_seconds: int = 60
    upload_rate_max_requests: int = 20
    logs_rate_window_seconds: int = 60
    logs_rate_max_requests: int = 60
    # Request-path limiter sweeps expired entries once it tracks more than
    # this many identifiers.
    rate_limit_sweep_threshold: int = 10_000
    # Standalone limiters sweep on a timer instead.
    rate_limit_sweep_interval_seconds: int = 60

    # ------------------------------------------------------------------
    # Activity scoping
    # ------------------------------------------------------------------

    # Older activity rows only reference the client inside the metadata JSON.
    # When enabled, agents also see rows whose metadata mentions one of their
    # client ids (substring match).
    activity_metadata_fallback: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce SECRET_KEY [M6][M7] and SEED_ADMIN_PASSWORD [M8] policy.

        Dev mode (DEBUG=true): auto-generate a random SECRET_KEY with a
            warning; a missing admin password is tolerated (seeding and the
            reset-system endpoint will refuse to run).

        Production mode: both values are required.
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

        if not self.seed_admin_password:
            if not self.debug:
                raise ValueError(
                    "SEED_ADMIN_PASSWORD is required in production mode. "
                    "Set SEED_ADMIN_PASSWORD in your environment or .env file."
                )
        elif len(self.seed_admin_password) < self.strong_password_min_length:
            raise ValueError(
                f"SEED_ADMIN_PASSWORD must be at least {self.strong_password_min_length} characters."
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
