"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AccountGuard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. lockout_max_attempts -> LOCKOUT_MAX_ATTEMPTS).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning, production mode
      refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("accountguard.config")


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
    # One SQLite file per store lives under this directory.
    data_dir: str = "data"

    # ------------------------------------------------------------------
    # Tokens and hashing
    # ------------------------------------------------------------------

    token_expire_seconds: int = Field(default=3600, gt=0)
    # bcrypt accepts 4..31. Tests drop this to 4.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    lockout_max_attempts: int = Field(default=5, ge=1)
    lockout_duration_minutes: int = Field(default=15, ge=1)
    lockout_window_minutes: int = Field(default=30, ge=1)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_cap: int = Field(default=5, ge=1)
    session_ttl_seconds: int = Field(default=3600, gt=0)
    session_sweep_interval_seconds: int = Field(default=900, gt=0)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    audit_max_entries: int = Field(default=10_000, ge=1)

    # ------------------------------------------------------------------
    # Password policy
    # ------------------------------------------------------------------

    password_min_length: int = Field(default=8, ge=1)
    password_max_length: int = Field(default=128, ge=1)
    password_require_uppercase: bool = True
    password_require_lowercase: bool = True
    password_require_numbers: bool = True
    password_require_special_chars: bool = True
    password_expiration_days: int = Field(default=90, ge=1)
    password_prevent_reuse: int = Field(default=5, ge=0)

    # ------------------------------------------------------------------
    # Rate limiting / registration
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
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
    def validate_password_bounds(self) -> "Settings":
        if self.password_min_length > self.password_max_length:
            raise ValueError("PASSWORD_MIN_LENGTH must not exceed PASSWORD_MAX_LENGTH.")
        return self

    def store_url(self, name: str) -> str:
        """Return the SQLite URL for the named store under data_dir."""
        return f"sqlite:///{Path(self.data_dir) / f'{name}.db'}"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
