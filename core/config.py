"""
core/config.py -- Amlak settings, read once from the environment (and .env).

Every tunable the API, the auth core and the CLI use lives on Settings:
signing key, database URL, token lifetimes, bcrypt cost, lockout policy,
rate limits and HTTP host/origin lists. Modules call get_settings() and
never read os.environ themselves.

get_settings() is lru_cached, so the first call fixes the values for the
process. Tests set their env vars before importing anything from auth/ or
api/, or call get_settings.cache_clear().

Startup rules:
  [M6] SECRET_KEY must be at least 32 characters -- HS256 tokens are only
       as strong as the key.
  [M7] Without SECRET_KEY the process refuses to start, unless DEBUG=true,
       in which case a throwaway key is generated and every token dies with
       the process.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
ads/, or client/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("amlak.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'amlak.db'}"


class Settings(BaseSettings):
    """Environment-backed configuration. Field name = env var name, upper-cased.

    Every field has a default except the effective SECRET_KEY, so a bare
    Settings() works under DEBUG=true.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    # "" means unset; resolved by resolve_secret_key below.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # Token lifetimes, seconds
    token_expire_seconds: int = 7 * 24 * 3600
    refresh_token_expire_seconds: int = 30 * 24 * 3600

    # Passwords and lockout
    bcrypt_rounds: int = 12
    lockout_threshold: int = 5
    lockout_seconds: int = 2 * 3600

    # slowapi limit strings, per client IP
    rate_limit_enabled: bool = True
    login_rate_limit: str = "5/15minute"
    register_rate_limit: str = "10/15minute"

    # HTTP
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("bcrypt_rounds")
    @classmethod
    def bcrypt_cost_in_range(cls, value: int) -> int:
        # bcrypt.gensalt accepts 4..31
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @field_validator("lockout_threshold", "lockout_seconds", "token_expire_seconds", "refresh_token_expire_seconds")
    @classmethod
    def positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def resolve_secret_key(self) -> "Settings":
        """Apply [M6] and [M7]."""
        if not self.secret_key and self.debug:
            self.secret_key = secrets.token_hex(32)
            logger.warning("DEBUG=true and no SECRET_KEY: using a random key; tokens die on restart.")
        if not self.secret_key:
            raise ValueError("SECRET_KEY is not set. Export SECRET_KEY (32+ chars) or set DEBUG=true for local use.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """The process-wide Settings instance."""
    return Settings()
