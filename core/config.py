"""
core/config.py -- IOC registry settings (secret key, database URL, rate
limits, page sizes, CORS and trusted hosts).

get_settings() builds Settings once and caches it with lru_cache. The API
and the CLI read configuration only through it. Field names map to env var
names (secret_key -> SECRET_KEY) and an optional .env file is honoured.

Startup fails when SECRET_KEY is missing or shorter than 32 characters:
tokens signed with a throwaway key would stop verifying after a restart.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or ioc/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("iocregistry.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'iocregistry.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except secret_key has a default. Construct Settings() once at
    process start (via get_settings()) and pass the values explicitly to the
    components that need them.
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
    # Empty string is the sentinel for "not configured"; the validator below
    # refuses to start with it.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # 7 days
    token_expire_seconds: int = 7 * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    default_page_size: int = 50
    max_page_size: int = 200

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Refuse to start without a usable token signing secret.

        Keys shorter than 32 characters are rejected: HS256 signing relies on
        key entropy and a short key weakens every issued token.
        """
        if not self.secret_key:
            raise ValueError(
                "SECRET_KEY is required. Set SECRET_KEY in your environment or .env file."
            )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.default_page_size > self.max_page_size:
            logger.warning(
                "default_page_size (%d) exceeds max_page_size (%d); listings will be capped",
                self.default_page_size,
                self.max_page_size,
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
