"""
tests/test_config.py -- Unit tests for core/config.py (Settings).

Settings() is constructed directly so each test controls its own
environment through monkeypatch; the get_settings() singleton is left alone.
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD_KEY = "k" * 32


def test_missing_secret_key_refuses_to_start(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(_env_file=None)


def test_short_secret_key_rejected(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "too-short")
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(_env_file=None)


def test_defaults(monkeypatch):
    for name in ("DATABASE_URL", "LOGIN_RATE_LIMIT", "REGISTER_RATE_LIMIT", "DEBUG"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SECRET_KEY", GOOD_KEY)
    settings = Settings(_env_file=None)
    assert settings.token_expire_seconds == 604800
    assert settings.default_page_size == 50
    assert settings.max_page_size == 200
    assert settings.login_rate_limit == "10/minute"
    assert settings.register_rate_limit == "5/minute"
    assert settings.database_url.startswith("sqlite:///")
    assert settings.database_url.endswith("iocregistry.db")
    assert settings.debug is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", GOOD_KEY)
    monkeypatch.setenv("MAX_PAGE_SIZE", "500")
    monkeypatch.setenv("DATABASE_URL", "postgresql://ioc@db/ioc")
    settings = Settings(_env_file=None)
    assert settings.max_page_size == 500
    assert settings.database_url == "postgresql://ioc@db/ioc"
