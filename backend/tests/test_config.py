"""
Tests for application configuration and settings validation.
"""

import os
from datetime import timedelta
import pytest
from unittest.mock import patch


def test_settings_loads_defaults():
    """Settings should load with sensible defaults in development."""
    from shopads.config import get_settings
    get_settings.cache_clear()

    with patch.dict(os.environ, {
        "ENVIRONMENT": "development",
        "DATABASE_URL": "postgresql+asyncpg://localhost/test",
    }, clear=False):
        get_settings.cache_clear()
        settings = get_settings()
        assert settings.environment == "development"
        assert settings.is_production is False
        assert settings.schedule_timezone == "Asia/Ho_Chi_Minh"
        assert settings.refresh_buffer == timedelta(minutes=5)
        assert settings.max_concurrent_shops >= 1
        get_settings.cache_clear()


def test_database_url_rewritten_for_asyncpg():
    from shopads.config import Settings
    settings = Settings(database_url="postgresql://user:pw@db.example.com/shopee")
    assert settings.database_url == "postgresql+asyncpg://user:pw@db.example.com/shopee"


def test_settings_are_immutable():
    from shopads.config import Settings
    settings = Settings(database_url="postgresql+asyncpg://localhost/test")
    with pytest.raises(Exception):
        settings.max_concurrent_shops = 10


def test_unknown_timezone_rejected():
    from shopads.config import Settings
    with pytest.raises(ValueError, match="SCHEDULE_TIMEZONE"):
        Settings(schedule_timezone="Mars/Olympus_Mons")


def test_production_requires_partner_credentials():
    """Production mode should refuse to start without a signing identity."""
    from shopads.config import Settings
    with pytest.raises(ValueError, match="SHOPEE_PARTNER_ID and SHOPEE_PARTNER_KEY"):
        Settings(
            environment="production",
            database_url="postgresql+asyncpg://prod-host/db",
            cron_secret="cron",
            api_key="key",
        )


def test_production_requires_cron_secret():
    from shopads.config import Settings
    with pytest.raises(ValueError, match="CRON_SECRET must be set"):
        Settings(
            environment="production",
            database_url="postgresql+asyncpg://prod-host/db",
            shopee_partner_id=2001234,
            shopee_partner_key="partner-key",
            api_key="key",
        )


def test_production_accepts_complete_settings():
    from shopads.config import Settings
    settings = Settings(
        environment="production",
        database_url="postgresql+asyncpg://prod-host/db",
        shopee_partner_id=2001234,
        shopee_partner_key="partner-key",
        cron_secret="cron",
        api_key="key",
    )
    assert settings.is_production is True
    assert settings.shopee_partner_id == 2001234


def test_connect_args_enable_ssl_for_hosted_postgres():
    from shopads.database import connect_args_for

    assert "ssl" in connect_args_for("postgresql+asyncpg://user:pw@db.abcd.supabase.co:5432/postgres")
    assert "ssl" in connect_args_for("postgresql+asyncpg://user:pw@roundhouse.proxy.rlwy.net:41234/railway")
    assert connect_args_for("postgresql+asyncpg://localhost/test") == {"timeout": 30}
    assert connect_args_for("sqlite+aiosqlite:///shopads.db") == {}


def test_db_engine_built_from_given_settings():
    from shopads.database import create_db_engine
    from fakes import make_settings

    engine = create_db_engine(make_settings(database_url="postgresql://user:pw@db.internal:5432/ads"))
    assert engine.url.drivername == "postgresql+asyncpg"
    assert engine.url.host == "db.internal"
    assert engine.url.database == "ads"
