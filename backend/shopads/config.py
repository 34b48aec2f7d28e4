import logging
from datetime import timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator, model_validator
from functools import lru_cache

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Process-wide configuration. Read once at startup and never mutated."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Environment: "development" or "production"
    environment: str = "development"

    database_url: str = "postgresql+asyncpg://localhost/shopee_ads"

    @model_validator(mode="before")
    @classmethod
    def _fix_database_url_for_asyncpg(cls, values: dict) -> dict:
        """Hosted Postgres gives postgresql://, asyncpg needs postgresql+asyncpg:// for asyncpg."""
        if not isinstance(values, dict):
            return values
        url = values.get("database_url") or ""
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            values["database_url"] = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return values

    # Shopee Open Platform
    shopee_base_url: str = "https://partner.shopeemobile.com"
    shopee_partner_id: int = 0  # Default signing identity, used when a shop has no partner account
    shopee_partner_key: str = ""
    shopee_proxy_url: str = ""  # Forwarding proxy; when set every call goes through it

    # Token lifecycle
    token_refresh_buffer_minutes: int = 5

    # Scheduler
    schedule_timezone: str = "Asia/Ho_Chi_Minh"
    request_timeout_seconds: float = 30.0
    shop_dispatch_delay_seconds: float = 2.0
    max_concurrent_shops: int = 4
    shop_lease_seconds: int = 300

    # Secrets
    cron_secret: str = ""
    api_key: str = ""  # Required in production; in dev, empty = auth disabled
    encryption_key: str = ""

    @field_validator("schedule_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown SCHEDULE_TIMEZONE: {value!r}")
        return value

    @field_validator("shopee_base_url", "shopee_proxy_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Enforce that critical secrets are set when running in production."""
        if self.is_production:
            if not self.shopee_partner_id or not self.shopee_partner_key:
                raise ValueError(
                    "SHOPEE_PARTNER_ID and SHOPEE_PARTNER_KEY must be set in production."
                )
            if not self.cron_secret:
                raise ValueError(
                    "CRON_SECRET must be set in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.api_key:
                raise ValueError(
                    "API_KEY must be set in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.database_url or "localhost" in self.database_url:
                logger.warning("DATABASE_URL appears to point at localhost in production.")
        if self.max_concurrent_shops < 1:
            raise ValueError("MAX_CONCURRENT_SHOPS must be at least 1")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def refresh_buffer(self) -> timedelta:
        return timedelta(minutes=self.token_refresh_buffer_minutes)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.schedule_timezone)


@lru_cache
def get_settings() -> Settings:
    return Settings()
