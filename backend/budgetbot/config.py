import logging
from pydantic_settings import BaseSettings
from pydantic import model_validator, ConfigDict
from functools import lru_cache

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment: "development" or "production"
    environment: str = "development"

    database_url: str = "postgresql+asyncpg://localhost/budget_bot"

    @model_validator(mode="before")
    @classmethod
    def _fix_database_url_for_asyncpg(cls, values: dict) -> dict:
        """Heroku/Railway Postgres gives postgresql:// — we need postgresql+asyncpg:// for asyncpg."""
        if not isinstance(values, dict):
            return values
        url = values.get("database_url") or ""
        if url.startswith("postgresql://") and "+asyncpg" not in url:
            values["database_url"] = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return values

    api_key: str = ""  # Required in production; in dev, empty = auth disabled
    cron_secret: str = ""

    # All "today" / "this week" math and revert times use this zone
    timezone: str = "Australia/Sydney"
    http_timeout: float = 30.0

    # Google Ads
    google_ads_developer_token: str = ""
    google_ads_client_id: str = ""
    google_ads_client_secret: str = ""
    google_ads_refresh_token: str = ""
    google_ads_login_customer_id: str = ""

    # FreshSales (CRM)
    freshsales_domain: str = ""
    freshsales_api_key: str = ""
    hourly_updates_flag: str = "cf_whatsapp_hourly_updates"

    # WildJar (call tracking)
    wildjar_base_url: str = "https://api.wildjar.com"
    wildjar_token: str = ""

    # LandBot (chat)
    landbot_base_url: str = "https://api.landbot.io/v1"
    landbot_token: str = ""
    enquiry_template_id: int = 1060
    enquiry_template_language: str = "en"

    # Budget pause / revert
    paused_budget_amount: int = 1
    revert_hour: int = 9
    revert_max_attempts: int = 8
    revert_backoff_seconds: int = 60

    # Metric fan-out retries on rate limiting
    aggregate_retry_attempts: int = 3
    aggregate_retry_multiplier: float = 1.0

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Enforce that critical secrets are set when running in production."""
        if self.is_production:
            if not self.api_key:
                raise ValueError(
                    "API_KEY must be set in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if not self.cron_secret:
                raise ValueError(
                    "CRON_SECRET must be set in production. "
                    "Reverts are driven by the cron endpoint and must not be callable anonymously."
                )
            if not self.database_url or "localhost" in self.database_url:
                logger.warning("DATABASE_URL appears to point at localhost in production.")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def freshsales_base_url(self) -> str:
        return f"https://{self.freshsales_domain}.myfreshworks.com/crm/sales/api"


@lru_cache
def get_settings() -> Settings:
    return Settings()
