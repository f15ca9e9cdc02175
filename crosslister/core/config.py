# crosslister/core/config.py

import os
from functools import lru_cache
from typing import Annotated, List, Optional
from pydantic import BeforeValidator, ConfigDict
from pydantic_settings import BaseSettings


def _parse_email_list(value):
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        return [email.strip() for email in value.split(",") if email.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(email).strip() for email in value if str(email).strip()]
    return []


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)

    Marketplace credentials are deliberately absent: they are stored per
    platform in the platform_configs table and managed by operators.
    """
    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./crosslister.db"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Upper bound for every single marketplace call made by the engine
    ADAPTER_TIMEOUT_SECONDS: float = 30.0

    # Marketplace endpoints
    EBAY_TRADING_URL: str = "https://api.ebay.com/ws/api.dll"
    EBAY_SANDBOX_TRADING_URL: str = "https://api.sandbox.ebay.com/ws/api.dll"
    EBAY_COMPATIBILITY_LEVEL: str = "1155"
    FACEBOOK_GRAPH_URL: str = "https://graph.facebook.com/v18.0"
    DEPOP_API_URL: str = "https://api.depop.com/api/v1"

    # SMTP / Email (sale alerts and Craigslist email posting)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT: int = 30
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_FROM_NAME: Optional[str] = None
    NOTIFICATION_EMAILS: Annotated[List[str], BeforeValidator(lambda v: _parse_email_list(v))] = []

    # Notifications that need no operator action expire after this many days
    NOTIFICATION_TTL_DAYS: int = 30

    # Scheduler
    RECONCILE_SCHEDULE: str = "0 */4 * * *"
    RECONCILE_SCHEDULE_ENABLED: bool = False

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
