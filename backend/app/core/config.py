"""
Configuration settings for VulnScope Alerts
"""
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "VulnScope Alerts API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    API_V1_STR: str = "/api/v1"
    APP_URL: str = "http://localhost:3000"

    # Supabase (direct data access)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_KEY: Optional[str] = None

    # Redis (realtime push)
    REDIS_URL: str = "redis://localhost:6379/0"
    REALTIME_ENABLED: bool = True

    # CORS
    CORS_ORIGINS: list = ["http://localhost:3000"]

    # Internal API used by the remote data path
    ALERT_DATA_ACCESS: str = "direct"  # direct | http
    INTERNAL_API_URL: str = "http://localhost:8000"
    INTERNAL_API_TOKEN: Optional[str] = None
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Alert processing
    ALERT_MAX_RULES_PER_EVENT: int = 10
    ALERT_DEFERRED_DELAY_SECONDS: float = 5.0

    # Email providers
    EMAIL_PRIMARY_PROVIDER: str = Field(
        default="none",
        validation_alias=AliasChoices("EMAIL_PRIMARY_PROVIDER", "EMAIL_PROVIDER"),
    )  # resend | smtp | none
    EMAIL_SECONDARY_PROVIDER: str = "none"
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    FROM_EMAIL: str = "noreply@vulnscope.com"
    FROM_NAME: str = "VulnScope"

    # Email delivery behaviour
    EMAIL_ENABLE_FALLBACK: bool = True
    EMAIL_MAX_RETRIES: int = 3
    EMAIL_RETRY_DELAY_MS: int = 5000
    EMAIL_RATE_LIMIT_PER_SECOND: int = 1
    EMAIL_BATCH_SIZE: int = 5
    EMAIL_BATCH_DELAY_MS: int = 1000
    EMAIL_QUEUE_INTERVAL_SECONDS: float = 10.0
    EMAIL_QUEUE_MAX_SIZE: int = 0  # 0 = unbounded

    class Config:
        env_file = ".env"
        case_sensitive = True
        populate_by_name = True
        extra = "ignore"


settings = Settings()
