"""
Kitchen Service configuration
"""

from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings

ROOT_DIR = Path(__file__).parent.parent.parent.parent
ENV_FILE = ROOT_DIR / "kitchen_service" / ".env"


class KitchenServiceSettings(BaseSettings):
    # Application
    APP_NAME: str = "Kitchen Order Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Service specific
    SERVICE_NAME: str = "kitchen_service"

    # Database
    KITCHEN_DATABASE_URL: str = "sqlite+aiosqlite:///./kitchen_service.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Security
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    PAYMENT_CURRENCY: str = "usd"

    # Email (SendGrid)
    SENDGRID_API_KEY: Optional[str] = None
    FROM_EMAIL: Optional[str] = None
    FROM_NAME: str = "Kitchen Orders"
    ADMIN_EMAIL: Optional[str] = None
    EMAIL_MAX_ATTEMPTS: int = 3
    EMAIL_RETRY_BACKOFF_SECONDS: float = 2.0
    EMAIL_SEND_TIMEOUT_SECONDS: float = 10.0

    # Notifications
    NOTIFICATION_TTL_DAYS: int = 30
    NOTIFICATION_PURGE_INTERVAL_SECONDS: int = 3600

    # Webhook and side effect processing
    WEBHOOK_PROCESSING_TIMEOUT_SECONDS: float = 20.0
    WEBHOOK_STALE_AFTER_SECONDS: int = 300
    SIDE_EFFECT_TIMEOUT_SECONDS: float = 45.0

    # Order rules
    ORDER_NUMBER_MAX_ATTEMPTS: int = 5
    READY_ETA_MINUTES: int = 30

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    CORS_CREDENTIALS: bool = True
    CORS_METHODS: List[str] = ["*"]
    CORS_HEADERS: List[str] = ["*"]

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ENV_FILE
        case_sensitive = True
        extra = "ignore"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() in ("development", "dev", "local", "test")


_settings_instance = None


def get_settings() -> KitchenServiceSettings:
    """Get settings singleton instance"""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = KitchenServiceSettings()
    return _settings_instance
