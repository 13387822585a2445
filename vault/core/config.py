from pydantic_settings import BaseSettings
from typing import Optional
import os


class Settings(BaseSettings):
    # Environment configuration
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Database configuration (PostgreSQL via asyncpg)
    database_url: Optional[str] = os.getenv("DATABASE_URL", "")
    database_echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # Frontend URL (for CORS and checkout redirects)
    frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # JWT configuration
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", "your-secret-key-change-this")
    jwt_algorithm: str = "HS256"

    # Stripe configuration
    stripe_secret: str = os.getenv("STRIPE_SECRET", "")
    stripe_webhook_secret: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    default_currency: str = os.getenv("DEFAULT_CURRENCY", "usd")

    # Metal price feed (goldapi.io)
    gold_api_key: str = os.getenv("GOLD_API_KEY", "")
    gold_api_base_url: str = os.getenv("GOLD_API_BASE_URL", "https://www.goldapi.io/api")
    metal_price_max_lookback_days: int = int(os.getenv("METAL_PRICE_MAX_LOOKBACK_DAYS", "10"))

    # Operations alerts (Slack-compatible incoming webhook)
    ops_alert_webhook: str = os.getenv("OPS_ALERT_WEBHOOK", "") or os.getenv("SLACK_WEBHOOK_URL", "")

    # Scheduled jobs
    metal_price_cron_enabled: bool = os.getenv("METAL_PRICE_CRON_ENABLED", "true").lower() != "false"
    metal_price_cron_expression: str = os.getenv("METAL_PRICE_CRON_EXPRESSION", "0 0 * * *")
    metal_price_cron_timezone: str = os.getenv("METAL_PRICE_CRON_TIMEZONE", "America/New_York")

    checkout_cleanup_cron_enabled: bool = os.getenv("CHECKOUT_CLEANUP_CRON_ENABLED", "true").lower() != "false"
    checkout_cleanup_cron_expression: str = os.getenv("CHECKOUT_CLEANUP_CRON_EXPRESSION", "0 * * * *")
    checkout_cleanup_cron_timezone: str = os.getenv("CHECKOUT_CLEANUP_CRON_TIMEZONE", "America/New_York")

    # Stripe checkout sessions expire after 24 hours
    checkout_session_expiry_hours: int = int(os.getenv("CHECKOUT_SESSION_EXPIRY_HOURS", "24"))
    cancelled_order_retention_hours: int = int(os.getenv("CANCELLED_ORDER_RETENTION_HOURS", "24"))

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
