"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://storefront:storefront_dev_password@db:5432/storefront"

    # Authentication
    api_key: str = "dev-api-key-change-in-production"

    # Payment gateway
    payment_gateway_url: str = "http://payment-gateway:8080"
    payment_gateway_api_key: str = "dev-gateway-key-change-in-production"
    payment_gateway_timeout_seconds: float = 10.0
    payment_webhook_secret: str = "dev-webhook-secret-change-in-production"

    # Pricing
    currency: str = "USD"
    shipping_flat_fee_cents: int = 500
    free_shipping_threshold_cents: int = 10000

    # Notifications
    notification_url: str | None = None
    notification_timeout_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
