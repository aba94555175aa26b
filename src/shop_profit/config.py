"""Application configuration using pydantic-settings."""

from datetime import date
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "shop-profit"
    debug: bool = False
    environment: str = "development"

    # Frontend
    frontend_url: str = "http://localhost:3000"

    # API
    api_prefix: str = "/api"

    # Shopify Admin GraphQL feed
    shopify_store_domain: str = ""  # Format: my-store.myshopify.com
    shopify_access_token: str = ""
    shopify_api_version: str = "2024-10"

    # Pagination
    feed_page_size: int = 250
    feed_max_pages: int = 400  # Hard cap on the hasNextPage loop
    feed_timeout_seconds: float = 30.0

    # Whole-report budget (fetch + aggregation), 0 disables
    report_timeout_seconds: float = 120.0

    # Reporting
    default_currency: str = "USD"
    fiscal_epoch: date = date(2025, 1, 1)  # Week 1 starts here


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
