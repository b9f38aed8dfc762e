"""Configuration management for the Cafe Storefront service."""

from __future__ import annotations

from common.config import Settings as BaseSettings


class Settings(BaseSettings):
    """Cafe Storefront configuration.

    Inherits the hosted-backend connection and logging settings from
    ``common.config.Settings`` and adds storefront-specific options.
    """

    # Service identity
    service_name: str = "cafe-storefront"
    service_version: str = "0.1.0"
    host: str = "0.0.0.0"
    port: int = 8030

    # Public site (used to build payment return URLs)
    site_url: str = "http://localhost:8080"
    checkout_path: str = "/checkout"

    # Timeouts and limits
    backend_timeout: float = 15.0
    backend_max_retries: int = 2
    email_timeout: float = 10.0
    event_queue_size: int = 256

    # Persisted client state; empty keeps profiles in memory only
    storage_dir: str = ""

    # Catalog
    products_table: str = "cafe_products"
    upload_bucket: str = "product-images"
    page_size: int = 6

    # Checkout
    skip_delivery_preferences: bool = False

    # Chat assistant
    chat_recommendation_limit: int = 3

    # Demo backend mounted at /mock-backend
    mock_backend_enabled: bool = True


def get_settings() -> Settings:
    """Return a settings instance built from the environment."""
    return Settings()
