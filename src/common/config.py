"""Centralized configuration management using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Base settings shared across all services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Hosted backend (database, auth, storage, functions)
    backend_url: str = "http://localhost:8030/mock-backend"
    backend_anon_key: str = "local-anon-key"

    # Application
    log_level: str = "INFO"
    environment: str = "development"
