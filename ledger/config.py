"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. The .env file is gitignored; .env.example is the template.

Pydantic Settings resolves values in this order:
  1. Environment variables (highest priority)
  2. .env file values
  3. Defaults defined here (lowest priority)

Usage:
    from ledger.config import settings
    print(settings.DATABASE_URL)
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Ledger API.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Verifies the bearer tokens issued by the identity service
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Ledger API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # --- Database ---
    # SQLite for development; any async driver URL works in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/ledger.db"

    # How many times a unit of work is re-run after a serialization conflict
    SERIALIZATION_RETRY_ATTEMPTS: int = 3

    # --- Authentication ---
    # Tokens are issued elsewhere; this service only verifies them
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # --- Credit card defaults ---
    DEFAULT_MINIMUM_PAYMENT_PERCENT: str = "10.00"
    DEFAULT_ALERT_LIMIT_PERCENT: str = "80.00"
    DEFAULT_DUE_DAYS_AFTER_CLOSING: int = 10
    MIN_INSTALLMENTS: int = 2
    MAX_INSTALLMENTS: int = 48

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
