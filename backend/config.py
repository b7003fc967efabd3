"""
Centralized configuration for the CSV email flagger backend.
All environment variables are read and validated here.
"""

import os
from collections.abc import Callable
from datetime import UTC, datetime


class Config:
    """Application configuration with validation."""

    # Application version (single source of truth)
    VERSION: str = "1.0.0"

    # Testing mode detection
    TESTING: bool = os.getenv("TESTING", "").lower() in ("1", "true", "yes")

    # Time provider for testability (dependency injection)
    _now_provider: Callable[[], datetime] | None = None

    @classmethod
    def set_time_provider(cls, provider: Callable[[], datetime] | None) -> None:
        """Set custom time provider for testing."""
        cls._now_provider = provider

    @classmethod
    def now_utc(cls) -> datetime:
        """Get current UTC time (injectable for tests)."""
        if cls._now_provider:
            return cls._now_provider()
        return datetime.now(UTC)

    # Server
    PORT: int = int(os.getenv("PORT", "8080"))
    HOST: str = os.getenv("HOST", "0.0.0.0")
    DEBUG: bool = os.getenv("FLASK_ENV", "production") == "development"

    # Upload limits
    MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "10"))
    MAX_CONTENT_LENGTH: int = MAX_UPLOAD_MB * 1024 * 1024  # Convert to bytes

    # CORS
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "")  # Comma-separated, empty = same-origin only

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Storage
    STORAGE_DIR: str = os.getenv("STORAGE_DIR", os.path.join(os.path.dirname(__file__), "storage"))

    @classmethod
    def get_cors_origins(cls) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        if not cls.CORS_ORIGINS:
            return []  # No wildcard, same-origin only
        return [origin.strip() for origin in cls.CORS_ORIGINS.split(",") if origin.strip()]

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values."""
        if cls.MAX_UPLOAD_MB < 1 or cls.MAX_UPLOAD_MB > 100:
            raise ValueError(f"MAX_UPLOAD_MB must be between 1 and 100, got {cls.MAX_UPLOAD_MB}")

        if cls.LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"LOG_LEVEL must be valid logging level, got '{cls.LOG_LEVEL}'")

        if cls.PORT < 1 or cls.PORT > 65535:
            raise ValueError(f"PORT must be between 1 and 65535, got {cls.PORT}")

        if not cls.STORAGE_DIR:
            raise ValueError("STORAGE_DIR must not be empty")


# Validate on import
Config.validate()
