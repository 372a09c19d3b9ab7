"""
Centralized configuration management for the application

This module provides a single source of truth for all configuration settings,
loading from environment variables with sensible defaults. All configuration
values can be overridden via environment variables.

Example:
    ```python
    from constituency.config import config

    chunk_size = config.IMPORT_CHUNK_SIZE

    warnings = config.validate()

    if config.is_sqlite():
        pass
    ```
"""
import os
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """
    Application configuration with environment variable support

    All configuration values can be overridden by setting corresponding environment
    variables. See env.example for a list of available configuration options.
    """

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./constituency.db")

    # SQLite-specific pool settings
    SQLITE_POOL_SIZE: int = int(os.getenv("SQLITE_POOL_SIZE", "10"))
    SQLITE_MAX_OVERFLOW: int = int(os.getenv("SQLITE_MAX_OVERFLOW", "10"))

    # PostgreSQL-specific pool settings (if using PostgreSQL)
    POSTGRES_POOL_SIZE: int = int(os.getenv("POSTGRES_POOL_SIZE", "20"))
    POSTGRES_MAX_OVERFLOW: int = int(os.getenv("POSTGRES_MAX_OVERFLOW", "30"))

    # Application Configuration
    DEBUG: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_JSON: bool = os.getenv("LOG_JSON", "false").lower() in ("true", "1", "yes")
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")
    LOG_TO_FILE: bool = os.getenv("LOG_TO_FILE", "true").lower() in ("true", "1", "yes")
    LOG_FILE_MAX_BYTES: int = int(os.getenv("LOG_FILE_MAX_BYTES", "10485760"))
    LOG_FILE_BACKUP_COUNT: int = int(os.getenv("LOG_FILE_BACKUP_COUNT", "5"))

    # CORS Configuration
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
        if origin.strip()
    ]

    # Authentication: the upstream identity provider forwards the signed-in email
    AUTH_EMAIL_HEADER: str = os.getenv("AUTH_EMAIL_HEADER", "X-User-Email")

    # Voter import configuration
    IMPORT_CHUNK_SIZE: int = int(os.getenv("IMPORT_CHUNK_SIZE", "250"))
    IMPORT_BATCH_SIZE: int = int(os.getenv("IMPORT_BATCH_SIZE", "1000"))
    IMPORT_MAX_RETRIES: int = int(os.getenv("IMPORT_MAX_RETRIES", "3"))
    IMPORT_RETRY_BASE_DELAY: float = float(os.getenv("IMPORT_RETRY_BASE_DELAY", "1.0"))
    IMPORT_CHUNK_PAUSE_SECONDS: float = float(os.getenv("IMPORT_CHUNK_PAUSE_SECONDS", "0.1"))
    MAX_REPORTED_ERRORS: int = int(os.getenv("MAX_REPORTED_ERRORS", "100"))
    MATCH_UPDATE_BATCH_SIZE: int = int(os.getenv("MATCH_UPDATE_BATCH_SIZE", "100"))

    # Geocoding configuration (Nominatim usage policy: 1 request/second, identifying User-Agent)
    GEOCODING_PROVIDER_URL: str = os.getenv(
        "GEOCODING_PROVIDER_URL", "https://nominatim.openstreetmap.org/search"
    )
    GEOCODING_USER_AGENT: str = os.getenv("GEOCODING_USER_AGENT", "Constituency-Voter-Management/1.0")
    GEOCODING_RATE_LIMIT_DELAY: float = float(os.getenv("GEOCODING_RATE_LIMIT_DELAY", "1.0"))
    GEOCODING_TIMEOUT: float = float(os.getenv("GEOCODING_TIMEOUT", "30.0"))
    GEOCODING_PROGRESS_FLUSH_EVERY: int = int(os.getenv("GEOCODING_PROGRESS_FLUSH_EVERY", "10"))
    GEOCODING_REGION_SUFFIX: str = os.getenv("GEOCODING_REGION_SUFFIX", "Sabah, Malaysia")

    # Job observation
    JOB_POLL_INTERVAL_SECONDS: float = float(os.getenv("JOB_POLL_INTERVAL_SECONDS", "2.0"))

    # Retry Configuration
    DEFAULT_MAX_RETRIES: int = int(os.getenv("DEFAULT_MAX_RETRIES", "3"))
    DEFAULT_RETRY_DELAY: float = float(os.getenv("DEFAULT_RETRY_DELAY", "0.1"))

    # Rate Limiting Configuration
    RATE_LIMIT_PER_HOUR: int = int(os.getenv("RATE_LIMIT_PER_HOUR", "1000"))
    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("true", "1", "yes")

    @classmethod
    def validate(cls) -> List[str]:
        """
        Validate configuration and return list of warnings/errors

        Returns:
            List of validation messages (empty if all valid)
        """
        warnings = []

        if cls.IMPORT_CHUNK_SIZE < 1:
            warnings.append("IMPORT_CHUNK_SIZE must be at least 1")

        if cls.IMPORT_MAX_RETRIES < 1:
            warnings.append("IMPORT_MAX_RETRIES must be at least 1")

        if cls.GEOCODING_RATE_LIMIT_DELAY < 1.0 and "nominatim.openstreetmap.org" in cls.GEOCODING_PROVIDER_URL:
            warnings.append(
                f"Warning: GEOCODING_RATE_LIMIT_DELAY ({cls.GEOCODING_RATE_LIMIT_DELAY}s) is below "
                "the public Nominatim limit of one request per second."
            )

        if cls.SQLITE_POOL_SIZE > 20:
            warnings.append(
                f"Warning: SQLite pool size ({cls.SQLITE_POOL_SIZE}) is high. "
                "SQLite works better with smaller pools (10-15 recommended)."
            )

        return warnings

    @classmethod
    def is_sqlite(cls) -> bool:
        """Check if using SQLite database"""
        return cls.DATABASE_URL.startswith("sqlite")

    @classmethod
    def is_postgres(cls) -> bool:
        """Check if using PostgreSQL database"""
        return cls.DATABASE_URL.startswith("postgresql")


# Global config instance
config = Config()
