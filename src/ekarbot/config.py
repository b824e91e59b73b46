"""
Application Configuration

Centralized configuration using Pydantic Settings for type-safe
environment variable management with validation.

All settings can be overridden with EKARBOT_* environment variables or
a .env file in the working directory.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Auth core settings loaded from environment variables.
    """

    model_config = SettingsConfigDict(
        env_prefix="EKARBOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Account store
    db_path: Path = Path("data/accounts.db")
    db_timeout: float = Field(default=5.0, gt=0)

    # Persisted session storage (None keeps sessions in memory only)
    session_storage_path: Optional[Path] = None

    # Session tokens
    jwt_secret_key: str = ""  # auto-generated when empty (not suitable for production)
    jwt_algorithm: str = "HS256"
    session_ttl_minutes: int = Field(default=12 * 60, gt=0)
    verify_session_on_restore: bool = True

    # Login throttling: 5 attempts per 5 minutes per identifier
    login_max_attempts: int = Field(default=5, gt=0)
    login_window_ms: int = Field(default=300_000, gt=0)

    # Password hashing
    password_scheme: Literal["bcrypt", "plaintext"] = "bcrypt"
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # Security event log
    audit_sink: Literal["log", "sqlite"] = "log"
    audit_db_path: Path = Path("data/audit.db")

    # Logging
    log_level: str = "INFO"
    audit_log_path: Optional[Path] = None  # separate file for security events only

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once
    and reused throughout the application lifecycle.
    """
    return Settings()
