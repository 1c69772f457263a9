"""
Identity Reconciliation Configuration Settings
"""
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Storage (use IDENTITY_ prefix)
    database_path: Path = Field(
        default=Path("./data/contacts.db"),
        alias="IDENTITY_DB_PATH",
        description="SQLite database holding contact records"
    )

    # Server
    port: int = Field(default=8000, ge=1, le=65535, alias="IDENTITY_PORT")
    host: str = Field(default="0.0.0.0", alias="IDENTITY_HOST")

    # Runtime environment - controls whether error details are returned to clients
    environment: Literal["development", "production", "test"] = Field(
        default="production",
        alias="IDENTITY_ENV",
    )

    log_level: str = Field(default="INFO", alias="IDENTITY_LOG_LEVEL")

    cors_origins: list[str] = Field(
        default=["*"],
        alias="IDENTITY_CORS_ORIGINS",
        description="Allowed CORS origins (JSON list)"
    )

    service_name: str = "identity-reconciliation"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


settings = Settings()
