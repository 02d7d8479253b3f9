"""Configuration management for partnerlink.

Uses pydantic-settings to load configuration from environment variables.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> Path | None:
    """Search for .env file in common locations."""
    # Check current working directory first
    cwd = Path.cwd()
    if (cwd / ".env").exists():
        return cwd / ".env"

    # Check parent directories (up to 5 levels) for project root .env
    check_dir = cwd
    for _ in range(5):
        if (check_dir / ".env").exists():
            return check_dir / ".env"
        parent = check_dir.parent
        if parent == check_dir:
            break
        check_dir = parent

    # backend/src/partnerlink/config.py -> project root
    project_root = Path(__file__).resolve().parent.parent.parent.parent
    if (project_root / ".env").exists():
        return project_root / ".env"

    return None


_env_file = _find_env_file()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(_env_file) if _env_file else ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================
    # Environment
    # =========================
    environment: Literal["development", "staging", "production"] = "development"

    # =========================
    # API Settings
    # =========================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Comma separated "api_key:partner_id" pairs
    partner_api_keys: str = Field(default="", repr=False)

    # =========================
    # PostgreSQL
    # =========================
    storage_backend: Literal["memory", "postgres"] = "memory"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "partnerlink"
    postgres_user: str = "partnerlink"
    postgres_password: str = Field(default="", repr=False)
    database_pool_size: int = Field(default=10, ge=1)
    database_max_overflow: int = Field(default=20, ge=0)

    @computed_field
    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL for PostgreSQL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @computed_field
    @property
    def database_url_sync(self) -> str:
        """Synchronous database URL for Alembic."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # =========================
    # Identity Linking
    # =========================
    auto_link_threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    disambiguation_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    # Unset returns every candidate above the disambiguation threshold
    max_candidates: int | None = Field(default=None, ge=1)
    recency_window_days: int = Field(default=90, ge=0)

    # =========================
    # Search Service
    # =========================
    search_service_url: str = "http://localhost:8100"
    search_service_timeout_seconds: float = 15.0

    # =========================
    # Logging
    # =========================
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if self.disambiguation_threshold > self.auto_link_threshold:
            raise ValueError(
                "disambiguation_threshold must not exceed auto_link_threshold"
            )
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def partner_keys(self) -> dict[str, str]:
        """Parse partner API keys into a key -> partner_id mapping.

        Entries without a partner id, or blank entries, are ignored.
        """
        keys: dict[str, str] = {}
        for entry in self.partner_api_keys.split(","):
            key, sep, partner_id = entry.strip().partition(":")
            if sep and key.strip() and partner_id.strip():
                keys[key.strip()] = partner_id.strip()
        return keys

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
