"""Points Ledger - Core Configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Points Ledger"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    allowed_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Database
    database_url: str = Field(
        ...,
        description="Async SQLAlchemy URL (mysql+aiomysql://... or sqlite+aiosqlite://...)",
    )

    # Redis (task queue + pending backfill queue)
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL for task queue",
    )

    # Service-to-service auth
    internal_service_token: str = Field(
        default="", description="Bearer token for internal endpoints (earn, grants, accounts)"
    )

    # Ledger policy
    signup_grant_credits: int = Field(
        default=0, ge=0, description="Credits granted when an account is opened"
    )
    conflict_max_retries: int = Field(
        default=5, ge=1, description="Attempts for an operation that lost a storage race"
    )
    conflict_backoff_base_ms: int = Field(
        default=20, ge=0, description="Base delay for exponential conflict backoff"
    )
    transactions_default_limit: int = Field(default=50, ge=1)
    transactions_max_limit: int = Field(default=100, ge=1)

    # Background jobs
    backfill_queue_key: str = Field(
        default="points:backfill", description="Redis hash holding unlogged transactions"
    )
    backfill_interval_seconds: float = Field(default=30.0, gt=0)
    reward_expiry_interval_seconds: float = Field(default=60.0, gt=0)

    # Rewards
    default_reward_ttl_seconds: int = Field(default=30 * 24 * 3600, ge=0)

    @property
    def cors_origins(self) -> list[str]:
        """Allowed CORS origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()  # type: ignore[call-arg]
