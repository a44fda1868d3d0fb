"""
Configuration settings for the opsdesk task lifecycle service.
All sensitive values are loaded from environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Opsdesk Task Service"
    debug: bool = Field(default=False)
    environment: str = Field(default="production")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Database (PostgreSQL)
    database_url: str = Field(default="")
    database_echo: bool = Field(default=False)
    db_pool_size: int = Field(default=10)
    db_max_overflow: int = Field(default=20)
    db_pool_timeout: int = Field(default=30)
    db_pool_recycle: int = Field(default=1800)

    # Redis (optional cross-process change relay)
    redis_url: str = Field(default="")

    # Scheduler Settings
    timezone: str = Field(default="Asia/Kolkata")
    daily_rollover_hour: int = Field(default=0)
    daily_rollover_minute: int = Field(default=5)
    daily_rollover_concurrency: int = Field(default=5)

    # Evidence storage
    storage_root: str = Field(default="./storage")
    storage_bucket: str = Field(default="task-evidence")
    storage_public_base_url: str = Field(default="")
    max_evidence_file_mb: int = Field(default=50)
    upload_concurrency: int = Field(default=3)

    # Daily task instantiation
    daily_tasks_initial_delay_seconds: float = Field(default=1.0)
    daily_tasks_retry_delay_seconds: float = Field(default=30.0)

    # Auto-approval defaults (used when no task_settings row exists)
    default_auto_approve_daily: bool = Field(default=True)
    default_auto_approve_cutoff_hours: float = Field(default=2.0)
    default_due_time: str = Field(default="23:59")

    # Task board
    task_page_size: int = Field(default=50)

    # Reviews
    review_stats_days: int = Field(default=30)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the application settings."""
    return settings
