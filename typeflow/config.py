"""Application configuration."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="TypeFlow", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="console", description="Log format: json or console")

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")
    redis_password: Optional[str] = Field(default=None, description="Redis password")

    # Celery / queue
    celery_broker_url: str = Field(
        default="redis://localhost:6379/1", description="Celery broker URL"
    )
    celery_result_backend: str = Field(
        default="redis://localhost:6379/2", description="Celery result backend"
    )
    queue_name: str = Field(default="workflow-queue", description="Workflow job queue name")
    worker_concurrency: int = Field(default=5, description="Concurrent jobs per worker")
    worker_max_jobs_per_second: int = Field(
        default=10, description="Maximum jobs started per second"
    )
    worker_shutdown_timeout: int = Field(
        default=30, description="Seconds to wait for in-flight jobs on shutdown"
    )
    job_max_attempts: int = Field(default=3, description="Queue delivery attempts per job")
    job_backoff_seconds: int = Field(
        default=2, description="Base delay for exponential retry backoff"
    )
    job_keep_completed: int = Field(
        default=86400, description="Seconds completed job results are kept"
    )
    job_keep_failed: int = Field(
        default=604800, description="Seconds failed job results are kept"
    )

    # Execution
    max_execution_time: Optional[float] = Field(
        default=None, description="Run timeout in seconds (None disables)"
    )
    wait_max_ms: int = Field(default=300000, description="Upper bound for Wait node delays")
    http_default_timeout_ms: int = Field(
        default=30000, description="Default HttpRequest node timeout"
    )
    max_subworkflow_depth: int = Field(
        default=10, description="Maximum nesting of ExecuteWorkflow calls"
    )

    # Rate limiting
    rate_limit_prefix: str = Field(default="ratelimit", description="Default key prefix")
    webhook_rate_limit: int = Field(default=100, description="Webhook requests per window")
    webhook_rate_window: int = Field(default=60, description="Webhook window in seconds")
    api_rate_limit: int = Field(default=500, description="API requests per window")
    api_rate_window: int = Field(default=60, description="API window in seconds")
    execution_rate_limit: int = Field(
        default=0, description="Job admissions per organization per window (0 = unlimited)"
    )
    execution_rate_window: int = Field(
        default=60, description="Job admission window in seconds"
    )

    # Webhooks
    webhook_queue_enabled: bool = Field(
        default=False, description="Queue webhook runs instead of running them inline"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() in ("development", "dev")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment.lower() in ("testing", "test")


@lru_cache()
def get_settings() -> Settings:
    """Get application settings (cached)."""
    return Settings()


# Global settings instance
settings = get_settings()
