"""Configuration settings for the chain worker."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CHAIN_WORKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    port: int = 5000
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "text"

    # CORS (comma-separated list of allowed origins)
    cors_origins: str = "http://localhost:3000,http://localhost:4000"

    # Queue engine
    queue_max_attempts: int = 5
    queue_initial_delay_ms: int = 1000
    queue_max_delay_ms: int = 300_000  # 5 minutes
    queue_backoff_multiplier: float = 2.0
    queue_processing_timeout_ms: int = 60_000  # 1 minute

    # Driver loop
    worker_poll_interval_ms: int = 1000
    prune_interval_ms: int = 300_000
    completed_retention_ms: int = 3_600_000  # 1 hour

    # Dead letter alerting threshold for /metrics
    dlq_alert_threshold: int = 10

    # Simulated processor (used when no ledger backend is wired in)
    simulated_failure_rate: float = 0.0
    simulated_latency_ms: int = 50

    def queue_config(self):
        """Build the engine configuration from these settings."""
        from chain_worker.queue.models import QueueConfig

        return QueueConfig(
            max_attempts=self.queue_max_attempts,
            initial_delay_ms=self.queue_initial_delay_ms,
            max_delay_ms=self.queue_max_delay_ms,
            backoff_multiplier=self.queue_backoff_multiplier,
            processing_timeout_ms=self.queue_processing_timeout_ms,
            completed_retention_ms=self.completed_retention_ms,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def clear_settings_cache():
    """Clear settings cache (useful for testing)."""
    get_settings.cache_clear()
