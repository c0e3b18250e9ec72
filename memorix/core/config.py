from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    app_name: str = "Memorix"
    version: str = "0.1.0"
    debug: bool = False
    environment: str = Field(default="development")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Which service this process runs; each role owns its own database
    service_role: Literal["deck", "card"] = Field(default="deck")

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./memorix.db")
    database_echo: bool = Field(default=False)
    create_schema: bool = Field(default=True)

    # Message channel
    broker_backend: Literal["redis", "memory"] = Field(default="redis")
    redis_url: str = Field(default="redis://localhost:6379/0")
    broker_key_prefix: str = Field(default="memorix")
    message_ttl_ms: int = Field(default=300_000)
    deck_deleted_ttl_ms: Optional[int] = Field(default=300_000)

    # Publisher
    publish_max_attempts: int = Field(default=3, ge=1)
    publish_retry_delay_seconds: float = Field(default=1.0, ge=0)
    publish_drain_timeout_seconds: float = Field(default=10.0)

    # Consumers
    consumers_enabled: bool = Field(default=True)
    consumer_concurrency: int = Field(default=1, ge=1)
    consumer_block_ms: int = Field(default=1000)
    redelivery_idle_ms: int = Field(default=60_000)

    # Deck service (existence oracle target, used by the card role)
    deck_service_url: str = Field(default="http://localhost:8000")
    deck_service_timeout_seconds: float = Field(default=2.0, gt=0)

    # Observability
    otel_service_name: str = Field(default="memorix")
    otel_exporter_otlp_endpoint: Optional[str] = Field(default=None)
    prometheus_metrics_enabled: bool = Field(default=True)
    prometheus_metrics_port: int = Field(default=9090)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment.lower() == "testing"


# Global settings instance
settings = Settings()
