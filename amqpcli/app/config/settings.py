"""Settings for the command-line bridge. Command-line options override these values."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_AMQP_ADDR = "amqp://localhost:5672/%2f"
DEFAULT_BATCH_SIZE = 0x100

# basic.qos prefetch_count is a 16-bit field and the loop prefetches two batches.
MAX_BATCH_SIZE = 0xFFFF // 2

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    amqp_addr: str = Field(DEFAULT_AMQP_ADDR, validation_alias="AMQP_ADDR")
    broker_backend: str = Field("rabbitmq", validation_alias="BROKER_BACKEND")

    batch_size: int = Field(DEFAULT_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE, validation_alias="BATCH_SIZE")
    idle_timeout_seconds: float = Field(1.0, gt=0, validation_alias="IDLE_TIMEOUT_SECONDS")
    publish_timeout_seconds: float | None = Field(None, gt=0, validation_alias="PUBLISH_TIMEOUT_SECONDS")

    max_connection_attempts: int = Field(1, ge=1, validation_alias="MAX_CONNECTION_ATTEMPTS")
    initial_backoff_seconds: float = Field(0.5, ge=0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(5.0, ge=0, validation_alias="MAX_BACKOFF_SECONDS")
    backoff_multiplier: float = Field(2.0, ge=1, validation_alias="BACKOFF_MULTIPLIER")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level
