from functools import lru_cache
from typing import Optional

from pydantic import ConfigDict, Field, PostgresDsn, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Environment
    env: str = Field(
        "development", description="Environment: development, staging, production"
    )
    debug: bool = Field(False, description="Enable debug mode")

    # API Configuration
    api_title: str = Field("Rack Power Monitor API", description="API title")
    api_version: str = Field("1.0.0", description="API version")

    # Monitoring Configuration
    prometheus_enabled: bool = Field(True, description="Enable Prometheus metrics")

    # Database Configuration
    postgres_user: str = Field("postgres", description="PostgreSQL username")
    postgres_password: str = Field("postgres", description="PostgreSQL password")
    postgres_host: str = Field("localhost", description="PostgreSQL host")
    postgres_port: int = Field(5432, description="PostgreSQL port")
    postgres_db: str = Field("rack_monitor", description="PostgreSQL database name")
    database_url: Optional[str] = Field(None, description="Complete database URL")

    # Redis Configuration
    redis_host: str = Field("localhost", description="Redis host")
    redis_port: int = Field(6379, description="Redis port")
    redis_password: Optional[str] = Field(None, description="Redis password")
    redis_db: int = Field(0, description="Redis database number")
    redis_url: Optional[str] = Field(None, description="Complete Redis URL")
    redis_max_connections: int = Field(50, description="Redis max connections")

    # Logging
    log_level: str = Field("INFO", description="Logging level")

    # Evaluation cycle
    evaluation_interval_seconds: int = Field(
        60, description="Seconds between two evaluation passes", ge=1
    )
    stale_alert_timeout_minutes: Optional[int] = Field(
        None,
        description="Force-close alerts not refreshed for this many minutes "
        "(unset: alerts close only on an explicit normal observation)",
        ge=1,
    )
    rack_state_ttl_seconds: int = Field(
        300, description="TTL of the latest-known rack state cache entries"
    )

    # Reading acquisition API
    reading_source_url: Optional[str] = Field(
        None, description="Paged endpoint returning PDU power readings"
    )
    reading_sensors_url: Optional[str] = Field(
        None, description="Paged endpoint returning rack temperature/humidity sensors"
    )
    reading_source_api_key: Optional[str] = Field(
        None, description="Bearer token for the acquisition API"
    )
    reading_page_size: int = Field(100, description="Items requested per page", ge=1)
    reading_timeout_seconds: float = Field(
        30.0, description="Timeout of a single acquisition request"
    )

    # External correlation (ticketing) service
    correlation_api_url: Optional[str] = Field(
        None, description="Base URL of the external ticketing/alerting API"
    )
    correlation_api_key: Optional[str] = Field(
        None, description="Bearer token for the ticketing API"
    )
    correlation_timeout_seconds: float = Field(
        10.0, description="Timeout of a single correlation request"
    )
    correlation_max_attempts: int = Field(
        8, description="Attempts before an outbox event is marked failed", ge=1
    )
    correlation_backoff_seconds: float = Field(
        5.0, description="Base delay of the exponential retry backoff"
    )
    correlation_backoff_max_seconds: float = Field(
        900.0, description="Upper bound of the retry backoff"
    )
    correlation_batch_size: int = Field(
        50, description="Outbox events drained per worker pass"
    )
    outbox_poll_interval_seconds: int = Field(
        15, description="Seconds between two outbox drain passes"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str], info) -> str:
        if isinstance(v, str):
            return v

        values = info.data if hasattr(info, "data") else {}
        return str(
            PostgresDsn.build(
                scheme="postgresql",
                username=values.get("postgres_user"),
                password=values.get("postgres_password"),
                host=values.get("postgres_host"),
                port=values.get("postgres_port"),
                path=values.get("postgres_db"),
            )
        )

    @field_validator("redis_url", mode="before")
    @classmethod
    def assemble_redis_connection(cls, v: Optional[str], info) -> str:
        if isinstance(v, str):
            return v

        values = info.data if hasattr(info, "data") else {}
        password_part = (
            f":{values.get('redis_password')}@" if values.get("redis_password") else ""
        )
        return f"redis://{password_part}{values.get('redis_host')}:{values.get('redis_port')}/{values.get('redis_db')}"

    @property
    def is_development(self) -> bool:
        return self.env == "development"

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def correlation_enabled(self) -> bool:
        return bool(self.correlation_api_url)

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
        validate_default=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()
