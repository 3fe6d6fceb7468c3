"""
Billing Analytics Engine
Centralized Configuration Management

Pydantic settings with environment variable support for the aggregation
engine, its change feed transports and the HTTP presentation layer.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AnalyticsSettings(BaseSettings):
    """Aggregation engine tuning"""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    low_stock_threshold: int = Field(default=20, ge=0, description="Inclusive upper bound for low-stock warnings")
    top_products_limit: int = Field(default=5, ge=1, description="Number of entries in the top-selling ranking")
    sales_window_days: int = Field(default=7, ge=1, description="Distinct calendar days kept in the sales series")


class FeedSettings(BaseSettings):
    """Change feed selection and tracked collections"""

    model_config = SettingsConfigDict(env_prefix="FEED_")

    backend: str = Field(default="memory", description="Change feed transport: memory or kafka")
    transactions_collection: str = Field(default="bills", description="Collection holding bills")
    catalog_collection: str = Field(default="products", description="Collection holding the product catalog")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate feed backend"""
        allowed = ["memory", "kafka"]
        if v.lower() not in allowed:
            raise ValueError(f"Feed backend must be one of: {allowed}")
        return v.lower()


class KafkaSettings(BaseSettings):
    """Kafka snapshot topic configuration"""

    model_config = SettingsConfigDict(env_prefix="KAFKA_")

    bootstrap_servers: str = Field(default="localhost:9092", description="Kafka bootstrap servers")
    consumer_group: str = Field(default="billing-analytics", description="Consumer group ID")
    auto_offset_reset: str = Field(default="latest", description="Auto offset reset policy")
    session_timeout_ms: int = Field(default=30000, description="Session timeout")
    heartbeat_interval_ms: int = Field(default=10000, description="Heartbeat interval")
    topic_prefix: str = Field(default="billing.snapshots.", description="Prefix prepended to collection names")
    reconnect_backoff_ms: int = Field(default=1000, ge=1, description="First delay before reconnecting after a lost connection")
    reconnect_backoff_max_ms: int = Field(default=30000, ge=1, description="Upper bound of the doubling reconnect delay")

    def topic_for(self, collection: str) -> str:
        """Topic carrying full snapshots of a collection"""
        return f"{self.topic_prefix}{collection}"


class DatabaseSettings(BaseSettings):
    """Point-query store configuration"""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    enabled: bool = Field(default=False, description="Enable one-shot refreshes against the store")
    url: str = Field(default="sqlite+aiosqlite:///./billing.db", description="SQLAlchemy async database URL")
    echo: bool = Field(default=False, description="Echo SQL queries")


class MonitoringSettings(BaseSettings):
    """Logging configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="billing-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")

    version: str = Field(default="1.0.0", description="Application version")

    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    feed: FeedSettings = Field(default_factory=FeedSettings)
    kafka: KafkaSettings = Field(default_factory=KafkaSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
