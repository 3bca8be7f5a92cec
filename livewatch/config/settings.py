"""Configuration models using Pydantic."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LivewatchSettings(BaseSettings):
    """Global service configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LIVEWATCH_",
        case_sensitive=False,
        validate_assignment=True,
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log format (json, plain)"
    )

    # Storage
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the JSON datasets"
    )
    debug_checks: bool = Field(
        default=False,
        description="Verify the reverse subscription index after every mutation"
    )

    # Polling configuration
    live_poll_interval: int = Field(
        default=10,
        ge=5,
        le=3600,
        description="Live status polling interval in seconds"
    )
    feed_poll_interval: int = Field(
        default=60,
        ge=10,
        le=3600,
        description="Feed polling interval in seconds"
    )
    fetch_timeout: int = Field(
        default=10,
        ge=1,
        le=60,
        description="Upper bound for a single external fetch in seconds"
    )
    fetch_max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Maximum number of retry attempts for remote API calls"
    )
    shutdown_grace_period: int = Field(
        default=10,
        ge=0,
        le=300,
        description="Seconds to wait for an in-flight poll cycle on shutdown"
    )

    # Remote API
    live_api_url: str = Field(
        default="https://api.live.bilibili.com",
        description="Base URL of the live room API"
    )
    feed_api_url: str = Field(
        default="https://api.bilibili.com",
        description="Base URL of the feed API"
    )
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="User-Agent header sent to the remote API"
    )
    rate_limit_requests: int = Field(
        default=60,
        ge=1,
        description="Maximum remote API requests per minute"
    )

    # Delivery
    onebot_url: str = Field(
        default="http://127.0.0.1:3000",
        description="Base URL of the OneBot v11 HTTP API"
    )
    onebot_access_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the OneBot HTTP API"
    )
    delivery_timeout: int = Field(
        default=10,
        ge=1,
        le=120,
        description="Upper bound for a single message delivery in seconds"
    )

    # Metrics configuration
    metrics_enabled: bool = Field(
        default=True,
        description="Enable Prometheus metrics"
    )
    metrics_port: int = Field(
        default=8080,
        ge=1024,
        le=65535,
        description="Port for Prometheus metrics server"
    )

    # Health check configuration
    health_port: int = Field(
        default=8081,
        ge=1024,
        le=65535,
        description="Port for health check endpoint"
    )
