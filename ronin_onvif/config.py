"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables (``ONVIF_`` prefix)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ONVIF_",
        case_sensitive=False,
        extra="ignore",
    )

    # Device connection
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    use_secure: bool = False
    verify_tls: bool = False
    device_path: str = "/onvif/device_service"
    timeout_seconds: float = 120.0  # Pulls wait at least pull_timeout plus a margin
    connect_timeout_seconds: float = 10.0
    preserve_address: bool = False  # Devices behind NAT/proxy
    wsdl_dir: Optional[str] = None  # Defaults to the onvif package WSDLs

    # Event subscription (ISO 8601 durations)
    initial_termination_time: str = "PT2M"
    pull_timeout: str = "PT1M"
    renew_extension: str = "PT2M"
    message_limit: int = 10
    auto_renew: bool = True
    max_consecutive_renew_failures: int = 3  # 0 disables

    # Reconnect backoff
    reconnect_floor_ms: float = 10.0
    reconnect_ceiling_ms: float = 120_000.0
    reconnect_factor: float = 1.5

    # Event worker
    event_cooldown_seconds: float = 30.0

    # Discovery
    discovery_timeout_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"

    # HTTP API
    app_name: str = "RoninONVIF"
    api_prefix: str = "/api"
    cors_origins: str = "http://localhost:5173,http://localhost:3000"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
