"""Engine and server settings."""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Bayeux server settings, overridable through BAYEUX_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="BAYEUX_")

    # Protocol tracing at DEBUG level
    tracing: bool = False

    # Advised reconnect intervals, in seconds
    poll_interval: int = 5  # callback-polling (JSONP) clients
    long_poll_interval: int = 30  # long-polling clients

    # Transport limit on how long a parked connect is held open, in seconds
    long_poll_timeout: float = 45.0
    disconnect_check_interval: float = 1.0

    # Publish application-channel messages to their subscribers
    broadcast_application_channels: bool = True

    # Server-sent events stream of published traffic at /cometd/monitor
    monitor_enabled: bool = True

    # HTTP server
    app_name: str = "Bayeux Server"
    app_version: str = "0.6.1"
    cors_origins: List[str] = ["*"]
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
