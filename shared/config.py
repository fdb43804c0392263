"""
Shared configuration management for the local API sidecar.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_API_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")


class SidecarConfig(BaseConfig):
    """Sidecar gateway configuration.

    Every field can be set through a ``LOCAL_API_<FIELD>`` environment
    variable (for example ``LOCAL_API_PORT`` or ``LOCAL_API_TOKEN``) or passed
    directly as a keyword argument.
    """

    service_name: str = "sidecar"

    # Listener
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=46123, ge=0, le=65535)

    # Handler discovery
    api_dir: Optional[str] = Field(default=None)
    resource_dir: Optional[str] = Field(default=None)
    mode: str = Field(default="standalone")

    # Remote fallback
    remote_base: str = Field(default="https://worldmonitor.app")
    cloud_fallback: bool = Field(default=False)
    remote_timeout_seconds: float = Field(default=30.0, gt=0)

    # Access control
    token: Optional[str] = Field(default=None)
    cors_allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Outbound calls made on behalf of handlers and built-in routes
    egress_timeout_seconds: float = Field(default=20.0, gt=0)
    probe_timeout_seconds: float = Field(default=10.0, gt=0)
    feed_timeout_seconds: float = Field(default=12.0, gt=0)
    feed_slow_timeout_seconds: float = Field(default=20.0, gt=0)
    feed_max_redirects: int = Field(default=5, ge=0)
    feed_allowed_domains: List[str] = Field(default_factory=list)
    resolve_feed_hosts: bool = Field(default=True)

    # Diagnostics
    traffic_log_size: int = Field(default=200, gt=0)
    verbose: bool = Field(default=False)

    @property
    def remote_enabled(self) -> bool:
        return self.cloud_fallback and bool(self.remote_base)


def get_config(**overrides) -> SidecarConfig:
    """Get the sidecar configuration, applying keyword overrides over the environment."""
    return SidecarConfig(**overrides)
