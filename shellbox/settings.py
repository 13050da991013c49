"""Application settings using pydantic-settings.

Loads configuration from environment variables (prefix ``SHELLBOX_``)
with .env file support.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SHELLBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production", "testing"] = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Docker control plane
    docker_socket: str = Field(
        default="/var/run/docker.sock",
        description="Path to the Docker daemon UNIX socket",
    )
    docker_api_version: str | None = Field(
        default=None,
        description="Pin the Engine API version (e.g. 'v1.43'); unversioned when empty",
    )
    docker_request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for non-streaming Docker API calls",
    )

    # Execution defaults
    default_image: str = Field(
        default="ubuntu:latest",
        description="Image used when a request does not name one",
    )
    default_timeout_seconds: int = Field(
        default=30,
        ge=1,
        le=3600,
        description="Wall-clock limit applied when a request does not set one",
    )

    # Resource policy
    memory_mb: int = Field(default=512, ge=64, le=16384, description="Container memory cap in MiB")
    cpu_fraction: float = Field(
        default=0.5,
        gt=0.0,
        le=8.0,
        description="CPU cap as a fraction of one core",
    )

    # Unprivileged identity
    sandbox_user: str = Field(default="sandbox", description="Name of the unprivileged user")
    sandbox_uid: int = Field(default=1001, ge=1000)
    sandbox_gid: int = Field(default=1001, ge=1000)
    uid_fallback_first: int = Field(default=1002, ge=1000)
    uid_fallback_last: int = Field(default=1010, ge=1000)

    # Generated script layout
    workspace_dir: str = Field(default="/workspace")
    default_mount_point: str = Field(default="/mnt/network")

    # Supervision
    stream_drain_seconds: float = Field(
        default=5.0,
        ge=0,
        description="How long to wait for buffered output after the container exits",
    )

    # Direct (non-sandboxed) execution
    direct_execution_enabled: bool = Field(
        default=False,
        description="Allow scripts to run on the host without a container",
    )
    direct_working_directory: str = Field(default="/tmp")  # nosec B108

    @model_validator(mode="after")
    def _check_uid_range(self) -> "Settings":
        if self.uid_fallback_last < self.uid_fallback_first:
            msg = "uid_fallback_last must not be lower than uid_fallback_first"
            raise ValueError(msg)
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded once and reused.
    """
    return Settings()
