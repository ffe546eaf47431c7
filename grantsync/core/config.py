"""Configuration management for the grantsync controller."""

import re
from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# prefix/name label key as accepted by the API server
LABEL_KEY_RE = re.compile(
    r"^([a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*/)?"
    r"[A-Za-z0-9]([-A-Za-z0-9_.]{0,61}[A-Za-z0-9])?$"
)


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Controller settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    # Application
    app_name: str = "grantsync"
    app_version: str = "0.1.0"
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    # Logging
    log_level: LogLevel = LogLevel.INFO
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_json: bool = False

    # Cluster
    cluster_name: str = "local"
    bootstrap_namespace: str = "default"
    default_project_name: str = "default"

    # Labels and finalizers
    project_label: str = "grantsync.io/project"
    owner_label: str = "grantsync.io/binding-owner"
    template_label: str = "grantsync.io/role-template"
    binding_finalizer: str = "grantsync.io/binding-cleanup"
    template_finalizer: str = "grantsync.io/role-template-cleanup"

    # Reconciliation
    resync_interval: int = Field(300, ge=1)  # 5 minutes
    conflict_attempts: int = Field(3, ge=1)
    retry_delay: int = Field(10, ge=0)

    # Operator runtime
    worker_limit: int = 3
    max_workers: int = 3
    liveness_endpoint: str = "http://0.0.0.0:8080/healthz"

    @field_validator("project_label", "owner_label", "template_label")
    @classmethod
    def validate_label_key(cls, v):
        """Reject label keys the API server would refuse."""
        if not LABEL_KEY_RE.match(v):
            raise ValueError(f"invalid label key: {v!r}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience function for getting settings
settings = get_settings()
