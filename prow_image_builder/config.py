"""Configuration settings for prow_image_builder.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

These are the operational settings of the controller process. The
per-build inputs (targets, registry, tagging) live in
:mod:`prow_image_builder.options`.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the IMAGE_BUILDER_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMAGE_BUILDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    artifacts_dir: Path = Field(
        default=Path("/logs/artifacts"),
        description="Directory receiving one log file per build pod",
    )
    source_root: Path = Field(
        default=Path("/home/prow/go/src"),
        description="Root of the checked out sources (holds github.com/<org>/<repo>)",
    )
    service_account_dir: Path = Field(
        default=SERVICE_ACCOUNT_DIR,
        description="Mounted service account (token, ca.crt, namespace)",
    )

    # Cluster access
    api_url: str | None = Field(
        default=None,
        description="Kubernetes API URL (derived from in-cluster env if not set)",
    )
    api_token: str | None = Field(
        default=None,
        description="Bearer token (read from the service account if not set)",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for Kubernetes API requests in seconds",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Reconciliation
    reconcile_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between two reconcile ticks",
    )
    max_errors: int = Field(
        default=5,
        ge=0,
        description="Consecutive reconcile errors tolerated before the build is aborted",
    )

    # Shared code volume
    storage_class: str = Field(
        default="gce-ssd",
        description="Storage class of the shared code volume claim",
    )
    storage_size: str = Field(
        default="10Gi",
        description="Requested size of the shared code volume claim",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2, exclude={"api_token"})


__all__ = ["SERVICE_ACCOUNT_DIR", "Settings", "get_settings", "print_settings_json"]
