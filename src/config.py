"""
Configuration module for the Analysis Services reconciler.

Loads configuration from environment variables. Per-resource timeout
overrides are layered on top of the environment defaults.
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

DEFAULT_RESOURCE_MANAGER_ENDPOINT = "https://management.azure.com"
DEFAULT_API_VERSION = "2017-08-01"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class AzureConfig:
    """Resource Manager connection configuration."""

    subscription_id: str = ""
    access_token: str = field(default="", repr=False)  # Never log the token
    resource_manager_endpoint: str = DEFAULT_RESOURCE_MANAGER_ENDPOINT
    api_version: str = DEFAULT_API_VERSION
    poll_interval: int = 10  # seconds between operation status checks
    request_timeout: int = 60  # seconds per HTTP request

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            subscription_id=os.getenv("AZURE_SUBSCRIPTION_ID", ""),
            access_token=os.getenv("AZURE_ACCESS_TOKEN", ""),
            resource_manager_endpoint=os.getenv(
                "AZURE_RESOURCE_MANAGER_ENDPOINT", DEFAULT_RESOURCE_MANAGER_ENDPOINT
            ).rstrip("/"),
            api_version=os.getenv(
                "AZURE_ANALYSIS_SERVICES_API_VERSION", DEFAULT_API_VERSION
            ),
            poll_interval=int(os.getenv("AZURE_POLL_INTERVAL", "10")),
            request_timeout=int(os.getenv("AZURE_REQUEST_TIMEOUT", "60")),
        )


@dataclass
class TimeoutsConfig:
    """Per-operation deadlines, in minutes."""

    create: float = 30
    read: float = 5
    update: float = 30
    delete: float = 30

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            create=float(os.getenv("AAS_TIMEOUT_CREATE", "30")),
            read=float(os.getenv("AAS_TIMEOUT_READ", "5")),
            update=float(os.getenv("AAS_TIMEOUT_UPDATE", "30")),
            delete=float(os.getenv("AAS_TIMEOUT_DELETE", "30")),
        )

    def with_overrides(self, overrides: Optional[Dict[str, Any]]) -> "TimeoutsConfig":
        """Return a copy with caller-supplied overrides applied."""
        if not overrides:
            return self
        names = {f.name for f in fields(self)}
        known = {k: float(v) for k, v in overrides.items() if k in names}
        return replace(self, **known)

    def seconds(self, operation: str) -> float:
        """Deadline for an operation, in seconds."""
        return getattr(self, operation) * 60


@dataclass
class FeaturesConfig:
    """Behavioural switches."""

    # Refuse to create over an existing server that was not imported
    prevent_accidental_import: bool = True

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            prevent_accidental_import=_env_bool(
                "AAS_PREVENT_ACCIDENTAL_IMPORT", "true"
            ),
        )


@dataclass
class ReconcilerConfig:
    """Operator reconciliation loop configuration."""

    reconcile_interval: int = 60  # seconds between cache polls
    requeue_after: int = 300  # seconds before a failed resource is retried
    batch_size: int = 10

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            reconcile_interval=int(os.getenv("AAS_RECONCILE_INTERVAL", "60")),
            requeue_after=int(os.getenv("AAS_REQUEUE_AFTER", "300")),
            batch_size=int(os.getenv("AAS_BATCH_SIZE", "10")),
        )


@dataclass
class Config:
    """Main configuration object."""

    azure: AzureConfig
    timeouts: TimeoutsConfig
    features: FeaturesConfig
    reconciler: ReconcilerConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            azure=AzureConfig.from_env(),
            timeouts=TimeoutsConfig.from_env(),
            features=FeaturesConfig.from_env(),
            reconciler=ReconcilerConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            azure=AzureConfig(),
            timeouts=TimeoutsConfig(),
            features=FeaturesConfig(),
            reconciler=ReconcilerConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
