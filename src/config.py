"""
Configuration module for the arr operator.

Loads configuration from environment variables. Every setting has a default
except the database password.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration for the resource and secret store."""

    host: str = "localhost"
    port: int = 5432
    database: str = "arr_operator"
    user: str = "arr_operator"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 2
    max_pool_size: int = 10

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "arr_operator"),
            user=os.getenv("DB_USER", "arr_operator"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "2")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "10")),
        )


@dataclass
class ControllerConfig:
    """Reconciliation loop and coordinator configuration."""

    poll_interval: int = 5  # seconds between store polls
    max_concurrent_reconciles: int = 5
    batch_size: int = 20

    # Requeue intervals
    default_requeue_interval: int = 300  # seconds, on full success
    error_requeue_interval: int = 30  # seconds, on any error path

    coordinator_interval: int = 60  # seconds between coordinator sweeps
    reconcile_timeout: int = 120  # deadline for one unit of work
    http_timeout: int = 30  # per-call network timeout

    # Names registered with the aggregator are prefixed with this value
    registration_prefix: str = "arr-operator"
    # Overrides the aggregator URL handed to registered applications
    prowlarr_url_override: Optional[str] = None

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            poll_interval=int(os.getenv("POLL_INTERVAL", "5")),
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            batch_size=int(os.getenv("RECONCILE_BATCH_SIZE", "20")),
            default_requeue_interval=int(os.getenv("DEFAULT_REQUEUE_INTERVAL", "300")),
            error_requeue_interval=int(os.getenv("ERROR_REQUEUE_INTERVAL", "30")),
            coordinator_interval=int(os.getenv("COORDINATOR_INTERVAL", "60")),
            reconcile_timeout=int(os.getenv("RECONCILE_TIMEOUT", "120")),
            http_timeout=int(os.getenv("HTTP_TIMEOUT", "30")),
            registration_prefix=os.getenv("REGISTRATION_PREFIX", "arr-operator"),
            prowlarr_url_override=os.getenv("PROWLARR_URL_OVERRIDE") or None,
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    controller: ControllerConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            controller=ControllerConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            controller=ControllerConfig(),
            logging=LoggingConfig(),
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
