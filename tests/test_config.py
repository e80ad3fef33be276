"""Unit tests for config.py - Configuration management."""

import os
import pytest
from unittest.mock import patch

import config
from config import (
    DatabaseConfig,
    ControllerConfig,
    LoggingConfig,
    Config,
    load_config,
    get_config,
    reset_config,
)


class TestDatabaseConfig:
    """Tests for DatabaseConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = DatabaseConfig()
        assert cfg.host == "localhost"
        assert cfg.port == 5432
        assert cfg.database == "arr_operator"
        assert cfg.user == "arr_operator"
        assert cfg.password == ""
        assert cfg.min_pool_size == 2
        assert cfg.max_pool_size == 10

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "DB_HOST": "envhost",
            "DB_PORT": "5434",
            "DB_NAME": "envdb",
            "DB_USER": "envuser",
            "DB_PASSWORD": "envpassword",
            "DB_MIN_POOL_SIZE": "3",
            "DB_MAX_POOL_SIZE": "15",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = DatabaseConfig.from_env()
            assert cfg.host == "envhost"
            assert cfg.port == 5434
            assert cfg.database == "envdb"
            assert cfg.user == "envuser"
            assert cfg.password == "envpassword"
            assert cfg.min_pool_size == 3
            assert cfg.max_pool_size == 15

    def test_from_env_missing_password_raises(self):
        """Test that missing password raises ValueError."""
        with patch.dict(os.environ, {"DB_PASSWORD": ""}, clear=True):
            with pytest.raises(ValueError) as exc_info:
                DatabaseConfig.from_env()
            assert "DB_PASSWORD" in str(exc_info.value)

    def test_password_not_in_repr(self):
        """Test that password is not exposed in repr."""
        cfg = DatabaseConfig(password="secret123")
        assert "secret123" not in repr(cfg)


class TestControllerConfig:
    """Tests for ControllerConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = ControllerConfig()
        assert cfg.poll_interval == 5
        assert cfg.max_concurrent_reconciles == 5
        assert cfg.default_requeue_interval == 300
        assert cfg.error_requeue_interval == 30
        assert cfg.coordinator_interval == 60
        assert cfg.registration_prefix == "arr-operator"
        assert cfg.prowlarr_url_override is None

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "POLL_INTERVAL": "2",
            "MAX_CONCURRENT_RECONCILES": "8",
            "DEFAULT_REQUEUE_INTERVAL": "600",
            "ERROR_REQUEUE_INTERVAL": "15",
            "COORDINATOR_INTERVAL": "120",
            "RECONCILE_TIMEOUT": "90",
            "HTTP_TIMEOUT": "10",
            "REGISTRATION_PREFIX": "homelab",
            "PROWLARR_URL_OVERRIDE": "http://prowlarr.media.svc:9696",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = ControllerConfig.from_env()
            assert cfg.poll_interval == 2
            assert cfg.max_concurrent_reconciles == 8
            assert cfg.default_requeue_interval == 600
            assert cfg.error_requeue_interval == 15
            assert cfg.coordinator_interval == 120
            assert cfg.reconcile_timeout == 90
            assert cfg.http_timeout == 10
            assert cfg.registration_prefix == "homelab"
            assert cfg.prowlarr_url_override == "http://prowlarr.media.svc:9696"

    def test_from_env_defaults(self):
        """Test that defaults are used when env vars not set."""
        with patch.dict(os.environ, {}, clear=True):
            cfg = ControllerConfig.from_env()
            assert cfg.default_requeue_interval == 300
            assert cfg.error_requeue_interval == 30
            assert cfg.prowlarr_url_override is None


class TestLoggingConfig:
    """Tests for LoggingConfig class."""

    def test_from_env_uppercases_level(self):
        """Test log levels are normalised."""
        with patch.dict(os.environ, {"LOG_LEVEL": "debug"}, clear=False):
            assert LoggingConfig.from_env().level == "DEBUG"


class TestConfig:
    """Tests for main Config class."""

    def test_default(self):
        """Test default configuration."""
        cfg = Config.default()
        assert isinstance(cfg.database, DatabaseConfig)
        assert isinstance(cfg.controller, ControllerConfig)
        assert isinstance(cfg.logging, LoggingConfig)

    def test_from_env(self):
        """Test loading full configuration from environment."""
        env_vars = {
            "DB_HOST": "testhost",
            "DB_PASSWORD": "testpass",
            "ERROR_REQUEUE_INTERVAL": "45",
            "LOG_LEVEL": "WARNING",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = Config.from_env()
            assert cfg.database.host == "testhost"
            assert cfg.controller.error_requeue_interval == 45
            assert cfg.logging.level == "WARNING"


class TestConfigSingleton:
    """Tests for config singleton functions."""

    def setup_method(self):
        """Reset config before each test."""
        reset_config()

    def teardown_method(self):
        """Reset config after each test."""
        reset_config()

    def test_singleton_returns_same_instance(self):
        """Test that singleton returns same instance."""
        with patch.dict(os.environ, {"DB_PASSWORD": "testpass"}, clear=False):
            cfg1 = load_config()
            cfg2 = get_config()
            assert cfg1 is cfg2

    def test_reset_config(self):
        """Test reset_config clears the singleton."""
        with patch.dict(os.environ, {"DB_PASSWORD": "testpass"}, clear=False):
            cfg1 = load_config()
            reset_config()
            assert config.config is None
            cfg2 = load_config()
            assert cfg1 is not cfg2
