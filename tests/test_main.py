"""Unit tests for main.py - Application wiring."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from adapters.registry import reset_registry
from config import reset_config
from main import Application


@pytest.mark.asyncio
class TestApplication:
    """Tests for Application class."""

    @pytest.fixture(autouse=True)
    def clean_state(self, monkeypatch):
        monkeypatch.setenv("DB_PASSWORD", "testpass")
        monkeypatch.delenv("REGISTRATION_PREFIX", raising=False)
        reset_config()
        reset_registry()
        yield
        reset_config()
        reset_registry()

    @pytest.fixture
    def mock_db(self):
        db = MagicMock()
        db.connect = AsyncMock()
        db.initialize_schema = AsyncMock()
        db.close = AsyncMock()
        return db

    async def test_initialize_wires_components(self, mock_db):
        """Test the store is connected and migrated before the controller exists."""
        app = Application()

        with patch("main.DatabaseManager", return_value=mock_db), patch(
            "main.register_installed_adapters", return_value=0
        ):
            await app.initialize()

        mock_db.connect.assert_awaited_once()
        mock_db.initialize_schema.assert_awaited_once()
        assert app.controller is not None
        assert app.controller.db is mock_db
        assert app.controller.reconciler.compiler.name_prefix == "arr-operator"

    async def test_stop_closes_store(self, mock_db):
        app = Application()
        app.db = mock_db
        app.controller = MagicMock()
        app.controller.stop = AsyncMock()
        app.running = True

        await app.stop()

        app.controller.stop.assert_awaited_once()
        mock_db.close.assert_awaited_once()
        assert app.db is None
        assert app.running is False

    async def test_stop_when_never_started(self):
        """Test stop before initialize does nothing."""
        await Application().stop()
