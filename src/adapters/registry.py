"""
Adapter Registry - process-wide map of service type to adapter.

The registry is populated once at start-up (built-in registration plus
entry-point discovery) and is read-only while reconciles are running.
``clear`` and ``replace`` exist for test harnesses only; they must not be
called while the controller is processing work.
"""

import logging
from importlib.metadata import entry_points
from typing import Dict, List, Optional

from adapters.base import Adapter

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "arr_operator.adapters"


class AdapterNotFoundError(LookupError):
    """Raised when no adapter is registered for a service type."""

    def __init__(self, app: str):
        self.app = app
        super().__init__(f"{app} adapter not registered")


class AdapterRegistry:
    """Registry of adapter instances keyed by the service type they handle."""

    def __init__(self):
        self._adapters: Dict[str, Adapter] = {}

    def register(self, adapter: Adapter) -> None:
        """
        Register an adapter instance.

        Args:
            adapter: The adapter; its ``supported_app`` becomes the key
        """
        app = adapter.supported_app
        if app in self._adapters:
            logger.warning(
                f"Overwriting adapter for {app}: "
                f"{self._adapters[app].name} -> {adapter.name}"
            )
        self._adapters[app] = adapter
        logger.info(f"Registered adapter {adapter.name} for {app}")

    def get(self, app: str) -> Optional[Adapter]:
        """Return the adapter for a service type, or None."""
        return self._adapters.get(app)

    def require(self, app: str) -> Adapter:
        """
        Return the adapter for a service type.

        Raises:
            AdapterNotFoundError: If none is registered
        """
        adapter = self._adapters.get(app)
        if adapter is None:
            raise AdapterNotFoundError(app)
        return adapter

    def has(self, app: str) -> bool:
        return app in self._adapters

    def list(self) -> List[str]:
        """List registered service types."""
        return sorted(self._adapters.keys())

    # Test harness operations

    def replace(self, app: str, adapter: Adapter) -> Optional[Adapter]:
        """Swap the adapter for a service type, returning the previous one."""
        previous = self._adapters.get(app)
        self._adapters[app] = adapter
        return previous

    def clear(self) -> None:
        self._adapters.clear()


# Global registry instance
_registry: Optional[AdapterRegistry] = None


def get_registry() -> AdapterRegistry:
    """Get the global adapter registry singleton."""
    global _registry
    if _registry is None:
        _registry = AdapterRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_installed_adapters() -> int:
    """
    Discover adapters published by installed packages.

    Each entry point in the ``arr_operator.adapters`` group must resolve to
    an Adapter subclass, which is instantiated without arguments. Adapters
    that fail to load are skipped with a warning so one broken package
    cannot stop the controller.

    Returns:
        Number of adapters registered.
    """
    registry = get_registry()
    registered = 0

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            adapter_class = ep.load()
            registry.register(adapter_class())
            registered += 1
        except Exception as e:
            logger.warning(f"Could not load adapter {ep.name}: {e}")

    if not registered:
        logger.warning("No adapters installed; every reconcile will fail")
    return registered
