"""
Backend adapters for the arr operator.

This package defines the convergence contract adapters implement, the
shared diff helpers, and the process-wide adapter registry.
"""

from adapters.base import (
    Adapter,
    AdapterError,
    ApplyResult,
    Capabilities,
    Change,
    ChangeSet,
    DirectApplier,
    HealthChecker,
    ServiceInfo,
)
from adapters.registry import AdapterNotFoundError, AdapterRegistry, get_registry

__all__ = [
    "Adapter",
    "AdapterError",
    "ApplyResult",
    "Capabilities",
    "Change",
    "ChangeSet",
    "DirectApplier",
    "HealthChecker",
    "ServiceInfo",
    "AdapterNotFoundError",
    "AdapterRegistry",
    "get_registry",
]
