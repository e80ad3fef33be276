"""Pytest configuration and fixtures."""

import base64
import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest
from unittest.mock import AsyncMock, MagicMock

from adapters.mock import MockAdapter
from adapters.registry import AdapterRegistry, reset_registry
from config import ControllerConfig
from coordinator import RegistrationCoordinator
from db import ConflictError
from events import EventRecorder
from reconciler import ConfigReconciler
from resources import Resource


class InMemoryStore:
    """
    Resource and secret store with the same contract as DatabaseManager.

    Reads return copies, so a caller only sees its own writes through the
    returned resources, exactly as with the database.
    """

    def __init__(self):
        self.resources: Dict[Tuple[str, str, str], Resource] = {}
        self.secrets: Dict[Tuple[str, str], Dict[str, str]] = {}
        self.scheduled: Dict[str, Optional[int]] = {}
        self.status_writes = 0
        self._next_id = 1

    # Synchronous helpers for test setup

    def create(
        self,
        kind: str,
        name: str,
        spec: Dict[str, Any],
        namespace: str = "default",
        finalizers: Optional[List[str]] = None,
        status: Optional[Dict[str, Any]] = None,
        deletion_timestamp: Optional[datetime] = None,
    ) -> Resource:
        resource = Resource(
            id=self._next_id,
            kind=kind,
            namespace=namespace,
            name=name,
            spec=spec,
            status=status or {},
            finalizers=finalizers or [],
            deletion_timestamp=deletion_timestamp,
        )
        self._next_id += 1
        self.resources[(kind, namespace, name)] = resource
        return resource.model_copy(deep=True)

    def put_secret(
        self, name: str, values: Dict[str, str], namespace: str = "default"
    ) -> None:
        self.secrets[(namespace, name)] = {
            key: base64.b64encode(value.encode("utf-8")).decode("ascii")
            for key, value in values.items()
        }

    def request_deletion(
        self, kind: str, name: str, namespace: str = "default"
    ) -> Resource:
        stored = self.resources[(kind, namespace, name)]
        stored.deletion_timestamp = datetime.now(timezone.utc)
        stored.resource_version += 1
        return stored.model_copy(deep=True)

    def stored(
        self, kind: str, name: str, namespace: str = "default"
    ) -> Optional[Resource]:
        return self.resources.get((kind, namespace, name))

    # Store contract

    def _current(self, resource: Resource) -> Resource:
        stored = self.resources.get(
            (resource.kind, resource.namespace, resource.name)
        )
        if stored is None or stored.resource_version != resource.resource_version:
            raise ConflictError(resource)
        return stored

    async def get_resource(
        self, kind: str, namespace: str, name: str
    ) -> Optional[Resource]:
        stored = self.resources.get((kind, namespace, name))
        return stored.model_copy(deep=True) if stored else None

    async def list_resources(
        self, kind: str, namespace: Optional[str] = None
    ) -> List[Resource]:
        return [
            r.model_copy(deep=True)
            for (k, ns, _), r in sorted(self.resources.items())
            if k == kind and (namespace is None or ns == namespace)
        ]

    async def get_resources_needing_reconciliation(
        self, limit: int = 20
    ) -> List[Resource]:
        return [r.model_copy(deep=True) for r in self.resources.values()][:limit]

    async def update_status(
        self, resource: Resource, status: Dict[str, Any]
    ) -> Resource:
        stored = self._current(resource)
        stored.status = copy.deepcopy(status)
        stored.resource_version += 1
        self.status_writes += 1
        return stored.model_copy(deep=True)

    async def add_finalizer(self, resource: Resource, finalizer: str) -> Resource:
        stored = self._current(resource)
        if finalizer not in stored.finalizers:
            stored.finalizers.append(finalizer)
        stored.resource_version += 1
        return stored.model_copy(deep=True)

    async def remove_finalizer(
        self, resource: Resource, finalizer: str
    ) -> Optional[Resource]:
        stored = self._current(resource)
        stored.finalizers = [f for f in stored.finalizers if f != finalizer]
        stored.resource_version += 1
        if stored.being_deleted and not stored.finalizers:
            del self.resources[(stored.kind, stored.namespace, stored.name)]
            return None
        return stored.model_copy(deep=True)

    async def schedule_reconcile(
        self, resource: Resource, after_seconds: Optional[int]
    ) -> None:
        self.scheduled[resource.key] = after_seconds

    async def get_secret(
        self, namespace: str, name: str
    ) -> Optional[Dict[str, str]]:
        data = self.secrets.get((namespace, name))
        return dict(data) if data is not None else None


def arr_spec(
    url: str = "http://sonarr:8989",
    secret: Optional[str] = "sonarr-api-key",
    **extra: Any,
) -> Dict[str, Any]:
    """A minimal downstream spec document."""
    connection: Dict[str, Any] = {"url": url}
    if secret is not None:
        connection["apiKeySecretRef"] = {"name": secret}
    spec: Dict[str, Any] = {"connection": connection}
    spec.update(extra)
    return spec


def prowlarr_spec(
    url: str = "http://prowlarr:9696",
    secret: Optional[str] = "prowlarr-api-key",
    applications: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """A minimal aggregator spec document."""
    spec = arr_spec(url=url, secret=secret)
    if applications:
        spec["applications"] = applications
    return spec


@pytest.fixture
def store():
    """An empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def registry():
    """An isolated adapter registry."""
    reset_registry()
    yield AdapterRegistry()
    reset_registry()


@pytest.fixture
def sonarr_adapter(registry):
    """A recording Sonarr adapter registered with the test registry."""
    adapter = MockAdapter("sonarr")
    registry.register(adapter)
    return adapter


@pytest.fixture
def controller_config():
    return ControllerConfig(
        default_requeue_interval=300,
        error_requeue_interval=30,
        registration_prefix="arr-operator",
    )


@pytest.fixture
def prowlarr_client():
    """A Prowlarr client double; register returns application id 7."""
    client = MagicMock()
    client.register = AsyncMock(return_value=7)
    client.unregister = AsyncMock(return_value=True)
    return client


@pytest.fixture
def client_factory(prowlarr_client):
    return MagicMock(return_value=prowlarr_client)


@pytest.fixture
def reconciler(store, recorder, registry, controller_config, client_factory):
    return ConfigReconciler(
        store=store,
        recorder=recorder,
        registry=registry,
        config=controller_config,
        client_factory=client_factory,
    )


@pytest.fixture
def coordinator(store, recorder, controller_config, client_factory):
    return RegistrationCoordinator(
        store=store,
        recorder=recorder,
        config=controller_config,
        client_factory=client_factory,
    )
