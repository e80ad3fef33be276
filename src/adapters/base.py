"""
Adapter Base - the convergence contract every backend adapter implements.

An adapter speaks one service's HTTP API. The reconciliation engine drives
it through a strict sequence: connect, discover, current_state, diff, apply.
Adapters may additionally implement DirectApplier and HealthChecker.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Set

from ir import IR, ConnectionIR, HealthReport

logger = logging.getLogger(__name__)

# Resource kinds a Change can refer to
RESOURCE_QUALITY_PROFILE = "QualityProfile"
RESOURCE_DOWNLOAD_CLIENT = "DownloadClient"
RESOURCE_INDEXER = "Indexer"
RESOURCE_ROOT_FOLDER = "RootFolder"
RESOURCE_REMOTE_PATH_MAPPING = "RemotePathMapping"
RESOURCE_IMPORT_LIST = "ImportList"
RESOURCE_MEDIA_MANAGEMENT = "MediaManagement"
RESOURCE_AUTHENTICATION = "Authentication"
RESOURCE_APPLICATION = "Application"
RESOURCE_INDEXER_PROXY = "IndexerProxy"


class AdapterError(Exception):
    """Raised by adapters when a backend call fails."""


@dataclass
class ServiceInfo:
    """Result of a successful connectivity check."""

    version: str
    start_time: Optional[datetime] = None


@dataclass
class Capabilities:
    """
    Feature areas the live service currently supports.

    A flag set to False means discovery found the feature absent; diff must
    then emit no change for it. Type lists, when non-empty, restrict which
    implementations may be managed.
    """

    discovered_at: Optional[datetime] = None
    quality_profiles: bool = True
    download_clients: bool = True
    indexers: bool = True
    root_folders: bool = True
    remote_path_mappings: bool = True
    import_lists: bool = True
    media_management: bool = True
    authentication: bool = True
    applications: bool = True
    indexer_proxies: bool = True
    resolutions: List[str] = field(default_factory=list)
    download_client_types: List[str] = field(default_factory=list)
    indexer_types: List[str] = field(default_factory=list)

    def supports(self, resource_type: str) -> bool:
        """Return whether changes of the given resource kind are allowed."""
        flag = {
            RESOURCE_QUALITY_PROFILE: self.quality_profiles,
            RESOURCE_DOWNLOAD_CLIENT: self.download_clients,
            RESOURCE_INDEXER: self.indexers,
            RESOURCE_ROOT_FOLDER: self.root_folders,
            RESOURCE_REMOTE_PATH_MAPPING: self.remote_path_mappings,
            RESOURCE_IMPORT_LIST: self.import_lists,
            RESOURCE_MEDIA_MANAGEMENT: self.media_management,
            RESOURCE_AUTHENTICATION: self.authentication,
            RESOURCE_APPLICATION: self.applications,
            RESOURCE_INDEXER_PROXY: self.indexer_proxies,
        }.get(resource_type)
        return bool(flag)


@dataclass
class Change:
    """A single create, update or delete against the service."""

    resource_type: str
    name: str
    id: Optional[int] = None
    payload: Any = None


@dataclass
class ChangeSet:
    """The changes needed to move observed state to desired state."""

    creates: List[Change] = field(default_factory=list)
    updates: List[Change] = field(default_factory=list)
    deletes: List[Change] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)

    def total_changes(self) -> int:
        return len(self.creates) + len(self.updates) + len(self.deletes)

    def all_changes(self) -> List[Change]:
        """Changes in application order: creates, updates, then deletes."""
        return self.creates + self.updates + self.deletes

    def resource_types(self) -> Set[str]:
        return {change.resource_type for change in self.all_changes()}


@dataclass
class ApplyError:
    change: Change
    error: str


@dataclass
class ApplyResult:
    """Outcome of applying a change set."""

    applied: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[ApplyError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.errors

    def record_applied(self) -> None:
        self.applied += 1

    def record_failure(self, change: Change, error: Any) -> None:
        self.failed += 1
        self.errors.append(ApplyError(change=change, error=str(error)))
        logger.warning(
            f"Failed to apply {change.resource_type} '{change.name}': {error}"
        )


class Adapter(ABC):
    """
    Abstract base class for backend adapters.

    One adapter instance serves every resource of its service type, so
    implementations must not keep per-resource state between calls.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this adapter (e.g., 'sonarr-v3')."""
        pass

    @property
    @abstractmethod
    def supported_app(self) -> str:
        """Service type this adapter handles (registry key, e.g. 'sonarr')."""
        pass

    @abstractmethod
    async def connect(self, conn: ConnectionIR) -> ServiceInfo:
        """
        Verify the service is reachable and authenticated.

        Args:
            conn: Resolved connection details

        Returns:
            ServiceInfo carrying the service version

        Raises:
            AdapterError: If the service cannot be reached
        """
        pass

    @abstractmethod
    async def discover(self, conn: ConnectionIR) -> Capabilities:
        """Return the capability set of the live service."""
        pass

    @abstractmethod
    async def current_state(self, conn: ConnectionIR) -> Optional[IR]:
        """
        Fetch the configuration currently managed on the service.

        Returns:
            The observed state, or None when nothing is managed
        """
        pass

    @abstractmethod
    def diff(
        self, current: Optional[IR], desired: IR, caps: Capabilities
    ) -> ChangeSet:
        """
        Compute the changes needed to reach the desired state.

        Must be free of side effects and must not emit any change for a
        capability ``caps`` reports absent.
        """
        pass

    @abstractmethod
    async def apply(self, conn: ConnectionIR, changes: ChangeSet) -> ApplyResult:
        """
        Apply a change set.

        Individual change failures are recorded on the result. An exception
        means the apply could not be attempted at all.
        """
        pass


class DirectApplier(ABC):
    """Optional extension for settings that do not fit the diff model."""

    @abstractmethod
    async def apply_direct(self, conn: ConnectionIR, ir: IR) -> ApplyResult:
        """Push import lists, media management and authentication settings."""
        pass


class HealthChecker(ABC):
    """Optional extension exposing the service's own health report."""

    @abstractmethod
    async def get_health(self, conn: ConnectionIR) -> HealthReport:
        pass
