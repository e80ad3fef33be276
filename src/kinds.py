"""
Config kinds - thin per-kind wrappers around stored resources.

The reconciliation engine and the registration coordinator only ever talk
to ``ConfigObject``. Each concrete kind says which service type it drives,
how its spec is parsed, and whether it takes part in aggregator
registration; everything else is shared.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

from resources import (
    KIND_LIDARR,
    KIND_PROWLARR,
    KIND_RADARR,
    KIND_READARR,
    KIND_SONARR,
    ArrConfigSpec,
    AuthenticationSpec,
    ConfigStatus,
    ConnectionSpec,
    DownloadClientSpec,
    ImportListSpec,
    IndexersSpec,
    MediaManagementSpec,
    ProwlarrApplicationSpec,
    ProwlarrConfigSpec,
    ProwlarrIndexerSpec,
    ProwlarrProxySpec,
    ProwlarrRef,
    ReconciliationSpec,
    Resource,
    SpecModel,
    finalizer_for_kind,
)
from ir import APP_LIDARR, APP_PROWLARR, APP_RADARR, APP_READARR, APP_SONARR


class ConfigObject(ABC):
    """
    Capability interface over one configuration resource.

    The spec is parsed once on construction; ``status`` is a mutable copy
    the engine edits and later persists with ``status_document()``.
    """

    kind: str = ""
    app_type: str = ""
    spec_model: Type[SpecModel] = ArrConfigSpec

    def __init__(self, resource: Resource):
        self.resource = resource
        self.spec = self.spec_model.model_validate(resource.spec)
        self.status = ConfigStatus.model_validate(resource.status or {})

    @property
    def name(self) -> str:
        return self.resource.name

    @property
    def namespace(self) -> str:
        return self.resource.namespace

    @property
    def generation(self) -> int:
        return self.resource.generation

    @property
    def obj(self) -> Resource:
        """The underlying stored resource."""
        return self.resource

    @property
    def finalizer_name(self) -> str:
        return finalizer_for_kind(self.kind)

    @property
    def connection(self) -> ConnectionSpec:
        return self.spec.connection

    @property
    def reconciliation(self) -> Optional[ReconciliationSpec]:
        return self.spec.reconciliation

    @property
    def suspended(self) -> bool:
        return bool(self.reconciliation and self.reconciliation.suspend)

    @property
    def requeue_interval(self) -> Optional[int]:
        """Per-resource success requeue override in seconds, if any."""
        if self.reconciliation is None:
            return None
        return self.reconciliation.interval

    @property
    def download_clients(self) -> List[DownloadClientSpec]:
        return self.spec.download_clients

    @property
    def indexers(self) -> Optional[IndexersSpec]:
        return None

    @property
    def prowlarr_ref(self) -> Optional[ProwlarrRef]:
        if self.indexers is None:
            return None
        return self.indexers.prowlarr_ref

    @property
    def import_lists(self) -> List[ImportListSpec]:
        return []

    @property
    def authentication(self) -> Optional[AuthenticationSpec]:
        return None

    @property
    def media_management(self) -> Optional[MediaManagementSpec]:
        return None

    # Aggregator-only sections; downstream kinds have none

    @property
    def prowlarr_indexers(self) -> List[ProwlarrIndexerSpec]:
        return []

    @property
    def prowlarr_proxies(self) -> List[ProwlarrProxySpec]:
        return []

    @property
    def prowlarr_applications(self) -> List[ProwlarrApplicationSpec]:
        return []

    @abstractmethod
    def should_register_with_prowlarr(self) -> bool:
        """Whether this kind is registered with an aggregator it references."""
        pass

    def status_document(self) -> Dict:
        """Serialise the working status for persistence."""
        return self.status.to_document()


class ArrConfig(ConfigObject):
    """Shared behaviour of the acquisition-manager kinds."""

    spec_model = ArrConfigSpec

    @property
    def indexers(self) -> Optional[IndexersSpec]:
        return self.spec.indexers

    @property
    def import_lists(self) -> List[ImportListSpec]:
        return self.spec.import_lists

    @property
    def authentication(self) -> Optional[AuthenticationSpec]:
        return self.spec.authentication

    @property
    def media_management(self) -> Optional[MediaManagementSpec]:
        return self.spec.media_management

    def should_register_with_prowlarr(self) -> bool:
        return True


class SonarrConfig(ArrConfig):
    kind = KIND_SONARR
    app_type = APP_SONARR


class RadarrConfig(ArrConfig):
    kind = KIND_RADARR
    app_type = APP_RADARR


class LidarrConfig(ArrConfig):
    kind = KIND_LIDARR
    app_type = APP_LIDARR


class ReadarrConfig(ArrConfig):
    kind = KIND_READARR
    app_type = APP_READARR


class ProwlarrConfig(ConfigObject):
    """The aggregator itself; never registers with another aggregator."""

    kind = KIND_PROWLARR
    app_type = APP_PROWLARR
    spec_model = ProwlarrConfigSpec

    @property
    def prowlarr_indexers(self) -> List[ProwlarrIndexerSpec]:
        return self.spec.indexers

    @property
    def prowlarr_proxies(self) -> List[ProwlarrProxySpec]:
        return self.spec.proxies

    @property
    def prowlarr_applications(self) -> List[ProwlarrApplicationSpec]:
        return self.spec.applications

    def should_register_with_prowlarr(self) -> bool:
        return False


CONFIG_KINDS: Dict[str, Type[ConfigObject]] = {
    cls.kind: cls
    for cls in (SonarrConfig, RadarrConfig, LidarrConfig, ReadarrConfig, ProwlarrConfig)
}

# Kinds scanned by the registration coordinator
DOWNSTREAM_KINDS = [KIND_SONARR, KIND_RADARR, KIND_LIDARR, KIND_READARR]


def wrap(resource: Resource) -> ConfigObject:
    """
    Wrap a stored resource in its kind's ConfigObject.

    Raises:
        ValueError: If the kind is unknown
        pydantic.ValidationError: If the spec does not parse
    """
    cls = CONFIG_KINDS.get(resource.kind)
    if cls is None:
        raise ValueError(f"Unknown config kind: {resource.kind}")
    return cls(resource)
