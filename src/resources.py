"""
Resource models for arr configuration objects.

Spec and status documents are stored as camelCase JSON (the shape users
write), so every model here accepts both the camelCase alias and the
snake_case field name.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from conditions import Condition

FINALIZER_DOMAIN = "arr-operator.io"

KIND_SONARR = "SonarrConfig"
KIND_RADARR = "RadarrConfig"
KIND_LIDARR = "LidarrConfig"
KIND_READARR = "ReadarrConfig"
KIND_PROWLARR = "ProwlarrConfig"

DURATION_PATTERN = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")


def parse_duration(value: Any) -> Optional[int]:
    """
    Parse a duration into whole seconds.

    Accepts integers (seconds), numeric strings, and Go-style duration
    strings such as ``"5m"``, ``"1h30m"`` or ``"45s"``.

    Raises:
        ValueError: If the value is not a recognised duration.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            seconds = int(text)
        else:
            match = DURATION_PATTERN.match(text)
            if not match or not any(match.groups()):
                raise ValueError(f"invalid duration: {value!r}")
            hours, minutes, secs = (int(g) if g else 0 for g in match.groups())
            seconds = hours * 3600 + minutes * 60 + secs
    else:
        raise ValueError(f"invalid duration: {value!r}")

    if seconds < 0:
        raise ValueError(f"duration must not be negative: {value!r}")
    return seconds


class SpecModel(BaseModel):
    """Base for spec/status blocks serialised with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> Dict[str, Any]:
        """Dump to the camelCase JSON document stored on the resource."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ==================== Common spec blocks ====================


class SecretKeySelector(SpecModel):
    """Reference to a single key in a namespaced secret."""

    name: str
    key: Optional[str] = None


class CredentialsSecretRef(SpecModel):
    """Reference to a secret holding a username/password pair."""

    name: str
    username_key: str = "username"
    password_key: str = "password"


class ConnectionSpec(SpecModel):
    """How to reach the managed service."""

    url: str
    api_key_secret_ref: Optional[SecretKeySelector] = None
    insecure_skip_verify: bool = False
    timeout: Optional[int] = None

    @field_validator("timeout", mode="before")
    @classmethod
    def validate_timeout(cls, v: Any) -> Optional[int]:
        return parse_duration(v)


class ReconciliationSpec(SpecModel):
    """Per-resource reconciliation tuning."""

    interval: Optional[int] = None
    suspend: bool = False

    @field_validator("interval", mode="before")
    @classmethod
    def validate_interval(cls, v: Any) -> Optional[int]:
        return parse_duration(v)


class DownloadClientSpec(SpecModel):
    """A download client the service should be wired to."""

    name: str
    url: str
    implementation: Optional[str] = None
    credentials_secret_ref: Optional[CredentialsSecretRef] = None
    category: Optional[str] = None
    priority: Optional[int] = None
    enabled: bool = True


class ProwlarrRef(SpecModel):
    """Pull-model reference from a downstream service to an aggregator."""

    name: str
    auto_register: bool = True
    include: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)


class DirectIndexerSpec(SpecModel):
    """An indexer configured directly on the service."""

    name: str
    implementation: str = "Torznab"
    url: str
    api_key_secret_ref: Optional[SecretKeySelector] = None
    categories: List[int] = Field(default_factory=list)
    priority: Optional[int] = None
    enabled: bool = True


class IndexersSpec(SpecModel):
    """Indexer configuration: aggregator reference and/or direct indexers."""

    prowlarr_ref: Optional[ProwlarrRef] = None
    direct: List[DirectIndexerSpec] = Field(default_factory=list)


class ImportListSpec(SpecModel):
    """An import list; the referenced secret's keys all become settings."""

    name: str
    type: str
    enabled: bool = True
    enable_auto: bool = True
    search_on_add: bool = False
    quality_profile_name: Optional[str] = None
    root_folder_path: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    settings_secret_ref: Optional[SecretKeySelector] = None


class AuthenticationSpec(SpecModel):
    """UI authentication settings."""

    method: str = "forms"
    username: Optional[str] = None
    password_secret_ref: Optional[SecretKeySelector] = None
    authentication_required: Optional[str] = None


class MediaManagementSpec(SpecModel):
    """File handling toggles."""

    recycle_bin: Optional[str] = None
    recycle_bin_cleanup_days: Optional[int] = None
    set_permissions: Optional[bool] = None
    chmod_folder: Optional[str] = None
    chown_group: Optional[str] = None
    delete_empty_folders: Optional[bool] = None
    create_empty_folders: Optional[bool] = None
    use_hardlinks: Optional[bool] = None
    watch_library_for_changes: Optional[bool] = None


class RemotePathMappingSpec(SpecModel):
    host: str
    remote_path: str
    local_path: str


# ==================== Per-kind specs ====================


class ArrConfigSpec(SpecModel):
    """Spec shared by Sonarr, Radarr, Lidarr and Readarr configs."""

    connection: ConnectionSpec
    quality_preset: Optional[str] = None
    download_clients: List[DownloadClientSpec] = Field(default_factory=list)
    indexers: Optional[IndexersSpec] = None
    root_folders: List[str] = Field(default_factory=list)
    remote_path_mappings: List[RemotePathMappingSpec] = Field(default_factory=list)
    import_lists: List[ImportListSpec] = Field(default_factory=list)
    media_management: Optional[MediaManagementSpec] = None
    authentication: Optional[AuthenticationSpec] = None
    reconciliation: Optional[ReconciliationSpec] = None


class ProwlarrIndexerSpec(SpecModel):
    """An indexer defined on the aggregator itself."""

    name: str
    definition: str
    base_url: Optional[str] = None
    api_key_secret_ref: Optional[SecretKeySelector] = None
    priority: Optional[int] = None
    enabled: bool = True
    tags: List[str] = Field(default_factory=list)


class ProwlarrProxySpec(SpecModel):
    """An indexer proxy (FlareSolverr, HTTP, SOCKS)."""

    name: str
    type: str
    host: str
    port: Optional[int] = None
    credentials_secret_ref: Optional[CredentialsSecretRef] = None
    tags: List[str] = Field(default_factory=list)


class ProwlarrApplicationSpec(SpecModel):
    """A push-model application declaration on the aggregator."""

    name: str
    type: str
    url: str
    api_key_secret_ref: Optional[SecretKeySelector] = None
    sync_categories: List[int] = Field(default_factory=list)
    sync_level: str = "fullSync"

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        return v.lower()


class ProwlarrConfigSpec(SpecModel):
    """Spec for the aggregator resource."""

    connection: ConnectionSpec
    indexers: List[ProwlarrIndexerSpec] = Field(default_factory=list)
    proxies: List[ProwlarrProxySpec] = Field(default_factory=list)
    applications: List[ProwlarrApplicationSpec] = Field(default_factory=list)
    download_clients: List[DownloadClientSpec] = Field(default_factory=list)
    reconciliation: Optional[ReconciliationSpec] = None


# ==================== Status ====================


class HealthIssueStatus(SpecModel):
    source: str = ""
    type: str = ""
    message: str = ""
    wiki_url: Optional[str] = None


class HealthStatus(SpecModel):
    """Health summary reported by the managed service."""

    healthy: bool = True
    issue_count: int = 0
    error_count: int = 0
    warning_count: int = 0
    last_check: Optional[datetime] = None
    issues: List[HealthIssueStatus] = Field(default_factory=list)


class ProwlarrRegistration(SpecModel):
    """Pull-model registration record, owned by the registration coordinator."""

    registered: bool = False
    prowlarr_name: Optional[str] = None
    application_id: Optional[int] = None
    last_sync: Optional[datetime] = None
    message: Optional[str] = None


class ConfigStatus(SpecModel):
    """Status subresource persisted for every config kind."""

    conditions: List[Condition] = Field(default_factory=list)
    connected: bool = False
    service_version: Optional[str] = None
    last_reconcile: Optional[datetime] = None
    last_applied_hash: Optional[str] = None
    observed_generation: Optional[int] = None
    health: Optional[HealthStatus] = None
    prowlarr_registration: Optional[ProwlarrRegistration] = None
    unrealized: List[str] = Field(default_factory=list)


# ==================== Resource envelope ====================


class Resource(BaseModel):
    """
    A namespaced, versioned configuration object as held by the store.

    ``resource_version`` changes on every write and guards status updates;
    ``generation`` changes only when the spec changes.
    """

    id: Optional[int] = None
    kind: str
    namespace: str = "default"
    name: str
    generation: int = 1
    resource_version: int = 1
    finalizers: List[str] = Field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None
    spec: Dict[str, Any] = Field(default_factory=dict)
    status: Dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        """Stable identity used for per-resource serialization."""
        return f"{self.kind}/{self.namespace}/{self.name}"

    @property
    def being_deleted(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers


def finalizer_for_kind(kind: str) -> str:
    """Return the finalizer name owned by the controller for a kind."""
    return f"{kind.lower()}.{FINALIZER_DOMAIN}/finalizer"
