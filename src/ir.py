"""
Intermediate Representation (IR).

The IR is the backend-agnostic desired-configuration document the compiler
produces for one resource, and also the shape adapters use to report the
observed state of a service. Sections that are ``None`` or empty are not
managed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

IR_VERSION = "v1"

# Service types (adapter registry keys)
APP_SONARR = "sonarr"
APP_RADARR = "radarr"
APP_LIDARR = "lidarr"
APP_READARR = "readarr"
APP_PROWLARR = "prowlarr"

PROTOCOL_TORRENT = "torrent"
PROTOCOL_USENET = "usenet"

SYNC_LEVEL_DISABLED = "disabled"
SYNC_LEVEL_ADD_ONLY = "addOnly"
SYNC_LEVEL_FULL_SYNC = "fullSync"

HEALTH_ERROR = "error"
HEALTH_WARNING = "warning"
HEALTH_NOTICE = "notice"

# Newznab category ranges synced to each application type
DEFAULT_SYNC_CATEGORIES: Dict[str, List[int]] = {
    APP_RADARR: [2000, 2010, 2020, 2030, 2040, 2045, 2050, 2060],
    APP_SONARR: [5000, 5010, 5020, 5030, 5040, 5045, 5050],
    APP_LIDARR: [3000, 3010, 3020, 3030, 3040],
    APP_READARR: [7000, 7010, 7020, 7030, 8000, 8010],
}


@dataclass
class ConnectionIR:
    """Resolved connection to one service instance. Never persisted."""

    url: str
    api_key: str = field(default="", repr=False)
    insecure_skip_verify: bool = False
    timeout: Optional[int] = None


@dataclass
class QualityIR:
    preset: str
    profile_name: str


@dataclass
class DownloadClientIR:
    name: str
    implementation: str
    protocol: str = ""
    host: str = ""
    port: int = 0
    use_ssl: bool = False
    url_base: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    category: str = ""
    priority: int = 1
    enabled: bool = True


@dataclass
class IndexerIR:
    name: str
    implementation: str
    protocol: str = ""
    url: str = ""
    api_key: str = field(default="", repr=False)
    categories: List[int] = field(default_factory=list)
    priority: int = 25
    enabled: bool = True


@dataclass
class IndexersIR:
    # Indexers pushed by the aggregator are not managed directly
    prowlarr_managed: bool = False
    direct: List[IndexerIR] = field(default_factory=list)


@dataclass
class RootFolderIR:
    path: str


@dataclass
class RemotePathMappingIR:
    host: str
    remote_path: str
    local_path: str


@dataclass
class ImportListIR:
    name: str
    type: str
    enabled: bool = True
    enable_auto: bool = True
    search_on_add: bool = False
    quality_profile_name: str = ""
    root_folder_path: str = ""
    settings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MediaManagementIR:
    recycle_bin: Optional[str] = None
    recycle_bin_cleanup_days: Optional[int] = None
    set_permissions: Optional[bool] = None
    chmod_folder: Optional[str] = None
    chown_group: Optional[str] = None
    delete_empty_folders: Optional[bool] = None
    create_empty_folders: Optional[bool] = None
    use_hardlinks: Optional[bool] = None
    watch_library_for_changes: Optional[bool] = None


@dataclass
class AuthenticationIR:
    method: str
    username: str = ""
    password: str = field(default="", repr=False)
    authentication_required: str = ""


@dataclass
class ProwlarrIndexerIR:
    name: str
    definition: str
    enable: bool = True
    priority: int = 25
    base_url: str = ""
    api_key: str = field(default="", repr=False)
    tags: List[str] = field(default_factory=list)


@dataclass
class IndexerProxyIR:
    name: str
    type: str
    host: str
    port: int = 0
    username: str = ""
    password: str = field(default="", repr=False)
    tags: List[str] = field(default_factory=list)


@dataclass
class ProwlarrApplicationIR:
    name: str
    type: str
    url: str
    api_key: str = field(default="", repr=False)
    prowlarr_url: str = ""
    sync_categories: List[int] = field(default_factory=list)
    sync_level: str = SYNC_LEVEL_FULL_SYNC


@dataclass
class ProwlarrIR:
    indexers: List[ProwlarrIndexerIR] = field(default_factory=list)
    proxies: List[IndexerProxyIR] = field(default_factory=list)
    applications: List[ProwlarrApplicationIR] = field(default_factory=list)
    download_clients: List[DownloadClientIR] = field(default_factory=list)


@dataclass
class UnrealizedFeature:
    """A requested feature the live service cannot provide."""

    feature: str
    reason: str


@dataclass
class IR:
    """Desired (or observed) configuration for one service."""

    app: str
    version: str = IR_VERSION
    generated_at: Optional[datetime] = None
    source_hash: str = ""
    connection: Optional[ConnectionIR] = None
    quality: Optional[QualityIR] = None
    download_clients: List[DownloadClientIR] = field(default_factory=list)
    remote_path_mappings: List[RemotePathMappingIR] = field(default_factory=list)
    indexers: Optional[IndexersIR] = None
    root_folders: List[RootFolderIR] = field(default_factory=list)
    import_lists: List[ImportListIR] = field(default_factory=list)
    media_management: Optional[MediaManagementIR] = None
    authentication: Optional[AuthenticationIR] = None
    prowlarr: Optional[ProwlarrIR] = None
    unrealized: List[UnrealizedFeature] = field(default_factory=list)

    def has_direct_config(self) -> bool:
        """True if the IR carries any section handled by direct-apply."""
        return bool(
            self.import_lists
            or self.media_management is not None
            or self.authentication is not None
        )


@dataclass
class HealthIssue:
    source: str
    type: str
    message: str
    wiki_url: str = ""


@dataclass
class HealthReport:
    """Health issues reported by a service at one point in time."""

    healthy: bool = True
    issues: List[HealthIssue] = field(default_factory=list)

    def count(self, issue_type: str) -> int:
        return sum(1 for issue in self.issues if issue.type == issue_type)

    def has_errors(self) -> bool:
        return self.count(HEALTH_ERROR) > 0

    def has_warnings(self) -> bool:
        return self.count(HEALTH_WARNING) > 0
