"""
Compiler - turns a configuration resource into the desired-state IR.

Only the compiler's external contract matters to the reconciliation engine:
given a config object, its resolved secrets and the discovered capabilities,
produce an IR or raise CompilationError. ``BasicCompiler`` maps spec
sections one-to-one, prunes what the service cannot do and hashes its
inputs; it performs no preset expansion.
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from adapters.base import (
    RESOURCE_AUTHENTICATION,
    RESOURCE_DOWNLOAD_CLIENT,
    RESOURCE_IMPORT_LIST,
    RESOURCE_INDEXER,
    RESOURCE_MEDIA_MANAGEMENT,
    Capabilities,
)
from ir import (
    APP_PROWLARR,
    DEFAULT_SYNC_CATEGORIES,
    IR,
    PROTOCOL_TORRENT,
    PROTOCOL_USENET,
    AuthenticationIR,
    ConnectionIR,
    DownloadClientIR,
    ImportListIR,
    IndexerIR,
    IndexerProxyIR,
    IndexersIR,
    MediaManagementIR,
    ProwlarrApplicationIR,
    ProwlarrIndexerIR,
    ProwlarrIR,
    QualityIR,
    RemotePathMappingIR,
    RootFolderIR,
    UnrealizedFeature,
)
from kinds import ConfigObject
from resources import DownloadClientSpec
from secret_resolver import (
    CONNECTION_API_KEY,
    DEFAULT_API_KEY_KEY,
    DEFAULT_PASSWORD_KEY,
    secret_map_key,
)

logger = logging.getLogger(__name__)

DEFAULT_QUALITY_PRESET = "balanced"

# Download client implementation names as the services expect them
IMPLEMENTATIONS = {
    "qbittorrent": "QBittorrent",
    "transmission": "Transmission",
    "deluge": "Deluge",
    "rtorrent": "RTorrent",
    "sabnzbd": "Sabnzbd",
    "nzbget": "NzbGet",
}

TORRENT_IMPLEMENTATIONS = {
    "QBittorrent",
    "Transmission",
    "Deluge",
    "RTorrent",
    "Torznab",
}
USENET_IMPLEMENTATIONS = {"Sabnzbd", "NzbGet", "Newznab"}


class CompilationError(Exception):
    """Raised when a configuration cannot be turned into an IR."""


class Compiler(ABC):
    """Contract between the reconciliation engine and a compiler."""

    @abstractmethod
    def compile(
        self,
        config: ConfigObject,
        secrets: Dict[str, str],
        caps: Capabilities,
    ) -> IR:
        """
        Produce the desired-state IR for one resource.

        Args:
            config: The wrapped configuration resource
            secrets: Output of the secret resolution pipeline
            caps: Capabilities discovered on the live service

        Returns:
            The desired IR, including its ``source_hash``

        Raises:
            CompilationError: If the configuration is not compilable
        """
        pass


def infer_protocol(implementation: str) -> str:
    if implementation in TORRENT_IMPLEMENTATIONS:
        return PROTOCOL_TORRENT
    if implementation in USENET_IMPLEMENTATIONS:
        return PROTOCOL_USENET
    return ""


def normalize_implementation(implementation: str) -> str:
    return IMPLEMENTATIONS.get(implementation.lower(), implementation)


def parse_client_url(raw_url: str) -> Tuple[str, str, int, bool, str]:
    """
    Split a download client URL.

    ``qbittorrent://host:8080`` names the implementation in the scheme;
    ``http``/``https`` URLs rely on an explicit ``implementation``.

    Returns:
        (implementation or "", host, port, use_ssl, url_base)
    """
    parsed = urlparse(raw_url)
    if not parsed.scheme or not parsed.hostname:
        raise CompilationError(f"invalid download client URL: {raw_url!r}")

    scheme = parsed.scheme.lower()
    implementation = ""
    use_ssl = scheme == "https"
    if scheme not in ("http", "https"):
        implementation = normalize_implementation(scheme)

    try:
        port = parsed.port
    except ValueError as e:
        raise CompilationError(f"invalid port in {raw_url!r}: {e}") from e
    if port is None:
        port = 443 if use_ssl else 80

    url_base = parsed.path.rstrip("/")
    return implementation, parsed.hostname, port, use_ssl, url_base


def hash_inputs(config: ConfigObject) -> str:
    """
    Deterministic hash of the compiler inputs, excluding secret values.

    Returns:
        First 16 hex characters of a sha256 over the canonical spec JSON.
    """
    hashable = {
        "app": config.app_type,
        "name": config.name,
        "spec": config.spec.to_document(),
    }
    data = json.dumps(hashable, sort_keys=True)
    return hashlib.sha256(data.encode()).hexdigest()[:16]


class BasicCompiler(Compiler):
    """
    Maps spec sections straight into IR sections.

    Managed object names are prefixed so they never collide with objects a
    user created by hand.
    """

    def __init__(self, name_prefix: str = "arr-operator"):
        self.name_prefix = name_prefix

    def _managed_name(self, config: ConfigObject, name: str) -> str:
        return f"{self.name_prefix}-{config.name}-{name}"

    def compile(
        self,
        config: ConfigObject,
        secrets: Dict[str, str],
        caps: Capabilities,
    ) -> IR:
        ir = IR(
            app=config.app_type,
            generated_at=datetime.now(timezone.utc),
            connection=ConnectionIR(
                url=config.connection.url,
                api_key=secrets.get(CONNECTION_API_KEY, ""),
                insecure_skip_verify=config.connection.insecure_skip_verify,
                timeout=config.connection.timeout,
            ),
        )

        if config.app_type == APP_PROWLARR:
            ir.prowlarr = self._compile_prowlarr(config, secrets)
        else:
            self._compile_arr(config, secrets, ir)

        ir.unrealized = self._prune(ir, caps)
        ir.source_hash = hash_inputs(config)
        return ir

    def _compile_arr(
        self, config: ConfigObject, secrets: Dict[str, str], ir: IR
    ) -> None:
        spec = config.spec

        ir.quality = QualityIR(
            preset=spec.quality_preset or DEFAULT_QUALITY_PRESET,
            profile_name=f"{self.name_prefix}-{config.name}",
        )
        ir.download_clients = self._compile_download_clients(
            config, config.download_clients, secrets
        )
        ir.indexers = self._compile_indexers(config, secrets)
        ir.root_folders = [RootFolderIR(path=path) for path in spec.root_folders]
        ir.remote_path_mappings = [
            RemotePathMappingIR(
                host=m.host, remote_path=m.remote_path, local_path=m.local_path
            )
            for m in spec.remote_path_mappings
        ]
        ir.import_lists = self._compile_import_lists(config, secrets)

        mm = config.media_management
        if mm is not None:
            ir.media_management = MediaManagementIR(**mm.model_dump())

        auth = config.authentication
        if auth is not None:
            password = ""
            if auth.password_secret_ref is not None:
                ref = auth.password_secret_ref
                password = secrets.get(
                    secret_map_key(ref.name, ref.key or DEFAULT_PASSWORD_KEY), ""
                )
            ir.authentication = AuthenticationIR(
                method=auth.method,
                username=auth.username or "",
                password=password,
                authentication_required=auth.authentication_required or "",
            )

    def _compile_download_clients(
        self,
        config: ConfigObject,
        clients: List[DownloadClientSpec],
        secrets: Dict[str, str],
    ) -> List[DownloadClientIR]:
        result = []
        for dc in clients:
            scheme_impl, host, port, use_ssl, url_base = parse_client_url(dc.url)
            implementation = (
                normalize_implementation(dc.implementation)
                if dc.implementation
                else scheme_impl
            )
            if not implementation:
                raise CompilationError(
                    f"download client {dc.name!r}: implementation not set "
                    f"and not implied by URL {dc.url!r}"
                )

            username = password = ""
            ref = dc.credentials_secret_ref
            if ref is not None:
                username = secrets.get(secret_map_key(ref.name, ref.username_key), "")
                password = secrets.get(secret_map_key(ref.name, ref.password_key), "")

            result.append(
                DownloadClientIR(
                    name=self._managed_name(config, dc.name),
                    implementation=implementation,
                    protocol=infer_protocol(implementation),
                    host=host,
                    port=port,
                    use_ssl=use_ssl,
                    url_base=url_base,
                    username=username,
                    password=password,
                    category=dc.category or "",
                    priority=dc.priority if dc.priority is not None else 1,
                    enabled=dc.enabled,
                )
            )
        return result

    def _compile_indexers(
        self, config: ConfigObject, secrets: Dict[str, str]
    ) -> Optional[IndexersIR]:
        spec = config.indexers
        if spec is None:
            return None

        result = IndexersIR(prowlarr_managed=spec.prowlarr_ref is not None)
        for idx in spec.direct:
            api_key = ""
            if idx.api_key_secret_ref is not None:
                ref = idx.api_key_secret_ref
                api_key = secrets.get(
                    secret_map_key(ref.name, ref.key or DEFAULT_API_KEY_KEY), ""
                )
            result.direct.append(
                IndexerIR(
                    name=self._managed_name(config, idx.name),
                    implementation=idx.implementation,
                    protocol=infer_protocol(idx.implementation),
                    url=idx.url,
                    api_key=api_key,
                    categories=list(idx.categories),
                    priority=idx.priority if idx.priority is not None else 25,
                    enabled=idx.enabled,
                )
            )
        return result

    def _compile_import_lists(
        self, config: ConfigObject, secrets: Dict[str, str]
    ) -> List[ImportListIR]:
        result = []
        for item in config.import_lists:
            settings = dict(item.settings)
            ref = item.settings_secret_ref
            if ref is not None:
                prefix = f"{ref.name}/"
                for key, value in secrets.items():
                    if key.startswith(prefix):
                        settings[key[len(prefix):]] = value
            result.append(
                ImportListIR(
                    name=self._managed_name(config, item.name),
                    type=item.type,
                    enabled=item.enabled,
                    enable_auto=item.enable_auto,
                    search_on_add=item.search_on_add,
                    quality_profile_name=item.quality_profile_name or "",
                    root_folder_path=item.root_folder_path or "",
                    settings=settings,
                )
            )
        return result

    def _compile_prowlarr(
        self, config: ConfigObject, secrets: Dict[str, str]
    ) -> ProwlarrIR:
        result = ProwlarrIR()

        for idx in config.prowlarr_indexers:
            api_key = ""
            if idx.api_key_secret_ref is not None:
                ref = idx.api_key_secret_ref
                api_key = secrets.get(
                    secret_map_key(ref.name, ref.key or DEFAULT_API_KEY_KEY), ""
                )
            result.indexers.append(
                ProwlarrIndexerIR(
                    name=self._managed_name(config, idx.name),
                    definition=idx.definition,
                    enable=idx.enabled,
                    priority=idx.priority if idx.priority is not None else 25,
                    base_url=idx.base_url or "",
                    api_key=api_key,
                    tags=list(idx.tags),
                )
            )

        for proxy in config.prowlarr_proxies:
            username = password = ""
            ref = proxy.credentials_secret_ref
            if ref is not None:
                username = secrets.get(secret_map_key(ref.name, ref.username_key), "")
                password = secrets.get(secret_map_key(ref.name, ref.password_key), "")
            result.proxies.append(
                IndexerProxyIR(
                    name=self._managed_name(config, proxy.name),
                    type=proxy.type,
                    host=proxy.host,
                    port=proxy.port or 0,
                    username=username,
                    password=password,
                    tags=list(proxy.tags),
                )
            )

        for app in config.prowlarr_applications:
            api_key = ""
            if app.api_key_secret_ref is not None:
                ref = app.api_key_secret_ref
                api_key = secrets.get(
                    secret_map_key(ref.name, ref.key or DEFAULT_API_KEY_KEY), ""
                )
            result.applications.append(
                ProwlarrApplicationIR(
                    name=self._managed_name(config, app.name),
                    type=app.type,
                    url=app.url,
                    api_key=api_key,
                    prowlarr_url=config.connection.url,
                    sync_categories=list(app.sync_categories)
                    or list(DEFAULT_SYNC_CATEGORIES.get(app.type, [])),
                    sync_level=app.sync_level,
                )
            )

        result.download_clients = self._compile_download_clients(
            config, config.download_clients, secrets
        )
        return result

    def _prune(self, ir: IR, caps: Capabilities) -> List[UnrealizedFeature]:
        """Drop what the service cannot do and report it."""
        unrealized: List[UnrealizedFeature] = []

        def drop(feature: str) -> None:
            unrealized.append(
                UnrealizedFeature(feature=feature, reason="not supported by service")
            )

        if ir.download_clients:
            if not caps.supports(RESOURCE_DOWNLOAD_CLIENT):
                drop("downloadclients")
                ir.download_clients = []
            elif caps.download_client_types:
                kept = []
                for dc in ir.download_clients:
                    if dc.implementation in caps.download_client_types:
                        kept.append(dc)
                    else:
                        drop(f"downloadclient:{dc.implementation}")
                ir.download_clients = kept

        if ir.indexers is not None and ir.indexers.direct:
            if not caps.supports(RESOURCE_INDEXER):
                drop("indexers")
                ir.indexers.direct = []
            elif caps.indexer_types:
                kept_indexers = []
                for idx in ir.indexers.direct:
                    if idx.implementation in caps.indexer_types:
                        kept_indexers.append(idx)
                    else:
                        drop(f"indexer:{idx.implementation}")
                ir.indexers.direct = kept_indexers

        if ir.import_lists and not caps.supports(RESOURCE_IMPORT_LIST):
            drop("importlists")
            ir.import_lists = []
        if ir.media_management is not None and not caps.supports(
            RESOURCE_MEDIA_MANAGEMENT
        ):
            drop("mediamanagement")
            ir.media_management = None
        if ir.authentication is not None and not caps.supports(
            RESOURCE_AUTHENTICATION
        ):
            drop("authentication")
            ir.authentication = None

        for item in unrealized:
            logger.info(f"Unrealized feature for {ir.app}: {item.feature}")
        return unrealized
