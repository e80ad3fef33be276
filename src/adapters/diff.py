"""
Shared diff helpers for adapters.

Everything here is pure: the helpers compare observed and desired IR
sections by name and append the resulting changes to a ChangeSet. Sections
whose capability is reported absent are skipped entirely, on both sides, so
no change can reference them.
"""

from dataclasses import asdict, is_dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from adapters.base import (
    RESOURCE_APPLICATION,
    RESOURCE_DOWNLOAD_CLIENT,
    RESOURCE_INDEXER,
    RESOURCE_INDEXER_PROXY,
    RESOURCE_QUALITY_PROFILE,
    RESOURCE_REMOTE_PATH_MAPPING,
    RESOURCE_ROOT_FOLDER,
    Capabilities,
    Change,
    ChangeSet,
)
from ir import IR, DownloadClientIR, IndexerIR

# Services never echo these back, so they cannot take part in comparisons
SECRET_FIELDS = frozenset({"api_key", "password"})

IdMap = Dict[str, Dict[str, int]]


def items_equal(current: Any, desired: Any) -> bool:
    """Compare two IR items, ignoring write-only secret fields."""
    if is_dataclass(current) and is_dataclass(desired):
        left = {k: v for k, v in asdict(current).items() if k not in SECRET_FIELDS}
        right = {k: v for k, v in asdict(desired).items() if k not in SECRET_FIELDS}
        return left == right
    return current == desired


def diff_named(
    resource_type: str,
    current: Sequence[Any],
    desired: Sequence[Any],
    changes: ChangeSet,
    ids: Optional[Dict[str, int]] = None,
    key: Callable[[Any], str] = lambda item: item.name,
    create_only: bool = False,
    delete_missing: bool = True,
) -> None:
    """
    Diff two lists of items keyed by name.

    Args:
        resource_type: Change resource kind to tag changes with
        current: Observed items
        desired: Desired items
        changes: Change set to append to
        ids: Service ids of observed items, keyed by name
        key: Extracts the identifying name from an item
        create_only: Only emit creates (items that cannot be updated or
            removed safely, such as root folders)
        delete_missing: Emit deletes for observed items no longer desired
    """
    ids = ids or {}
    current_map = {key(item): item for item in current}
    desired_map = {key(item): item for item in desired}

    for name, item in desired_map.items():
        existing = current_map.get(name)
        if existing is None:
            changes.creates.append(
                Change(resource_type=resource_type, name=name, payload=item)
            )
        elif not create_only and not items_equal(existing, item):
            changes.updates.append(
                Change(
                    resource_type=resource_type,
                    name=name,
                    id=ids.get(name),
                    payload=item,
                )
            )

    if create_only or not delete_missing:
        return

    for name in current_map:
        if name not in desired_map:
            changes.deletes.append(
                Change(resource_type=resource_type, name=name, id=ids.get(name))
            )


def filter_download_clients(
    clients: List[DownloadClientIR], caps: Capabilities
) -> List[DownloadClientIR]:
    """Drop download clients whose implementation the service lacks."""
    if not caps.download_client_types:
        return list(clients)
    supported = set(caps.download_client_types)
    return [c for c in clients if c.implementation in supported]


def filter_indexers(indexers: List[IndexerIR], caps: Capabilities) -> List[IndexerIR]:
    """Drop indexers whose implementation the service lacks."""
    if not caps.indexer_types:
        return list(indexers)
    supported = set(caps.indexer_types)
    return [i for i in indexers if i.implementation in supported]


def diff_ir(
    current: Optional[IR],
    desired: IR,
    caps: Capabilities,
    ids: Optional[IdMap] = None,
) -> ChangeSet:
    """
    Compute the change set between two IR documents.

    Covers every section managed through create/update/delete. Import lists,
    media management and authentication are handled by direct-apply and are
    not diffed here.

    Args:
        current: Observed state (None is treated as an empty service)
        desired: Desired state; an IR with only ``app`` set removes
            everything the controller manages
        caps: Discovered capabilities
        ids: Service ids keyed by resource kind, then item name

    Returns:
        The resulting ChangeSet
    """
    ids = ids or {}
    if current is None:
        current = IR(app=desired.app)
    changes = ChangeSet()

    if caps.supports(RESOURCE_QUALITY_PROFILE):
        current_profiles = [current.quality] if current.quality else []
        desired_profiles = [desired.quality] if desired.quality else []
        diff_named(
            RESOURCE_QUALITY_PROFILE,
            current_profiles,
            desired_profiles,
            changes,
            ids.get(RESOURCE_QUALITY_PROFILE),
            key=lambda q: q.profile_name,
        )

    if caps.supports(RESOURCE_DOWNLOAD_CLIENT):
        diff_named(
            RESOURCE_DOWNLOAD_CLIENT,
            filter_download_clients(current.download_clients, caps),
            filter_download_clients(desired.download_clients, caps),
            changes,
            ids.get(RESOURCE_DOWNLOAD_CLIENT),
        )

    if caps.supports(RESOURCE_INDEXER):
        current_indexers = current.indexers.direct if current.indexers else []
        desired_indexers = desired.indexers.direct if desired.indexers else []
        # Indexers synced in by the aggregator are left alone
        prowlarr_managed = bool(desired.indexers and desired.indexers.prowlarr_managed)
        diff_named(
            RESOURCE_INDEXER,
            filter_indexers(current_indexers, caps),
            filter_indexers(desired_indexers, caps),
            changes,
            ids.get(RESOURCE_INDEXER),
            delete_missing=not prowlarr_managed,
        )

    if caps.supports(RESOURCE_ROOT_FOLDER):
        diff_named(
            RESOURCE_ROOT_FOLDER,
            current.root_folders,
            desired.root_folders,
            changes,
            ids.get(RESOURCE_ROOT_FOLDER),
            key=lambda r: r.path,
            create_only=True,
        )

    if caps.supports(RESOURCE_REMOTE_PATH_MAPPING):
        diff_named(
            RESOURCE_REMOTE_PATH_MAPPING,
            current.remote_path_mappings,
            desired.remote_path_mappings,
            changes,
            ids.get(RESOURCE_REMOTE_PATH_MAPPING),
            key=lambda m: f"{m.host}:{m.remote_path}",
        )

    if current.prowlarr is not None or desired.prowlarr is not None:
        _diff_prowlarr(current, desired, caps, ids, changes)

    return changes


def _diff_prowlarr(
    current: IR, desired: IR, caps: Capabilities, ids: IdMap, changes: ChangeSet
) -> None:
    current_indexers = current.prowlarr.indexers if current.prowlarr else []
    desired_indexers = desired.prowlarr.indexers if desired.prowlarr else []
    current_proxies = current.prowlarr.proxies if current.prowlarr else []
    desired_proxies = desired.prowlarr.proxies if desired.prowlarr else []
    current_apps = current.prowlarr.applications if current.prowlarr else []
    desired_apps = desired.prowlarr.applications if desired.prowlarr else []
    current_clients = current.prowlarr.download_clients if current.prowlarr else []
    desired_clients = desired.prowlarr.download_clients if desired.prowlarr else []

    if caps.supports(RESOURCE_INDEXER):
        diff_named(
            RESOURCE_INDEXER,
            current_indexers,
            desired_indexers,
            changes,
            ids.get(RESOURCE_INDEXER),
        )
    if caps.supports(RESOURCE_INDEXER_PROXY):
        diff_named(
            RESOURCE_INDEXER_PROXY,
            current_proxies,
            desired_proxies,
            changes,
            ids.get(RESOURCE_INDEXER_PROXY),
        )
    if caps.supports(RESOURCE_APPLICATION):
        diff_named(
            RESOURCE_APPLICATION,
            current_apps,
            desired_apps,
            changes,
            ids.get(RESOURCE_APPLICATION),
        )
    if caps.supports(RESOURCE_DOWNLOAD_CLIENT):
        diff_named(
            RESOURCE_DOWNLOAD_CLIENT,
            filter_download_clients(current_clients, caps),
            filter_download_clients(desired_clients, caps),
            changes,
            ids.get(RESOURCE_DOWNLOAD_CLIENT),
        )
