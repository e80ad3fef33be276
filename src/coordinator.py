"""
Registration Coordinator - pull-model registration with Prowlarr.

A downstream service can be connected to Prowlarr in two ways:

* push: listed in the ProwlarrConfig's own ``applications``
* pull: the downstream resource sets ``indexers.prowlarrRef`` with
  ``autoRegister`` enabled

This coordinator owns the pull side. Each pass over one ProwlarrConfig
registers every pulling resource in the same namespace, refuses resources
declared both ways, and writes the outcome into each resource's
``prowlarrRegistration`` status.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from config import ControllerConfig
from conditions import utcnow
from db import ConflictError
from events import (
    REASON_REGISTERED,
    REASON_REGISTRATION_CONFLICT,
    REASON_REGISTRATION_FAILED,
    EventRecorder,
)
from ir import DEFAULT_SYNC_CATEGORIES, SYNC_LEVEL_FULL_SYNC
from kinds import DOWNSTREAM_KINDS, ConfigObject, wrap
from registration import (
    AppRegistration,
    ClientFactory,
    ProwlarrClient,
    client_for,
    pull_registration_name,
)
from resources import KIND_PROWLARR, ProwlarrRegistration, Resource
from secret_resolver import SecretResolutionError, SecretResolver

logger = logging.getLogger(__name__)

MESSAGE_REF_REMOVED = "ProwlarrRef removed from config"
MESSAGE_CONFLICT = (
    "Conflict: app is defined in both ProwlarrConfig.applications[] (Push) "
    "and has prowlarrRef (Pull). Remove from one."
)
MESSAGE_DISABLED = "Auto-registration disabled (autoRegister: false)"


@dataclass
class CoordinationResult:
    """Outcome of one coordinator pass over a ProwlarrConfig."""

    processed: int = 0
    registered: int = 0
    errors: List[str] = field(default_factory=list)
    requeue_after: Optional[int] = None

    @property
    def success(self) -> bool:
        return not self.errors


class RegistrationCoordinator:
    """
    Reconciles pull-model registrations for ProwlarrConfig resources.

    Passes for the same ProwlarrConfig never overlap; passes for different
    ones may run concurrently.
    """

    def __init__(
        self,
        store,
        recorder: EventRecorder,
        config: Optional[ControllerConfig] = None,
        client_factory: ClientFactory = ProwlarrClient,
    ):
        self.store = store
        self.recorder = recorder
        self.config = config or ControllerConfig()
        self.client_factory = client_factory
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, namespace: str, name: str) -> asyncio.Lock:
        key = (namespace, name)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def coordinate_key(self, namespace: str, name: str) -> CoordinationResult:
        """Run a pass for a ProwlarrConfig by name; a missing one is a no-op."""
        resource = await self.store.get_resource(KIND_PROWLARR, namespace, name)
        if resource is None:
            logger.debug(f"ProwlarrConfig {namespace}/{name} not found, ignoring")
            return CoordinationResult()
        return await self.coordinate(resource)

    async def coordinate(self, resource: Resource) -> CoordinationResult:
        """
        Run one coordination pass for a ProwlarrConfig.

        Errors for one downstream resource are collected and never stop the
        others from being processed.

        Returns:
            CoordinationResult with per-resource errors and the requeue delay
        """
        async with self._lock_for(resource.namespace, resource.name):
            return await self._coordinate(resource)

    async def _coordinate(self, resource: Resource) -> CoordinationResult:
        error_requeue = self.config.error_requeue_interval

        if resource.being_deleted:
            return CoordinationResult()

        try:
            aggregator = wrap(resource)
        except (ValueError, ValidationError) as e:
            logger.error(f"Cannot coordinate {resource.key}: invalid spec: {e}")
            return CoordinationResult(errors=[str(e)], requeue_after=error_requeue)

        if not aggregator.status.connected:
            logger.info(f"{resource.key} not connected, skipping coordination")
            return CoordinationResult(requeue_after=error_requeue)

        logger.info(f"Coordinating Prowlarr registrations for {resource.key}")
        resolver = SecretResolver(self.store)
        try:
            client = await client_for(
                aggregator,
                resolver,
                timeout=self.config.http_timeout,
                factory=self.client_factory,
            )
        except Exception as e:
            logger.error(f"Failed to build Prowlarr client for {resource.key}: {e}")
            return CoordinationResult(errors=[str(e)], requeue_after=error_requeue)

        push_set: Set[Tuple[str, str]] = {
            (app.type, app.name) for app in aggregator.prowlarr_applications
        }

        result = CoordinationResult()
        for kind in DOWNSTREAM_KINDS:
            try:
                downstream = await self.store.list_resources(kind, resource.namespace)
            except Exception as e:
                logger.error(f"Failed to list {kind} in {resource.namespace}: {e}")
                result.errors.append(str(e))
                continue

            for item in downstream:
                if item.being_deleted:
                    continue
                try:
                    config = wrap(item)
                except (ValueError, ValidationError) as e:
                    logger.warning(f"Skipping {item.key}: invalid spec: {e}")
                    continue

                try:
                    record, error = await self._process(
                        aggregator, config, client, resolver, push_set
                    )
                except Exception as e:
                    logger.error(
                        f"Failed to process registration of {item.key}: {e}",
                        exc_info=True,
                    )
                    record = ProwlarrRegistration(
                        registered=False,
                        prowlarr_name=aggregator.name,
                        message=f"Registration failed: {e}",
                    )
                    error = str(e)
                if record is None:
                    continue

                result.processed += 1
                if record.registered:
                    result.registered += 1
                if error is not None:
                    result.errors.append(f"{item.key}: {error}")

                try:
                    await self._write_registration(config, record)
                except Exception as e:
                    logger.error(
                        f"Failed to update registration status of {item.key}: {e}",
                        exc_info=True,
                    )
                    result.errors.append(f"{item.key}: {e}")

        if result.errors:
            logger.warning(
                f"Coordination of {resource.key} finished with "
                f"{len(result.errors)} error(s)"
            )
            result.requeue_after = error_requeue
        else:
            result.requeue_after = self.config.default_requeue_interval
        return result

    async def _process(
        self,
        aggregator: ConfigObject,
        config: ConfigObject,
        client: ProwlarrClient,
        resolver: SecretResolver,
        push_set: Set[Tuple[str, str]],
    ) -> Tuple[Optional[ProwlarrRegistration], Optional[str]]:
        """
        Decide and perform the registration for one downstream resource.

        Returns:
            ``(record, error)``; record is None when the resource does not
            concern this aggregator
        """
        ref = config.prowlarr_ref
        previous = config.status.prowlarr_registration

        if ref is None:
            if (
                previous is not None
                and previous.registered
                and previous.prowlarr_name == aggregator.name
            ):
                record = ProwlarrRegistration(
                    registered=False, message=MESSAGE_REF_REMOVED
                )
                return record, None
            return None, None

        if ref.name != aggregator.name:
            return None, None

        if (config.app_type, config.name) in push_set:
            logger.info(
                f"Conflict detected: {config.app_type}/{config.name} defined in "
                f"both Push and Pull model of {aggregator.name}"
            )
            self.recorder.warning(
                config.obj, REASON_REGISTRATION_CONFLICT, MESSAGE_CONFLICT
            )
            return (
                ProwlarrRegistration(
                    registered=False,
                    prowlarr_name=aggregator.name,
                    message=MESSAGE_CONFLICT,
                ),
                f"conflict: {config.app_type}/{config.name} defined in both "
                "Push and Pull model",
            )

        if not ref.auto_register:
            return (
                ProwlarrRegistration(
                    registered=False,
                    prowlarr_name=aggregator.name,
                    message=MESSAGE_DISABLED,
                ),
                None,
            )

        try:
            api_key = await resolver.resolve_registration_api_key(config)
        except SecretResolutionError as e:
            logger.warning(str(e))
            return (
                ProwlarrRegistration(
                    registered=False,
                    prowlarr_name=aggregator.name,
                    message=f"Could not resolve API key for {config.name}",
                ),
                str(e),
            )

        app_name = pull_registration_name(
            self.config.registration_prefix, config.name, config.app_type
        )
        registration = AppRegistration(
            name=app_name,
            app_type=config.app_type,
            base_url=config.connection.url,
            api_key=api_key,
            prowlarr_url=self.config.prowlarr_url_override or aggregator.connection.url,
            sync_categories=list(DEFAULT_SYNC_CATEGORIES.get(config.app_type, [])),
            sync_level=SYNC_LEVEL_FULL_SYNC,
        )

        logger.info(
            f"Registering {config.app_type}/{config.name} with Prowlarr "
            f"{aggregator.name} as {app_name}"
        )
        try:
            application_id = await client.register(registration)
        except Exception as e:
            logger.error(f"Failed to register {config.name} with Prowlarr: {e}")
            self.recorder.warning(
                config.obj, REASON_REGISTRATION_FAILED, f"Registration failed: {e}"
            )
            return (
                ProwlarrRegistration(
                    registered=False,
                    prowlarr_name=aggregator.name,
                    message=f"Registration failed: {e}",
                ),
                str(e),
            )

        newly_registered = not (
            previous is not None
            and previous.registered
            and previous.application_id == application_id
        )
        if newly_registered:
            self.recorder.normal(
                config.obj,
                REASON_REGISTERED,
                f"Registered with {aggregator.name} as {app_name}",
            )
        return (
            ProwlarrRegistration(
                registered=True,
                prowlarr_name=aggregator.name,
                application_id=application_id,
                last_sync=utcnow(),
                message=f"Registered as {app_name}",
            ),
            None,
        )

    async def _write_registration(
        self, config: ConfigObject, record: ProwlarrRegistration
    ) -> None:
        """
        Persist a registration record without touching other status fields.

        A conflicting write is retried once against a fresh read.
        """
        resource = config.obj
        for attempt in range(2):
            config.status.prowlarr_registration = record
            try:
                config.resource = await self.store.update_status(
                    resource, config.status_document()
                )
                return
            except ConflictError:
                if attempt:
                    break
                fresh = await self.store.get_resource(
                    resource.kind, resource.namespace, resource.name
                )
                if fresh is None:
                    return
                config = wrap(fresh)
                resource = fresh
        logger.error(
            f"Failed to update registration status of {resource.key}: "
            "resource keeps changing"
        )
