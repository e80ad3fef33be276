"""
Config Reconciler - lifecycle state machine for one configuration resource.

Every invocation drives a single resource one step through:

    New (no finalizer) -> Active (finalizer) -> Deleting -> Gone

Active passes resolve secrets, connect, discover, compile, diff and apply,
then persist status. Failures are turned into conditions before the pass
returns; nothing here retries, the caller schedules the next pass from the
returned ReconcileResult.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

import conditions as cond
from adapters.base import Adapter, Capabilities, DirectApplier, HealthChecker
from adapters.registry import AdapterNotFoundError, AdapterRegistry, get_registry
from compiler import BasicCompiler, Compiler
from config import ControllerConfig
from db import ConflictError
from events import (
    REASON_APPLY_FAILED,
    REASON_CLEANUP_FAILED,
    REASON_CONNECTION_FAILED,
    REASON_DELETED,
    REASON_DIRECT_APPLY_FAILED,
    REASON_FINALIZER_ADDED,
    REASON_HEALTH_ERROR,
    REASON_HEALTH_WARNING,
    REASON_SECRET_ERROR,
    REASON_SYNCED,
    REASON_UNREGISTERED,
    EventRecorder,
)
from ir import HEALTH_ERROR, HEALTH_WARNING, IR, ConnectionIR, HealthReport
from kinds import ConfigObject, wrap
from registration import (
    ClientFactory,
    ProwlarrClient,
    client_for,
    pull_registration_name,
)
from resources import (
    KIND_PROWLARR,
    ConfigStatus,
    HealthIssueStatus,
    HealthStatus,
    Resource,
    finalizer_for_kind,
)
from secret_resolver import CONNECTION_API_KEY, SecretResolutionError, SecretResolver

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """
    Outcome of one reconcile invocation.

    ``requeue_after`` is in seconds; None means do not requeue and 0 means
    requeue immediately. ``aggregator`` names a Prowlarr resource in the
    same namespace whose registration coordinator should run next.
    """

    success: bool = False
    message: str = ""
    requeue_after: Optional[int] = None
    aggregator: Optional[str] = None


class ConfigReconciler:
    """
    Reconciles configuration resources of every kind.

    The engine only talks to ConfigObject; per-kind behaviour lives in the
    kind wrappers and the adapter registered for the kind's service type.
    """

    def __init__(
        self,
        store,
        recorder: EventRecorder,
        registry: Optional[AdapterRegistry] = None,
        compiler: Optional[Compiler] = None,
        config: Optional[ControllerConfig] = None,
        client_factory: ClientFactory = ProwlarrClient,
    ):
        self.store = store
        self.recorder = recorder
        self.registry = registry or get_registry()
        self.config = config or ControllerConfig()
        self.compiler = compiler or BasicCompiler(self.config.registration_prefix)
        self.client_factory = client_factory

    @property
    def error_requeue(self) -> int:
        return self.config.error_requeue_interval

    async def reconcile_key(
        self, kind: str, namespace: str, name: str
    ) -> ReconcileResult:
        """Fetch a resource and reconcile it; a missing resource is not an error."""
        resource = await self.store.get_resource(kind, namespace, name)
        if resource is None:
            logger.info(f"{kind} {namespace}/{name} not found, ignoring")
            return ReconcileResult(success=True, message="Resource not found")
        return await self.reconcile(resource)

    async def reconcile(self, resource: Resource) -> ReconcileResult:
        """
        Run one lifecycle step for a resource.

        Args:
            resource: The resource as last read from the store

        Returns:
            ReconcileResult describing the outcome and when to run again

        Raises:
            ConflictError: If a finalizer update lost an optimistic
                concurrency race; the caller retries the pass
        """
        try:
            config = wrap(resource)
        except (ValueError, ValidationError) as e:
            return await self._reconcile_invalid(resource, e)

        if config.suspended:
            logger.info(f"Reconciliation of {resource.key} is suspended")
            return ReconcileResult(
                success=True, message="Reconciliation is suspended"
            )

        if resource.being_deleted:
            return await self._reconcile_delete(config)

        if not resource.has_finalizer(config.finalizer_name):
            await self.store.add_finalizer(resource, config.finalizer_name)
            self.recorder.normal(
                resource, REASON_FINALIZER_ADDED, f"Added {config.finalizer_name}"
            )
            return ReconcileResult(
                success=True, message="Finalizer added", requeue_after=0
            )

        result = await self._reconcile_normal(config)
        result.aggregator = self._aggregator_to_coordinate(config)
        return result

    # ==================== Deletion ====================

    async def _reconcile_delete(self, config: ConfigObject) -> ReconcileResult:
        """
        Best-effort cleanup, then release the finalizer.

        Only removing the finalizer may fail the pass; everything before it
        is logged and skipped on error, and is safe to repeat.
        """
        resource = config.obj
        finalizer = config.finalizer_name
        if not resource.has_finalizer(finalizer):
            return ReconcileResult(success=True, message="Awaiting removal")

        logger.info(f"Handling deletion of {resource.key}")
        resolver = SecretResolver(self.store)

        if config.should_register_with_prowlarr() and config.prowlarr_ref is not None:
            await self._unregister_pull(config, resolver)

        try:
            secrets = await resolver.resolve_connection(
                config.namespace, config.connection
            )
        except SecretResolutionError as e:
            logger.error(
                f"Failed to resolve secrets for cleanup of {resource.key}, "
                f"proceeding anyway: {e}"
            )
        else:
            try:
                await self._cleanup(config, self._connection(config, secrets))
            except Exception as e:
                logger.error(
                    f"Failed to clean up managed resources for {resource.key}: {e}",
                    exc_info=True,
                )
                self.recorder.warning(resource, REASON_CLEANUP_FAILED, str(e))

        await self.store.remove_finalizer(resource, finalizer)
        self.recorder.normal(resource, REASON_DELETED, f"Removed {finalizer}")
        logger.info(f"Successfully deleted {resource.key}")
        return ReconcileResult(success=True, message="Finalizer removed")

    async def _unregister_pull(
        self, config: ConfigObject, resolver: SecretResolver
    ) -> None:
        ref = config.prowlarr_ref
        app_name = pull_registration_name(
            self.config.registration_prefix, config.name, config.app_type
        )
        try:
            aggregator_resource = await self.store.get_resource(
                KIND_PROWLARR, config.namespace, ref.name
            )
            if aggregator_resource is None:
                logger.warning(
                    f"Prowlarr {config.namespace}/{ref.name} not found, "
                    f"skipping unregistration of {app_name}"
                )
                return
            client = await client_for(
                wrap(aggregator_resource),
                resolver,
                timeout=self.config.http_timeout,
                factory=self.client_factory,
            )
            if await client.unregister(app_name):
                self.recorder.normal(
                    config.obj,
                    REASON_UNREGISTERED,
                    f"Unregistered {app_name} from {ref.name}",
                )
        except Exception as e:
            logger.error(
                f"Failed to unregister {app_name} from Prowlarr {ref.name} "
                f"(non-fatal): {e}"
            )

    async def _cleanup(self, config: ConfigObject, conn: ConnectionIR) -> None:
        """Remove everything the controller manages on the service."""
        adapter = self.registry.get(config.app_type)
        if adapter is None:
            logger.warning(
                f"{config.app_type} adapter not registered, skipping cleanup"
            )
            return

        current = await adapter.current_state(conn)
        if current is None:
            logger.info(f"Nothing managed on {config.app_type}, skipping cleanup")
            return

        try:
            caps = await adapter.discover(conn)
        except Exception as e:
            logger.warning(
                f"Discovery failed during cleanup of {config.app_type}, "
                f"using defaults: {e}"
            )
            caps = Capabilities()

        changes = adapter.diff(current, IR(app=config.app_type), caps)
        if changes.is_empty():
            return

        result = await adapter.apply(conn, changes)
        logger.info(
            f"Cleanup of {config.app_type}: removed {result.applied}, "
            f"failed {result.failed}"
        )

    # ==================== Invalid resources ====================

    async def _reconcile_invalid(
        self, resource: Resource, error: Exception
    ) -> ReconcileResult:
        """Report a spec that cannot be parsed; release it if it is being deleted."""
        finalizer = finalizer_for_kind(resource.kind)
        if resource.being_deleted:
            if resource.has_finalizer(finalizer):
                await self.store.remove_finalizer(resource, finalizer)
            return ReconcileResult(success=True, message="Finalizer removed")

        logger.error(f"Invalid spec for {resource.key}: {error}")
        try:
            status = ConfigStatus.model_validate(resource.status or {})
        except ValidationError:
            status = ConfigStatus()
        status.conditions = cond.set_condition(
            status.conditions,
            cond.CONDITION_READY,
            cond.STATUS_FALSE,
            cond.REASON_INVALID_SPEC,
            str(error),
            observed_generation=resource.generation,
        )
        try:
            await self.store.update_status(resource, status.to_document())
        except ConflictError as e:
            logger.warning(str(e))
        return ReconcileResult(
            success=False, message=str(error), requeue_after=self.error_requeue
        )

    # ==================== Normal pass ====================

    def _set(
        self,
        config: ConfigObject,
        condition_type: str,
        status: str,
        reason: str,
        message: str,
    ) -> None:
        config.status.conditions = cond.set_condition(
            config.status.conditions,
            condition_type,
            status,
            reason,
            message,
            observed_generation=config.generation,
        )

    def _not_ready(self, config: ConfigObject, reason: str, message: str) -> None:
        self._set(config, cond.CONDITION_READY, cond.STATUS_FALSE, reason, message)

    @staticmethod
    def _connection(config: ConfigObject, secrets) -> ConnectionIR:
        return ConnectionIR(
            url=config.connection.url,
            api_key=secrets.get(CONNECTION_API_KEY, ""),
            insecure_skip_verify=config.connection.insecure_skip_verify,
            timeout=config.connection.timeout,
        )

    async def _persist(
        self, config: ConfigObject, result: ReconcileResult
    ) -> ReconcileResult:
        """
        Write the working status back; a lost race turns into an error requeue.
        """
        try:
            config.resource = await self.store.update_status(
                config.obj, config.status_document()
            )
        except ConflictError as e:
            logger.warning(f"{e}; retrying in {self.error_requeue}s")
            return ReconcileResult(
                success=False, message=str(e), requeue_after=self.error_requeue
            )
        return result

    async def _fail(self, config: ConfigObject, message: str) -> ReconcileResult:
        return await self._persist(
            config,
            ReconcileResult(
                success=False, message=message, requeue_after=self.error_requeue
            ),
        )

    async def _reconcile_normal(self, config: ConfigObject) -> ReconcileResult:
        resource = config.obj
        app = config.app_type
        logger.info(f"Reconciling {resource.key}")

        resolver = SecretResolver(self.store)
        try:
            secrets = await resolver.resolve_for(config)
        except SecretResolutionError as e:
            self._not_ready(config, cond.REASON_SECRET_RESOLUTION_FAILED, str(e))
            self.recorder.warning(resource, REASON_SECRET_ERROR, str(e))
            return await self._fail(config, str(e))
        except Exception as e:
            logger.error(
                f"Failed to read secrets for {resource.key}: {e}", exc_info=True
            )
            self._not_ready(config, cond.REASON_SECRET_RESOLUTION_FAILED, str(e))
            return await self._fail(config, str(e))

        try:
            adapter = self.registry.require(app)
        except AdapterNotFoundError as e:
            self._not_ready(config, cond.REASON_ADAPTER_NOT_FOUND, str(e))
            return await self._fail(config, str(e))

        conn = self._connection(config, secrets)

        try:
            info = await adapter.connect(conn)
        except Exception as e:
            logger.error(f"Failed to connect to {app} for {resource.key}: {e}")
            config.status.connected = False
            self._set(
                config,
                cond.CONDITION_CONNECTED,
                cond.STATUS_FALSE,
                cond.REASON_CONNECTION_FAILED,
                str(e),
            )
            self._not_ready(
                config, cond.REASON_CONNECTION_FAILED, f"Cannot connect to {app}"
            )
            self.recorder.warning(resource, REASON_CONNECTION_FAILED, str(e))
            return await self._fail(config, str(e))

        config.status.connected = True
        config.status.service_version = info.version
        self._set(
            config,
            cond.CONDITION_CONNECTED,
            cond.STATUS_TRUE,
            cond.REASON_CONNECTED,
            f"Connected to {app} {info.version}",
        )

        try:
            caps = await adapter.discover(conn)
        except Exception as e:
            logger.error(f"Failed to discover capabilities of {app}: {e}")
            self._not_ready(config, cond.REASON_DISCOVERY_FAILED, str(e))
            return await self._fail(config, str(e))

        try:
            desired = self.compiler.compile(config, secrets, caps)
        except Exception as e:
            logger.error(f"Failed to compile {resource.key}: {e}", exc_info=True)
            self._not_ready(config, cond.REASON_COMPILATION_FAILED, str(e))
            return await self._fail(config, str(e))

        try:
            current = await adapter.current_state(conn)
        except Exception as e:
            logger.error(f"Failed to get current state of {app}: {e}")
            self._not_ready(config, cond.REASON_STATE_FETCH_FAILED, str(e))
            return await self._fail(config, str(e))

        try:
            changes = adapter.diff(current, desired, caps)
        except Exception as e:
            logger.error(
                f"Failed to compute diff for {resource.key}: {e}", exc_info=True
            )
            self._not_ready(config, cond.REASON_DIFF_FAILED, str(e))
            return await self._fail(config, str(e))

        degraded: Optional[str] = None
        if changes.is_empty():
            logger.info(f"No changes to apply, {resource.key} is in sync")
            self._set(
                config,
                cond.CONDITION_SYNCED,
                cond.STATUS_TRUE,
                cond.REASON_IN_SYNC,
                "Configuration is in sync",
            )
        else:
            logger.info(
                f"Applying {changes.total_changes()} change(s) to {app} "
                f"({', '.join(sorted(changes.resource_types()))})"
            )
            try:
                applied = await adapter.apply(conn, changes)
            except Exception as e:
                logger.error(f"Failed to apply changes to {app}: {e}", exc_info=True)
                self._set(
                    config,
                    cond.CONDITION_SYNCED,
                    cond.STATUS_FALSE,
                    cond.REASON_APPLY_FAILED,
                    str(e),
                )
                self._not_ready(config, cond.REASON_APPLY_FAILED, str(e))
                self.recorder.warning(resource, REASON_APPLY_FAILED, str(e))
                return await self._fail(config, str(e))

            if applied.success:
                self._set(
                    config,
                    cond.CONDITION_SYNCED,
                    cond.STATUS_TRUE,
                    cond.REASON_SYNCED,
                    f"Applied {applied.applied} changes",
                )
                self.recorder.normal(
                    resource, REASON_SYNCED, f"Applied {applied.applied} changes"
                )
            else:
                degraded = f"Applied {applied.applied} changes, {applied.failed} failed"
                for error in applied.errors:
                    logger.error(
                        f"Failed to apply {error.change.resource_type} "
                        f"'{error.change.name}': {error.error}"
                    )
                self._set(
                    config,
                    cond.CONDITION_SYNCED,
                    cond.STATUS_FALSE,
                    cond.REASON_PARTIALLY_APPLIED,
                    degraded,
                )
                self._not_ready(config, cond.REASON_PARTIALLY_APPLIED, degraded)
                self.recorder.warning(resource, REASON_APPLY_FAILED, degraded)

        config.status.last_reconcile = cond.utcnow()
        config.status.unrealized = [
            f"{feature.feature}: {feature.reason}" for feature in desired.unrealized
        ]

        await self._apply_direct(config, adapter, conn, desired)
        await self._check_health(config, adapter, conn)

        if degraded is not None:
            return await self._fail(config, degraded)

        config.status.last_applied_hash = desired.source_hash
        config.status.observed_generation = config.generation
        self._set(
            config,
            cond.CONDITION_READY,
            cond.STATUS_TRUE,
            cond.REASON_READY,
            "Configuration reconciled successfully",
        )
        requeue = config.requeue_interval or self.config.default_requeue_interval
        return await self._persist(
            config,
            ReconcileResult(
                success=True,
                message="Configuration reconciled successfully",
                requeue_after=requeue,
            ),
        )

    async def _apply_direct(
        self, config: ConfigObject, adapter: Adapter, conn: ConnectionIR, desired: IR
    ) -> None:
        """Push settings outside the diff model; never fails the pass."""
        if not isinstance(adapter, DirectApplier) or not desired.has_direct_config():
            return
        try:
            result = await adapter.apply_direct(conn, desired)
        except Exception as e:
            logger.error(
                f"Failed to apply direct configuration to {config.app_type} "
                f"(non-fatal): {e}"
            )
            self.recorder.warning(config.obj, REASON_DIRECT_APPLY_FAILED, str(e))
            return
        if not result.success:
            message = f"Applied {result.applied} settings, {result.failed} failed"
            logger.warning(f"Direct configuration of {config.obj.key}: {message}")
            self.recorder.warning(config.obj, REASON_DIRECT_APPLY_FAILED, message)

    async def _check_health(
        self, config: ConfigObject, adapter: Adapter, conn: ConnectionIR
    ) -> None:
        """Record the service health report; keeps the previous one on failure."""
        if not isinstance(adapter, HealthChecker):
            return
        try:
            report = await adapter.get_health(conn)
        except Exception as e:
            logger.error(f"Failed to fetch health from {config.app_type}: {e}")
            return
        config.status.health = self._health_status(report)

        for issue in report.issues:
            if issue.type == HEALTH_ERROR:
                reason = REASON_HEALTH_ERROR
            elif issue.type == HEALTH_WARNING:
                reason = REASON_HEALTH_WARNING
            else:
                continue
            self.recorder.warning(
                config.obj, reason, f"[{issue.source}] {issue.message}"
            )

        logger.debug(
            f"Health check of {config.app_type}: healthy={report.healthy}, "
            f"issues={len(report.issues)}"
        )

    @staticmethod
    def _health_status(report: HealthReport) -> HealthStatus:
        return HealthStatus(
            healthy=report.healthy,
            issue_count=len(report.issues),
            error_count=report.count(HEALTH_ERROR),
            warning_count=report.count(HEALTH_WARNING),
            last_check=cond.utcnow(),
            issues=[
                HealthIssueStatus(
                    source=issue.source,
                    type=issue.type,
                    message=issue.message,
                    wiki_url=issue.wiki_url or None,
                )
                for issue in report.issues
            ],
        )

    @staticmethod
    def _aggregator_to_coordinate(config: ConfigObject) -> Optional[str]:
        """The Prowlarr resource whose registrations may need updating."""
        if not config.should_register_with_prowlarr():
            return None
        if config.prowlarr_ref is not None:
            return config.prowlarr_ref.name
        registration = config.status.prowlarr_registration
        if registration is not None and registration.registered:
            return registration.prowlarr_name
        return None
