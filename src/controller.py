"""
Operator Controller - drives the reconciler and the registration coordinator.

Polls the resource store for resources whose reconcile is due, runs each
one as its own task under a concurrency limit and a deadline, and
schedules the next pass from the result. ProwlarrConfig coordination runs
when a reconcile asks for it and on a periodic sweep.
"""

import asyncio
import logging
from typing import Optional, Set, Tuple

from config import ControllerConfig
from coordinator import RegistrationCoordinator
from db import ConflictError, DatabaseManager
from reconciler import ConfigReconciler, ReconcileResult
from resources import KIND_PROWLARR, Resource

logger = logging.getLogger(__name__)


class Controller:
    """
    Main controller that implements the reconciliation loop.

    At most one reconcile per resource is in flight at any time; different
    resources reconcile concurrently up to ``max_concurrent_reconciles``.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        reconciler: ConfigReconciler,
        coordinator: RegistrationCoordinator,
        config: Optional[ControllerConfig] = None,
    ):
        self.db = db_manager
        self.reconciler = reconciler
        self.coordinator = coordinator
        self.config = config or ControllerConfig()
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_reconciles)
        self.running = False

        self._shutdown_event = asyncio.Event()
        self._in_flight: Set[str] = set()
        self._pending_coordination: Set[Tuple[str, str]] = set()
        self._tasks: Set[asyncio.Task] = set()

    async def start(self):
        """Start the reconciliation and coordination loops."""
        logger.info("Starting Operator Controller")
        self.running = True
        self._shutdown_event.clear()

        reconcile_task = asyncio.create_task(self._reconciliation_loop())
        coordination_task = asyncio.create_task(self._coordination_loop())

        try:
            await asyncio.gather(reconcile_task, coordination_task)
        except Exception as e:
            logger.error(f"Controller error: {e}")
            raise

    async def stop(self):
        """Stop the loops and cancel outstanding work."""
        logger.info("Stopping Operator Controller")
        self.running = False
        self._shutdown_event.set()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ==================== Reconciliation ====================

    async def _reconciliation_loop(self):
        """Poll for resources whose reconcile is due and dispatch them."""
        while self.running:
            try:
                await self.dispatch_due()
            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)
            await self._sleep(self.config.poll_interval)

    async def dispatch_due(self) -> int:
        """
        Start a reconcile task for every due resource not already in flight.

        Returns:
            Number of tasks started
        """
        resources = await self.db.get_resources_needing_reconciliation(
            limit=self.config.batch_size
        )
        started = 0
        for resource in resources:
            if resource.key in self._in_flight:
                continue
            self._in_flight.add(resource.key)
            self._spawn(self._reconcile_resource(resource))
            started += 1
        if started:
            logger.info(f"Dispatched {started} resource(s) for reconciliation")
        return started

    async def _reconcile_resource(self, resource: Resource) -> ReconcileResult:
        """
        Reconcile a single resource and schedule its next pass.

        Unexpected errors are logged and turned into an error requeue.
        """
        error_requeue = self.config.error_requeue_interval
        try:
            async with self.semaphore:
                try:
                    result = await asyncio.wait_for(
                        self.reconciler.reconcile(resource),
                        timeout=self.config.reconcile_timeout,
                    )
                except asyncio.TimeoutError:
                    logger.error(
                        f"Reconcile of {resource.key} exceeded "
                        f"{self.config.reconcile_timeout}s"
                    )
                    result = ReconcileResult(
                        message="Reconcile timed out", requeue_after=error_requeue
                    )
                except ConflictError as e:
                    logger.info(f"{e}; retrying")
                    result = ReconcileResult(message=str(e), requeue_after=0)
                except Exception as e:
                    logger.error(
                        f"Unexpected error reconciling {resource.key}: {e}",
                        exc_info=True,
                    )
                    result = ReconcileResult(
                        message=str(e), requeue_after=error_requeue
                    )

            try:
                await self.db.schedule_reconcile(resource, result.requeue_after)
            except Exception as e:
                logger.error(f"Failed to schedule {resource.key}: {e}")
        finally:
            self._in_flight.discard(resource.key)

        if not result.success:
            return result
        if result.aggregator:
            self.trigger_coordination(resource.namespace, result.aggregator)
        elif resource.kind == KIND_PROWLARR:
            self.trigger_coordination(resource.namespace, resource.name)
        return result

    # ==================== Coordination ====================

    def trigger_coordination(self, namespace: str, name: str) -> None:
        """Queue a coordinator pass for a ProwlarrConfig unless one is queued."""
        key = (namespace, name)
        if key in self._pending_coordination:
            return
        self._pending_coordination.add(key)
        self._spawn(self._run_coordination(namespace, name))

    async def _run_coordination(self, namespace: str, name: str, delay: float = 0):
        if delay:
            await self._sleep(delay)
            if not self.running:
                return
        self._pending_coordination.discard((namespace, name))
        try:
            result = await asyncio.wait_for(
                self.coordinator.coordinate_key(namespace, name),
                timeout=self.config.reconcile_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Coordination of Prowlarr {namespace}/{name} timed out")
            return
        except Exception as e:
            logger.error(
                f"Coordination of Prowlarr {namespace}/{name} failed: {e}",
                exc_info=True,
            )
            return

        if result.errors and result.requeue_after:
            key = (namespace, name)
            if key not in self._pending_coordination:
                self._pending_coordination.add(key)
                self._spawn(
                    self._run_coordination(namespace, name, delay=result.requeue_after)
                )

    async def _coordination_loop(self):
        """Periodically sweep every ProwlarrConfig."""
        while self.running:
            try:
                for resource in await self.db.list_resources(KIND_PROWLARR):
                    self.trigger_coordination(resource.namespace, resource.name)
            except Exception as e:
                logger.error(f"Error in coordination loop: {e}", exc_info=True)
            await self._sleep(self.config.coordinator_interval)
