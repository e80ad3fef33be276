"""
Main entry point for the arr operator.

Wires the resource store, adapter registry, reconciler, registration
coordinator and controller together and runs them until signalled.
"""

import asyncio
import logging
import signal
from typing import Optional

from adapters.registry import get_registry, register_installed_adapters
from compiler import BasicCompiler
from config import get_config
from controller import Controller
from coordinator import RegistrationCoordinator
from db import DatabaseManager
from events import EventRecorder
from reconciler import ConfigReconciler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Application:
    """Main application that owns the store connection and the controller."""

    def __init__(self):
        self.config = get_config()
        self.db: Optional[DatabaseManager] = None
        self.recorder: Optional[EventRecorder] = None
        self.controller: Optional[Controller] = None
        self.running = False

    async def initialize(self):
        """Initialize all components."""
        logging.getLogger().setLevel(self.config.logging.level)
        logger.info("Initializing arr operator")

        adapter_count = register_installed_adapters()
        registry = get_registry()
        logger.info(f"Registered {adapter_count} adapter(s): {registry.list()}")

        db_config = self.config.database
        self.db = DatabaseManager(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
        )
        await self.db.connect()
        await self.db.initialize_schema()
        logger.info("Database initialized")

        ctrl_config = self.config.controller
        self.recorder = EventRecorder()
        reconciler = ConfigReconciler(
            store=self.db,
            recorder=self.recorder,
            registry=registry,
            compiler=BasicCompiler(ctrl_config.registration_prefix),
            config=ctrl_config,
        )
        coordinator = RegistrationCoordinator(
            store=self.db,
            recorder=self.recorder,
            config=ctrl_config,
        )
        self.controller = Controller(
            db_manager=self.db,
            reconciler=reconciler,
            coordinator=coordinator,
            config=ctrl_config,
        )
        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        try:
            await self.controller.start()
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running and self.db is None:
            return
        logger.info("Stopping arr operator")
        self.running = False

        if self.controller:
            await self.controller.stop()

        if self.db:
            await self.db.close()
            self.db = None

        logger.info("arr operator stopped")


async def main():
    """Main entry point."""
    app = Application()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
