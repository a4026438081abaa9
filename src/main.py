"""
Main entry point for the Emitter Operator.

This module wires the store, reconciler, watcher and controller together
and runs them until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal
from typing import Optional

from config import Config, get_config
from controller import Controller
from events import EventBus
from manifest import ManifestLoader
from reconciler import EmitterReconciler
from store import ResourceStore, create_store
from tracking import DeploymentTracker
from watcher import EmitterWatcher

logger = logging.getLogger(__name__)


def configure_logging(config: Config) -> None:
    """Configure root logging from config."""
    logging.basicConfig(
        level=getattr(logging, config.logging.level, logging.INFO),
        format=config.logging.format,
    )
    # The Kubernetes client logs every request at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.WARNING)


class Application:
    """Main application that orchestrates the watcher and controller."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.store: Optional[ResourceStore] = None
        self.event_bus: Optional[EventBus] = None
        self.reconciler: Optional[EmitterReconciler] = None
        self.watcher: Optional[EmitterWatcher] = None
        self.controller: Optional[Controller] = None
        self.running = False

    def initialize(self, store: Optional[ResourceStore] = None):
        """Initialize all components."""
        logger.info("Initializing Emitter Operator")
        ctrl_config = self.config.controller

        self.store = store or create_store(self.config.kubernetes)
        self.event_bus = EventBus()
        self.reconciler = EmitterReconciler(
            store=self.store,
            loader=ManifestLoader(ctrl_config.manifest_path),
            tracker=DeploymentTracker(),
        )
        self.watcher = EmitterWatcher(
            store=self.store,
            event_bus=self.event_bus,
            retry_delay=ctrl_config.watch_retry_delay,
        )
        self.controller = Controller(
            reconciler=self.reconciler,
            event_bus=self.event_bus,
            config=ctrl_config,
        )
        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if self.controller is None:
            self.initialize()

        self.running = True
        logger.info("Starting Emitter Operator")

        # Subscribe before the watcher starts publishing
        await self.controller.subscribe()
        controller_task = asyncio.create_task(self.controller.start())
        watcher_task = asyncio.create_task(self.watcher.start())

        try:
            await asyncio.gather(controller_task, watcher_task)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running:
            return
        logger.info("Stopping Emitter Operator")
        self.running = False

        if self.watcher:
            await self.watcher.stop()
        if self.controller:
            await self.controller.stop()

        logger.info("Emitter Operator stopped")


async def main(config: Optional[Config] = None):
    """Main entry point."""
    config = config or get_config()
    configure_logging(config)
    app = Application(config)

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


if __name__ == "__main__":
    asyncio.run(main())
