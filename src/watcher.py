"""
Emitter Watcher - turns the Kubernetes watch stream into bus events.

The Kubernetes client's watch is a blocking generator, so it runs in a
worker thread and hands each event back to the event loop for publishing.
A watch started without a resourceVersion replays every existing Emitter
as ADDED, which is what makes a fresh start level-triggered.
"""

import asyncio
import logging
from typing import Optional

from kubernetes import watch

from events import EventBus, ResourceEvent
from store import ResourceStore

logger = logging.getLogger(__name__)


class EmitterWatcher:
    """Streams Emitter changes onto an EventBus until stopped."""

    def __init__(
        self,
        store: ResourceStore,
        event_bus: EventBus,
        retry_delay: float = 5,
        timeout_seconds: int = 300,
    ):
        self.store = store
        self.event_bus = event_bus
        self.retry_delay = retry_delay
        self.timeout_seconds = timeout_seconds
        self.running = False
        self._watch: Optional[watch.Watch] = None

    async def start(self):
        """Watch until stop() is called, restarting the stream on failure."""
        self.running = True
        loop = asyncio.get_running_loop()
        resource_version: Optional[str] = None
        scope = self.store.cfg.namespace or "all namespaces"
        logger.info(f"Watching emitters in {scope}")

        while self.running:
            try:
                resource_version = await asyncio.to_thread(
                    self._stream, loop, resource_version
                )
            except Exception as e:
                if not self.running:
                    break
                logger.error(f"Emitter watch failed: {e}")
                resource_version = None
                await asyncio.sleep(self.retry_delay)

    async def stop(self):
        """Stop watching."""
        self.running = False
        if self._watch is not None:
            self._watch.stop()

    def _stream(
        self, loop: asyncio.AbstractEventLoop, resource_version: Optional[str]
    ) -> Optional[str]:
        """Consume one watch stream; returns the last resourceVersion seen."""
        cfg = self.store.cfg
        kwargs = {
            "group": cfg.group,
            "version": cfg.version,
            "plural": cfg.plural,
            "timeout_seconds": self.timeout_seconds,
        }
        if cfg.namespace:
            func = self.store.custom_api.list_namespaced_custom_object
            kwargs["namespace"] = cfg.namespace
        else:
            func = self.store.custom_api.list_cluster_custom_object
        if resource_version:
            kwargs["resource_version"] = resource_version

        self._watch = watch.Watch()
        for raw_event in self._watch.stream(func, **kwargs):
            if not self.running:
                self._watch.stop()
                break

            if raw_event.get("type") == "ERROR":
                logger.warning(f"Watch returned error: {raw_event.get('object')}")
                return None

            try:
                event = ResourceEvent.from_watch(raw_event)
            except (KeyError, ValueError) as e:
                logger.warning(f"Ignoring malformed watch event: {e}")
                continue

            metadata = event.resource_data.get("metadata") or {}
            resource_version = metadata.get("resourceVersion", resource_version)
            logger.debug(f"Emitter {event.key} {event.event_type.value}")

            asyncio.run_coroutine_threadsafe(
                self.event_bus.publish(event), loop
            ).result()

        return resource_version

