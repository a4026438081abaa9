"""
Emitter Controller - work queue and reconcile workers.

Similar to Kubernetes controllers: change events are turned into keys on a
work queue, and a fixed pool of workers reconciles them. The queue never
hands the same key to two workers at once; a key that changes while it is
being reconciled is reconciled again afterwards.
"""

import asyncio
import logging
import random
import time
from typing import Dict, List, Optional, Set

from config import ControllerConfig
from errors import classify
from events import EventBus, EventSubscription, EventType
from models import ObjectKey
from reconciler import ACTION_NONE, EmitterReconciler, ReconcileResult

logger = logging.getLogger(__name__)


class WorkQueue:
    """
    De-duplicating queue of object keys with per-key exclusion.

    A key is either waiting, being processed, or both (dirty): adding a key
    that is being processed marks it to be queued again by done().
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty: Set[ObjectKey] = set()
        self._processing: Set[ObjectKey] = set()
        self._timers: Set[asyncio.TimerHandle] = set()
        self._shutting_down = False

    def add(self, key: ObjectKey) -> None:
        """Queue a key unless it is already waiting."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: ObjectKey, delay: float) -> None:
        """Queue a key after a delay in seconds."""
        if self._shutting_down:
            return
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def fire():
            self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    async def get(self) -> Optional[ObjectKey]:
        """Wait for the next key; None means the queue is shutting down."""
        key = await self._queue.get()
        if key is None:
            return None
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: ObjectKey) -> None:
        """Mark a key as processed, re-queueing it if it changed meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def shutdown(self, workers: int) -> None:
        """Stop accepting keys and wake every worker with a sentinel."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        for _ in range(workers):
            self._queue.put_nowait(None)

    def __len__(self) -> int:
        return len(self._dirty)


class Controller:
    """
    Main controller that drives the Emitter reconciler.

    Subscribes to Emitter change events, queues their keys and runs
    reconciles with up to max_concurrent_reconciles workers. Failed
    reconciles are retried with exponential backoff and jitter.
    """

    def __init__(
        self,
        reconciler: EmitterReconciler,
        event_bus: EventBus,
        config: Optional[ControllerConfig] = None,
    ):
        self.reconciler = reconciler
        self.event_bus = event_bus
        self.config = config or ControllerConfig()
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.queue = WorkQueue()
        self.running = False

        self._retries: Dict[ObjectKey, int] = {}
        self._known_keys: Set[ObjectKey] = set()
        self._subscriber_id: Optional[str] = None
        self._subscription: Optional[EventSubscription] = None
        self._tasks: List[asyncio.Task] = []
        self._resync_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start consuming events and reconciling."""
        logger.info(
            f"Starting Emitter Controller with "
            f"{self.max_concurrent_reconciles} workers"
        )
        self.running = True
        subscription = await self.subscribe()

        self._tasks = [asyncio.create_task(self._consume_events(subscription))]
        for worker_id in range(self.max_concurrent_reconciles):
            self._tasks.append(asyncio.create_task(self._worker(worker_id)))
        if self.config.resync_interval > 0:
            self._resync_task = asyncio.create_task(self._resync_loop())
            self._tasks.append(self._resync_task)

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Controller tasks cancelled")
        except Exception as e:
            logger.error(f"Controller error: {e}")
            raise

    async def subscribe(self) -> EventSubscription:
        """Subscribe to change events; safe to call before start()."""
        if self._subscription is None:
            self._subscriber_id, self._subscription = await self.event_bus.subscribe()
        return self._subscription

    async def stop(self):
        """Stop the controller gracefully."""
        logger.info("Stopping Emitter Controller")
        self.running = False

        if self._subscriber_id is not None:
            await self.event_bus.unsubscribe(self._subscriber_id)
            self._subscriber_id = None
            self._subscription = None

        self.queue.shutdown(self.max_concurrent_reconciles)

        if self._resync_task is not None:
            self._resync_task.cancel()
            self._resync_task = None

    def enqueue(self, key: ObjectKey) -> None:
        """Request a reconcile for a key."""
        self.queue.add(key)

    def backoff_delay(self, retries: int) -> float:
        """
        Delay before the next attempt after `retries` consecutive failures.

        base * 2^retries capped at max, with ±jitter_factor jitter.
        """
        delay = min(
            self.config.backoff_base_delay * (2 ** min(retries, 10)),
            self.config.backoff_max_delay,
        )
        jitter = (random.random() * 2 - 1) * self.config.backoff_jitter_factor
        return delay * (1 + jitter)

    async def _consume_events(self, subscription: EventSubscription):
        async for event in subscription:
            if event.event_type == EventType.DELETED:
                self._known_keys.discard(event.key)
            else:
                self._known_keys.add(event.key)
            self.enqueue(event.key)

    async def _resync_loop(self):
        """Periodically re-queue every Emitter seen so far."""
        while self.running:
            await asyncio.sleep(self.config.resync_interval)
            await self.resync()

    async def resync(self) -> Set[ObjectKey]:
        """
        Re-queue every known Emitter and every Emitter still holding a
        tracked deployment, so a dropped DELETED event is eventually
        cleaned up.
        """
        tracked = await self.reconciler.tracker.snapshot()
        keys = self._known_keys | set(tracked)
        logger.debug(f"Resyncing {len(keys)} emitters")
        for key in keys:
            self.enqueue(key)
        return keys

    async def _worker(self, worker_id: int):
        while True:
            key = await self.queue.get()
            if key is None:
                logger.debug(f"Worker {worker_id} exiting")
                return
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def process(self, key: ObjectKey) -> ReconcileResult:
        """Reconcile one key and schedule a retry if it failed."""
        start_time = time.monotonic()
        try:
            result = await self.reconciler.reconcile(key)
        except Exception as e:
            logger.error(f"Error reconciling {key}: {e}", exc_info=True)
            result = ReconcileResult(
                success=False,
                message=f"Reconciliation error: {e}",
                error_kind=classify(e),
            )
        duration_seconds = time.monotonic() - start_time

        if result.requeue:
            retries = self._retries.get(key, 0)
            delay = self.backoff_delay(retries)
            self._retries[key] = retries + 1
            logger.warning(
                f"Failed to reconcile {key}: {result.message} "
                f"(retry {retries + 1} in {delay:.1f}s)"
            )
            self.queue.add_after(key, delay)
        else:
            self._retries.pop(key, None)
            if result.action != ACTION_NONE:
                logger.info(
                    f"Reconciled {key}: {result.message} ({duration_seconds:.2f}s)"
                )

        return result
