"""
Event Streaming - In-memory pub/sub for Emitter change events.

The watcher publishes what it sees on the Kubernetes watch stream; the
controller subscribes and turns each event into a reconcile request.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, Tuple

from models import ObjectKey

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of resource events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass
class ResourceEvent:
    """Event emitted when an Emitter changes."""

    event_type: EventType
    key: ObjectKey
    resource_data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now)

    @classmethod
    def from_watch(cls, raw_event: Dict[str, Any]) -> "ResourceEvent":
        """
        Create an event from a Kubernetes watch stream entry.

        Args:
            raw_event: Dict with 'type' and 'object' keys as yielded by
                kubernetes.watch.Watch.stream.

        Raises:
            ValueError: If the event type is not one the stream produces.
        """
        event_type = EventType(raw_event["type"])
        obj = raw_event.get("object") or {}
        metadata = obj.get("metadata") or {}
        return cls(
            event_type=event_type,
            key=ObjectKey(metadata.get("namespace", ""), metadata.get("name", "")),
            resource_data=obj,
        )


class EventSubscription:
    """
    Async iterator for consuming events from a subscription.

    Reads events from a queue. A ``None`` sentinel value stops iteration.
    """

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    def __aiter__(self) -> AsyncIterator["ResourceEvent"]:
        return self

    async def __anext__(self) -> "ResourceEvent":
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """
    In-memory pub/sub event bus for resource events.

    Maintains an ``asyncio.Queue`` per subscriber and publishes events
    non-blocking.  Full queues cause events to be dropped with a warning
    to prevent back-pressure on publishers.
    """

    def __init__(self, queue_size: int = 1024):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}
        self._lock = asyncio.Lock()

    async def publish(self, event: ResourceEvent) -> None:
        """
        Publish an event to all subscribers (non-blocking).

        Events are dropped for subscribers whose queues are full.
        """
        async with self._lock:
            subscribers = list(self._subscribers.items())

        for subscriber_id, queue in subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Dropped {event.event_type.value} event for {event.key} "
                    f"(subscriber {subscriber_id}): queue full"
                )

    async def subscribe(self) -> Tuple[str, EventSubscription]:
        """
        Subscribe to events.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        async with self._lock:
            self._subscribers[subscriber_id] = queue

        logger.debug(f"New event subscriber: {subscriber_id}")
        return subscriber_id, EventSubscription(queue)

    async def unsubscribe(self, subscriber_id: str) -> None:
        """
        Remove a subscriber, ending its iterator with a ``None`` sentinel.
        """
        async with self._lock:
            queue = self._subscribers.pop(subscriber_id, None)

        if queue is not None:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                # Drain one slot so the sentinel always gets through
                queue.get_nowait()
                queue.put_nowait(None)
            logger.debug(f"Unsubscribed: {subscriber_id}")

    def subscriber_count(self) -> int:
        """Return the current number of subscribers."""
        return len(self._subscribers)
