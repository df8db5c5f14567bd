"""Publish/subscribe fan-out used for snapshots and opportunity status changes."""

import asyncio
import itertools
from typing import Callable, Dict, Generic, List, Tuple, TypeVar

from loguru import logger

T = TypeVar("T")


class EventBus(Generic[T]):
    """Fans events out to callbacks and bounded queues.

    A failing callback is logged and skipped. Queue subscribers have a fixed
    buffer; when it is full the oldest event is dropped so a slow consumer
    never blocks the publisher.
    """

    def __init__(self, name: str, buffer_size: int = 100):
        self.name = name
        self.buffer_size = buffer_size
        self._callbacks: Dict[int, Callable[[T], None]] = {}
        self._queues: Dict[int, asyncio.Queue] = {}
        self._ids = itertools.count(1)
        self.dropped = 0

    def subscribe(self, callback: Callable[[T], None]) -> int:
        """Register a callback, returning a token for unsubscribe."""
        token = next(self._ids)
        self._callbacks[token] = callback
        return token

    def subscribe_queue(self, maxsize: int = 0) -> Tuple[int, asyncio.Queue]:
        """Register a bounded queue subscriber."""
        token = next(self._ids)
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize or self.buffer_size)
        self._queues[token] = queue
        return token, queue

    def unsubscribe(self, token: int) -> bool:
        """Remove a subscriber. Returns False if the token is unknown."""
        removed = self._callbacks.pop(token, None) is not None
        removed = self._queues.pop(token, None) is not None or removed
        return removed

    def publish(self, event: T) -> int:
        """Deliver an event to every subscriber. Returns the number of failures."""
        failures = 0

        for token, callback in list(self._callbacks.items()):
            try:
                callback(event)
            except Exception as e:
                failures += 1
                logger.error(f"Error in {self.name} subscriber {token}: {e}")

        for queue in list(self._queues.values()):
            if queue.full():
                try:
                    queue.get_nowait()
                    self.dropped += 1
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(event)

        return failures

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks) + len(self._queues)

    def subscribers(self) -> List[int]:
        return sorted(list(self._callbacks) + list(self._queues))
