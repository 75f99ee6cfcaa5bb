"""
Broadcaster using asyncio queues for job progress notifications.

Every subscriber gets its own queue. Publishing happens on the event loop that
owns the scheduler, so it never blocks and needs no lock.
"""

import asyncio
import uuid
from typing import Any, AsyncIterator, Dict, Generic, TypeVar

T = TypeVar("T")


class BroadcasterQueue(asyncio.Queue[T]):
    """An asyncio.Queue with a subscriber ID for tracking."""

    def __init__(self, maxsize: int = 0):
        super().__init__(maxsize)
        self.broadcaster_id: str = ""


class Broadcaster(Generic[T]):
    """A broadcaster that fans messages out to subscribed queues."""

    def __init__(self, name: str):
        self.name = name
        self.listeners: Dict[str, BroadcasterQueue[T]] = {}

    def subscribe(self, maxsize: int = 0) -> BroadcasterQueue[T]:
        """
        Subscribe to broadcasts and return a queue for receiving messages.

        :param maxsize: Queue bound; messages for a full queue are dropped.
        """
        queue = BroadcasterQueue[T](maxsize)
        queue.broadcaster_id = str(uuid.uuid4())
        self.listeners[queue.broadcaster_id] = queue
        return queue

    def unsubscribe(self, queue: BroadcasterQueue[T]) -> None:
        self.listeners.pop(queue.broadcaster_id, None)

    def broadcast(self, message: T) -> None:
        """Broadcast a message to all subscribers."""
        for queue in list(self.listeners.values()):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                pass

    async def listen(self) -> AsyncIterator[T]:
        """
        Iterate over broadcast messages until the consumer stops iterating.

        Usage:
            async for job in runner.progress.listen():
                render(job)
        """
        queue = self.subscribe()
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(queue)


def new_broadcaster(name: str) -> Broadcaster[Any]:
    return Broadcaster(name)
