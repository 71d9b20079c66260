import asyncio
import logging
from typing import AsyncIterator, Generic, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()

def _offer(queue: asyncio.Queue, item) -> None:
    """Put into a one-slot queue, replacing an unread older item"""
    if queue.full():
        try:
            queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
    queue.put_nowait(item)

class SnapshotFeed(Generic[T]):
    """
    Live feed of whole-table snapshots.

    Every subscriber gets a one-slot buffer: a newer snapshot replaces one the
    subscriber has not read yet, so a slow consumer only ever sees the latest
    state and never makes the buffer grow.
    """

    def __init__(self, initial: Optional[T] = None):
        self._latest: Optional[T] = initial
        self._subscribers: Set[asyncio.Queue] = set()
        self._closed = False

    @property
    def latest(self) -> Optional[T]:
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, snapshot: T) -> None:
        if self._closed:
            logger.debug("Dropping snapshot published to a closed feed")
            return
        self._latest = snapshot
        for queue in list(self._subscribers):
            _offer(queue, snapshot)

    def close(self) -> None:
        """End every subscription; an unread snapshot is dropped"""
        self._closed = True
        for queue in list(self._subscribers):
            _offer(queue, _CLOSED)

    async def subscribe(self) -> AsyncIterator[T]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        if self._latest is not None:
            queue.put_nowait(self._latest)
        if self._closed:
            _offer(queue, _CLOSED)

        self._subscribers.add(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._subscribers.discard(queue)
