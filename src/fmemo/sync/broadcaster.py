"""Fan-out of change notifications to live subscribers.

Each subscriber owns a bounded asyncio.Queue. publish() never awaits: a
subscriber whose queue is full loses that notification (drop-newest) and
nobody else notices. Within one subscriber, delivery is FIFO.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Union

from fmemo.memo.schema import DirectoryTree, Forest, forest_to_list

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 64


@dataclass(frozen=True)
class FileUpdated:
    """A single file was re-parsed."""

    file_path: str
    memos: Forest

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "file_updated",
            "file_path": self.file_path,
            "path": self.file_path.rsplit("/", 1)[-1],
            "memos": forest_to_list(self.memos),
        }


@dataclass(frozen=True)
class DirectoryUpdated:
    """Files or directories were created, deleted or renamed."""

    tree: DirectoryTree

    def to_message(self) -> dict[str, Any]:
        return {"type": "directory_updated", "tree": self.tree.to_dict()}


ChangeNotification = Union[FileUpdated, DirectoryUpdated]

# Queued after unsubscribe so a waiting consumer wakes up and stops.
_CLOSED = object()


class Subscription:
    """One subscriber's outbound channel."""

    def __init__(self, maxsize: int) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _offer(self, notification: ChangeNotification) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> ChangeNotification | None:
        """Wait for the next notification; None once unsubscribed."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self) -> AsyncIterator[ChangeNotification]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeNotification]:
        while True:
            item = await self.get()
            if item is None:
                return
            yield item


class SyncBroadcaster:
    """Registry of subscribers plus non-blocking publish."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        self.queue_size = queue_size
        self._subscribers: dict[str, Subscription] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, maxsize: int | None = None) -> Subscription:
        subscription = Subscription(maxsize or self.queue_size)
        self._subscribers[subscription.id] = subscription
        logger.info("Subscriber %s connected (%d active)", subscription.id, self.subscriber_count)
        return subscription

    def unsubscribe(self, handle: Subscription | str) -> None:
        sub_id = handle.id if isinstance(handle, Subscription) else handle
        subscription = self._subscribers.pop(sub_id, None)
        if subscription is None:
            return
        subscription._close()
        logger.info(
            "Subscriber %s disconnected (%d active, %d dropped)",
            sub_id,
            self.subscriber_count,
            subscription.dropped,
        )

    def publish(self, notification: ChangeNotification) -> int:
        """Offer ``notification`` to every subscriber. Returns how many accepted it."""
        delivered = 0
        # Snapshot: unsubscribe during iteration must not break fan-out
        for subscription in list(self._subscribers.values()):
            if subscription._offer(notification):
                delivered += 1
            else:
                logger.debug("Subscriber %s queue full, notification dropped", subscription.id)
        return delivered

    def close(self) -> None:
        """Unsubscribe everyone."""
        for sub_id in list(self._subscribers):
            self.unsubscribe(sub_id)
