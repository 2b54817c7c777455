import queue
import threading
from typing import Optional, Tuple

from common.state_persistence import FileIdentity

from .models import QueuedLine

DEFAULT_CAPACITY = 1


class DispatchQueue:
    """Bounded FIFO between the follower (single producer) and the publisher
    (single consumer).

    With the default capacity of one line the follower can never run more
    than one line ahead of the publisher, so reading is throttled to the
    publish rate. The consumer acknowledges every line it delivered, which
    gives the producer side the position it may checkpoint.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self._queue: "queue.Queue[QueuedLine]" = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()
        self._delivered: Optional[Tuple[int, FileIdentity]] = None

    def put(self, item: QueuedLine, timeout: Optional[float] = None) -> bool:
        """Hand *item* to the consumer, blocking while the queue is full.

        Returns ``False`` if the item could not be queued within *timeout* or
        the queue was closed.
        """
        if self._closed.is_set():
            return False
        try:
            self._queue.put(item, timeout=timeout)
        except queue.Full:
            return False
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[QueuedLine]:
        """Next item, or ``None`` when nothing arrived within *timeout*."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        self._queue.task_done()
        return item

    def acknowledge(self, item: QueuedLine) -> None:
        """Record that *item* reached the broker."""
        self._delivered = (item.offset, item.identity)

    @property
    def delivered(self) -> Optional[Tuple[int, FileIdentity]]:
        """Offset and file identity just past the last acknowledged line."""
        return self._delivered

    def close(self) -> None:
        """Refuse further lines; the consumer still drains what is queued."""
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def drained(self) -> bool:
        return self._closed.is_set() and self._queue.empty()
