"""Notification fan-out for scan progress.

A single NotificationBroker per orchestrator publishes events; every
subscriber owns an unbounded queue, so a slow subscriber never blocks the
publisher or other subscribers.
"""

import logging
import queue
import threading
from typing import Iterator, List, Optional

from .models import Notification, NotificationType

logger = logging.getLogger(__name__)

# Sentinel pushed into a subscription queue when it is closed
_CLOSED = object()


def scan_notification_key(user_id: str) -> str:
    return f"scan-{user_id}"


class Subscription:
    """
    Iterable stream of notifications for one subscriber.

    Iteration blocks until the next event arrives and ends when the
    subscription (or the broker) is closed. Use ``get(timeout)`` for a
    non-blocking style.
    """

    def __init__(self, broker: "NotificationBroker"):
        self._broker = broker
        self._queue: "queue.Queue" = queue.Queue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _push(self, item) -> None:
        if not self._closed.is_set():
            self._queue.put(item)

    def get(self, timeout: Optional[float] = None) -> Optional[Notification]:
        """
        Next notification, or None on timeout or when closed.
        """
        if self._closed.is_set() and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item

    def drain(self) -> List[Notification]:
        """All notifications queued right now, without blocking."""
        items = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return items
            if item is not _CLOSED:
                items.append(item)

    def close(self) -> None:
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(_CLOSED)
            self._broker._unsubscribe(self)

    def __iter__(self) -> Iterator[Notification]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class NotificationBroker:
    """Single-writer, multi-subscriber broadcast channel."""

    def __init__(self):
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, notification: Notification) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._push(notification)

    def progress(self, key: str, header: str, content: str, progress: float) -> None:
        self.publish(Notification(
            key=key,
            type=NotificationType.PROGRESS,
            header=header,
            content=content,
            progress=max(0.0, min(progress, 1.0)),
        ))

    def message(self, key: str, header: str, content: str, positive: bool = False,
                negative: bool = False, timeout: Optional[int] = None) -> None:
        self.publish(Notification(
            key=key,
            type=NotificationType.MESSAGE,
            header=header,
            content=content,
            positive=positive,
            negative=negative,
            timeout=timeout,
        ))

    def close_key(self, key: str) -> None:
        """Tell subscribers that the notification identified by key is done."""
        self.publish(Notification(key=key, type=NotificationType.CLOSE))

    def shutdown(self) -> None:
        """End every subscription's iteration."""
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.close()
        logger.debug(f"Notification broker shut down: {{'subscribers': {len(subscribers)}}}")
