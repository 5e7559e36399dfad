from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Any, Iterator

logger = logging.getLogger(__name__)

RESERVATION_CREATED = "reservation_created"
RESERVATION_UPDATED = "reservation_updated"
RESERVATION_DELETED = "reservation_deleted"


class EventBroadcaster:
    """Fan-out of change notifications to every connected subscriber."""

    def __init__(self, max_queue_size: int = 50, heartbeat_seconds: float = 25.0) -> None:
        self.max_queue_size = max_queue_size
        self.heartbeat_seconds = heartbeat_seconds
        self._subscribers: list[queue.Queue] = []
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> queue.Queue:
        subscriber: queue.Queue = queue.Queue(maxsize=self.max_queue_size)
        with self._lock:
            self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: queue.Queue) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def publish(self, event_type: str, data: dict[str, Any]) -> int:
        """Queue the message for every subscriber without blocking. Returns deliveries."""
        message = {"type": event_type, "data": data}
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for subscriber in subscribers:
            try:
                subscriber.put_nowait(message)
                delivered += 1
            except queue.Full:
                logger.warning("Dropping %s for a slow subscriber", event_type)
        return delivered

    def stream(self, subscriber: queue.Queue) -> Iterator[str]:
        """Server-Sent Events frames for one subscriber; unsubscribes when the client goes away."""
        try:
            yield _sse_frame({"type": "heartbeat"})
            while True:
                try:
                    message = subscriber.get(timeout=self.heartbeat_seconds)
                except queue.Empty:
                    message = {"type": "heartbeat"}
                yield _sse_frame(message)
        finally:
            self.unsubscribe(subscriber)


def _sse_frame(message: dict[str, Any]) -> str:
    return f"data: {json.dumps(message)}\n\n"
