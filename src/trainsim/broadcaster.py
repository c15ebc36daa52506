"""In-memory, fire-and-forget delivery of per-tick train snapshots."""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List

logger = logging.getLogger(__name__)

MAP_UPDATE = "map.update"
SCHEDULE_UPDATE = "schedule.update"
TRIP_MODIFICATION = "trip.modification"

Subscriber = Callable[["Message"], None]


@dataclass
class Message:
    """A single published message."""
    topic: str
    payload: dict
    ts: float


class Broadcaster:
    """
    Topic-based broadcast sink.

    Messages are handed to every subscriber of a topic and kept in a bounded
    per-topic queue for polling observers. There is no acknowledgment
    channel; a failing subscriber is logged and skipped, and a full queue
    drops its oldest message.
    """

    def __init__(self, max_queue: int = 1000, clock: Callable[[], float] = time.time):
        """
        Initialize a broadcaster.

        Args:
            max_queue: Messages retained per topic for :meth:`poll`.
            clock: Timestamp source for messages.
        """
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._queues: Dict[str, Deque[Message]] = {}
        self._max_queue = max_queue
        self._clock = clock
        self.published = 0
        self.failed_deliveries = 0

    def subscribe(self, topic: str, callback: Subscriber) -> None:
        self._subscribers.setdefault(topic, []).append(callback)

    def unsubscribe(self, topic: str, callback: Subscriber) -> None:
        callbacks = self._subscribers.get(topic, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def publish(self, topic: str, payload: dict) -> Message:
        """
        Deliver ``payload`` to every subscriber of ``topic``.

        Never raises on subscriber failure.

        Returns:
            The published message.
        """
        msg = Message(topic=topic, payload=payload, ts=self._clock())
        queue = self._queues.get(topic)
        if queue is None:
            queue = self._queues[topic] = deque(maxlen=self._max_queue)
        queue.append(msg)
        self.published += 1

        for callback in list(self._subscribers.get(topic, [])):
            try:
                callback(msg)
            except Exception as e:
                self.failed_deliveries += 1
                logger.warning(f"Subscriber {callback!r} failed on {topic}: {e}")

        logger.debug(f"publish topic={topic}")
        return msg

    def poll(self, topic: str) -> List[Message]:
        """Retrieve and clear all queued messages for a topic."""
        queue = self._queues.get(topic)
        if not queue:
            return []
        msgs = list(queue)
        queue.clear()
        return msgs

    def report(self) -> dict:
        return {"published": self.published, "failed_deliveries": self.failed_deliveries}
