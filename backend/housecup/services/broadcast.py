"""
Realtime fan-out of committed election state changes.

Services publish typed events through the ``Broadcaster`` interface they are
constructed with. ``EventHub`` is the in-process implementation the WebSocket
endpoint subscribes to: one bounded ``asyncio.Queue`` per connection, fed with
``call_soon_threadsafe`` so publishing from a worker thread never blocks.

Delivery is at-most-once per connected client. A client that was offline, or
whose queue overflowed, re-reads the full state through the HTTP API.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, Optional, Protocol, Set

from housecup.core.logger import realtime_logger as logger
from housecup.core.settings import get_settings


@dataclass(frozen=True)
class ElectionEvent:
    name: ClassVar[str] = "event"

    def to_message(self) -> Dict[str, Any]:
        return {"event": self.name, "data": asdict(self)}


@dataclass(frozen=True)
class NominationSubmitted(ElectionEvent):
    name: ClassVar[str] = "nomination_submitted"
    nomination_id: int
    position_id: int
    user_id: str
    house_id: str


@dataclass(frozen=True)
class NominationModerated(ElectionEvent):
    name: ClassVar[str] = "nomination_moderated"
    nomination_id: int
    position_id: int
    status: str


@dataclass(frozen=True)
class VoteCountUpdated(ElectionEvent):
    name: ClassVar[str] = "nomination_vote_count_updated"
    nomination_id: int
    position_id: int
    vote_count: int


@dataclass(frozen=True)
class WinnerDeclared(ElectionEvent):
    name: ClassVar[str] = "winner_declared"
    position_id: int
    house_id: Optional[str]
    winner_nomination_id: int
    winner_user_id: str
    vote_count: int


@dataclass(frozen=True)
class ResultsReset(ElectionEvent):
    name: ClassVar[str] = "results_reset"
    position_id: int
    house_id: Optional[str]
    deleted: int


@dataclass(frozen=True)
class AttendanceMarked(ElectionEvent):
    name: ClassVar[str] = "attendance_marked"
    registration_id: str
    event_id: Optional[str]
    attended_at: str


class Broadcaster(Protocol):
    def publish(self, event: ElectionEvent) -> None: ...


def publish_safely(broadcaster: Broadcaster, event: ElectionEvent, *, attempts: Optional[int] = None) -> bool:
    """
    Publish after a committed write. Failures are retried a bounded number of
    times, then logged and dropped: the write has already succeeded.
    """
    attempts = attempts or get_settings().broadcast_retry_attempts
    for attempt in range(1, attempts + 1):
        try:
            broadcaster.publish(event)
            return True
        except Exception as exc:  # transport errors must not reach the caller
            logger.warning(f"Publish of {event.name} failed (attempt {attempt}/{attempts}): {exc!r}")
            if attempt < attempts:
                time.sleep(0.01 * attempt)
    logger.warning(f"Dropped {event.name} after {attempts} attempts")
    return False


@dataclass(eq=False)
class Subscription:
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue = field(repr=False)
    dropped: int = 0


class EventHub:
    """Thread-safe publish/subscribe hub; implements ``Broadcaster``."""

    def __init__(self, queue_size: Optional[int] = None) -> None:
        self._queue_size = queue_size or get_settings().subscriber_queue_size
        self._subscribers: Set[Subscription] = set()
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        """Must be called from the event loop that will consume the queue."""
        subscription = Subscription(loop=asyncio.get_running_loop(), queue=asyncio.Queue(self._queue_size))
        with self._lock:
            self._subscribers.add(subscription)
        logger.info(f"Subscriber added ({self.subscriber_count} connected)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)
        logger.info(f"Subscriber removed ({self.subscriber_count} connected)")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: ElectionEvent) -> None:
        message = event.to_message()
        with self._lock:
            targets = list(self._subscribers)
        for subscription in targets:
            try:
                subscription.loop.call_soon_threadsafe(self._deliver, subscription, message)
            except RuntimeError:
                # Loop already closed: the connection is gone.
                self.unsubscribe(subscription)

    @staticmethod
    def _deliver(subscription: Subscription, message: Dict[str, Any]) -> None:
        try:
            subscription.queue.put_nowait(message)
        except asyncio.QueueFull:
            subscription.dropped += 1
            logger.warning(f"Subscriber queue full, dropped {message['event']} (total dropped {subscription.dropped})")


__all__ = [
    "AttendanceMarked",
    "Broadcaster",
    "ElectionEvent",
    "EventHub",
    "NominationModerated",
    "NominationSubmitted",
    "ResultsReset",
    "Subscription",
    "VoteCountUpdated",
    "WinnerDeclared",
    "publish_safely",
]
