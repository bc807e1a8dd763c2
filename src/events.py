"""
Problem events - In-memory pub/sub for cloud check activity.

Detected problems and resolution outcomes are published here so the HTTP
API can stream them to watchers as Server-Sent Events.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Optional, Tuple

from report import Disposition, Problem, ProblemOutcome

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of problem events."""

    DETECTED = "DETECTED"
    RESOLVED = "RESOLVED"
    IGNORED = "IGNORED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


_DISPOSITION_EVENTS = {
    Disposition.RESOLVED: EventType.RESOLVED,
    Disposition.IGNORED: EventType.IGNORED,
    Disposition.FAILED: EventType.FAILED,
    Disposition.SKIPPED: EventType.SKIPPED,
}


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ProblemEvent:
    """Event emitted when a problem is detected or reaches a disposition."""

    event_type: EventType
    problem_id: str
    problem_type: str
    resource_id: int
    data: Dict[str, Any]
    timestamp: str

    def to_sse(self) -> str:
        """Format the event as an SSE message."""
        payload = {
            "event_type": self.event_type.value,
            "problem_id": self.problem_id,
            "problem_type": self.problem_type,
            "resource_id": self.resource_id,
            "data": self.data,
            "timestamp": self.timestamp,
        }
        return f"event: {self.event_type.value}\ndata: {json.dumps(payload)}\n\n"

    @classmethod
    def detected(cls, problem: Problem) -> "ProblemEvent":
        return cls(
            event_type=EventType.DETECTED,
            problem_id=problem.id,
            problem_type=problem.problem_type,
            resource_id=problem.resource_id,
            data=problem.to_dict(),
            timestamp=_utcnow(),
        )

    @classmethod
    def from_outcome(cls, outcome: ProblemOutcome) -> "ProblemEvent":
        return cls(
            event_type=_DISPOSITION_EVENTS[outcome.disposition],
            problem_id=outcome.problem_id,
            problem_type=outcome.problem_type,
            resource_id=outcome.resource_id,
            data=outcome.to_dict(),
            timestamp=_utcnow(),
        )


class EventSubscription:
    """
    Async iterator over the events delivered to one subscriber.

    Iteration ends when the bus pushes a ``None`` sentinel.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        filter_fn: Optional[Callable[[ProblemEvent], bool]] = None,
    ):
        self._queue = queue
        self._filter_fn = filter_fn

    def __aiter__(self) -> AsyncIterator[ProblemEvent]:
        return self

    async def __anext__(self) -> ProblemEvent:
        while True:
            event = await self._queue.get()
            if event is None:
                raise StopAsyncIteration
            if self._filter_fn is None or self._filter_fn(event):
                return event


class EventBus:
    """
    In-memory pub/sub bus with one bounded queue per subscriber.

    Publishing never blocks: events for a subscriber with a full queue are
    dropped.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}
        self._lock = asyncio.Lock()

    async def publish(self, event: ProblemEvent) -> None:
        async with self._lock:
            subscribers = list(self._subscribers.items())

        for subscriber_id, queue in subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Dropped {event.event_type.value} event for "
                    f"subscriber {subscriber_id}: queue full"
                )

    async def subscribe(
        self, problem_types: Optional[Iterable[str]] = None
    ) -> Tuple[str, EventSubscription]:
        """
        Subscribe to events, optionally only for some problem types.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        filter_fn = None
        if problem_types:
            wanted = set(problem_types)
            filter_fn = lambda event: event.problem_type in wanted  # noqa: E731

        async with self._lock:
            self._subscribers[subscriber_id] = queue

        logger.info(f"New event subscriber: {subscriber_id}")
        return subscriber_id, EventSubscription(queue, filter_fn)

    async def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber and end its iteration."""
        async with self._lock:
            queue = self._subscribers.pop(subscriber_id, None)

        if queue is None:
            return
        try:
            queue.put_nowait(None)
        except asyncio.QueueFull:
            pass
        logger.info(f"Unsubscribed: {subscriber_id}")

    def subscriber_count(self) -> int:
        return len(self._subscribers)
