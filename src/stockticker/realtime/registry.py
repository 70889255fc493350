"""Subscriber registry — who is connected right now.

Learn: the registry is the one piece of shared mutable state in the
fan-out path. WebSocket handlers add and remove subscribers while the
dispatcher broadcasts, so:

- The subscriber set is an immutable frozenset, replaced wholesale under
  a lock on every add/remove (copy-on-write).
- broadcast() reads the current set once, at the start. That's its
  snapshot — a remove halfway through a broadcast can't change what the
  broadcast iterates over, and can't make it raise.
- Each send runs concurrently under asyncio.wait_for(send_timeout). A
  slow subscriber loses that message; a broken one is removed. Neither
  delays or cancels delivery to anybody else.

A threading.Lock (not asyncio.Lock) because add/remove never await, and
it keeps the registry safe to mutate from a worker thread as well.
"""

import asyncio
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from stockticker.exceptions import DeliveryError

logger = structlog.get_logger()


class Subscriber:
    """An open output channel. Subclasses implement send().

    Once removed from a registry a subscriber is closed for good — it
    can't be added again.
    """

    kind = "subscriber"

    def __init__(self, subscriber_id: Optional[str] = None):
        self.id = subscriber_id or f"{self.kind}-{uuid.uuid4().hex[:12]}"
        self.closed = False

    async def send(self, message: dict[str, Any]) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}{' closed' if self.closed else ''}>"


class QueueSubscriber(Subscriber):
    """In-process subscriber backed by an asyncio.Queue.

    With a maxsize, a consumer that falls behind blocks send() until the
    registry's timeout drops the message.
    """

    kind = "queue"

    def __init__(self, maxsize: int = 0, subscriber_id: Optional[str] = None):
        super().__init__(subscriber_id)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize)

    async def send(self, message: dict[str, Any]) -> None:
        await self.queue.put(message)


@dataclass
class BroadcastResult:
    """Outcome of one broadcast."""
    delivered: int = 0
    errors: list[DeliveryError] = field(default_factory=list)

    @property
    def dropped(self) -> int:
        return len(self.errors)


class SubscriberRegistry:
    """The set of connected subscribers, plus concurrent broadcast."""

    def __init__(self, send_timeout: float = 2.0):
        self.send_timeout = send_timeout
        self._lock = threading.Lock()
        self._subscribers: frozenset[Subscriber] = frozenset()

    def add(self, subscriber: Subscriber) -> None:
        """Register a subscriber. It receives every broadcast that starts after this."""
        with self._lock:
            if subscriber.closed:
                raise ValueError(f"{subscriber.id} was removed and cannot be re-added")
            self._subscribers = self._subscribers | {subscriber}
        logger.info("subscriber.added", subscriber=subscriber.id, total=len(self))

    def remove(self, subscriber: Subscriber) -> bool:
        """Unregister and close a subscriber. Returns False if it wasn't registered."""
        with self._lock:
            subscriber.closed = True
            if subscriber not in self._subscribers:
                return False
            self._subscribers = self._subscribers - {subscriber}
        logger.info("subscriber.removed", subscriber=subscriber.id, total=len(self))
        return True

    def snapshot(self) -> frozenset[Subscriber]:
        """The current subscriber set. Never changes after it's returned."""
        return self._subscribers

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber: object) -> bool:
        return subscriber in self._subscribers

    async def broadcast(self, message: dict[str, Any]) -> BroadcastResult:
        """Send ``message`` to every subscriber registered when this call starts."""
        targets = self.snapshot()
        result = BroadcastResult()
        if not targets:
            return result

        outcomes = await asyncio.gather(
            *(self.deliver(subscriber, message) for subscriber in targets)
        )
        for error in outcomes:
            if error is None:
                result.delivered += 1
            else:
                result.errors.append(error)
        return result

    async def deliver(
        self, subscriber: Subscriber, message: dict[str, Any]
    ) -> Optional[DeliveryError]:
        """Send to one subscriber. Never raises — failures come back as DeliveryError."""
        try:
            await asyncio.wait_for(subscriber.send(message), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "delivery.dropped",
                subscriber=subscriber.id,
                reason="timeout",
                timeout=self.send_timeout,
                type=message.get("type"),
            )
            return DeliveryError(subscriber.id, f"timed out after {self.send_timeout}s")
        except Exception as e:
            logger.warning(
                "delivery.failed",
                subscriber=subscriber.id,
                error=repr(e),
                type=message.get("type"),
            )
            self.remove(subscriber)
            return DeliveryError(subscriber.id, repr(e))
        return None
