"""Change dispatcher — from observed change to every subscriber.

Learn: on_change() is called on the change source's observation task,
once per row change, in commit order. It must return fast: if it awaited
the broadcast, one slow browser would stall observation for everyone.
So on_change only classifies and enqueues:

- NONE events are counted and dropped — they never reach a subscriber.
- Everything else is serialized once and put on the outbound queue of
  each subscriber registered right now.

Each subscriber gets its own bounded queue and its own writer task
(an "outlet"). The writer sends one message at a time, so every
subscriber sees changes in commit order, and a stuck subscriber only
ever holds up its own queue. Its sends time out (the registry's
send_timeout) and, once its queue is full, new messages for it are
dropped on the spot. Nobody else waits.

Observation errors are not handled here. on_error() counts them and
passes them to the one error handler the owner registered; the source
has already halted itself by then.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from stockticker.changes.sources import ChangeSource
from stockticker.changes.types import ChangeEvent
from stockticker.exceptions import ObservationError
from stockticker.realtime.registry import Subscriber, SubscriberRegistry

logger = structlog.get_logger()

_STOP = object()


@dataclass
class DispatcherStats:
    """Runtime statistics for monitoring."""
    observed: int = 0
    dispatched: int = 0
    ignored: int = 0
    rejected: int = 0
    errors: int = 0
    delivered: int = 0
    dropped: int = 0
    started_at: Optional[datetime] = None
    last_error: Optional[str] = None


class _Outlet:
    """One subscriber's outbound queue and the task that writes it out."""

    def __init__(self, subscriber: Subscriber, maxsize: int):
        self.subscriber = subscriber
        self.queue: asyncio.Queue = asyncio.Queue(maxsize)
        self.task: Optional[asyncio.Task] = None

    def discard(self) -> None:
        """Throw away everything queued that hasn't been picked up yet."""
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()


class ChangeDispatcher:
    """Fans ChangeEvents out to the subscriber registry."""

    def __init__(self, registry: SubscriberRegistry, queue_size: int = 100):
        self.registry = registry
        self.queue_size = queue_size
        self.stats = DispatcherStats()
        self._error_handler: Optional[Callable[[ObservationError], None]] = None
        self._outlets: dict[Subscriber, _Outlet] = {}
        self._retired: set[asyncio.Task] = set()
        self._accepting = False

    def attach(self, source: ChangeSource) -> None:
        """Route a change source's events and errors through this dispatcher."""
        source.set_change_handler(self.on_change)
        source.set_error_handler(self.on_error)

    def set_error_handler(self, handler: Callable[[ObservationError], None]) -> None:
        self._error_handler = handler

    @property
    def in_flight(self) -> int:
        """Messages queued for subscribers and not yet picked up by a writer."""
        return sum(outlet.queue.qsize() for outlet in self._outlets.values())

    # ─── Lifecycle ────────────────────────────────────────

    async def start(self) -> None:
        if self._accepting:
            return
        self._accepting = True
        self.stats.started_at = datetime.now(timezone.utc)

    async def close(self) -> None:
        """Stop accepting events. Sends already running finish; queued ones don't start."""
        self._accepting = False
        outlets = list(self._outlets.values())
        self._outlets.clear()
        for outlet in outlets:
            outlet.discard()
            outlet.queue.put_nowait(_STOP)
        await asyncio.gather(
            *(outlet.task for outlet in outlets),
            *self._retired,
            return_exceptions=True,
        )
        logger.info(
            "dispatcher.closed",
            dispatched=self.stats.dispatched,
            ignored=self.stats.ignored,
            dropped=self.stats.dropped,
        )

    async def flush(self) -> None:
        """Wait until every message queued so far has been sent or dropped."""
        await asyncio.gather(
            *(outlet.queue.join() for outlet in list(self._outlets.values()))
        )

    # ─── Source callbacks ─────────────────────────────────

    def on_change(self, event: ChangeEvent) -> None:
        """Classify one observed change and queue it for every subscriber."""
        if not self._accepting:
            self.stats.rejected += 1
            logger.debug("dispatcher.not_accepting", operation=event.operation.value)
            return
        self.stats.observed += 1
        if event.is_noop:
            self.stats.ignored += 1
            return
        self.stats.dispatched += 1
        self._fan_out(event.to_message())

    def on_error(self, error: ObservationError) -> None:
        """Hand an observation error to the registered handler."""
        self.stats.errors += 1
        self.stats.last_error = str(error)
        if self._error_handler is None:
            logger.error("dispatcher.unhandled_observation_error", error=str(error))
            return
        self._error_handler(error)

    # ─── Outlets ──────────────────────────────────────────

    def _fan_out(self, message: dict[str, Any]) -> None:
        targets = self.registry.snapshot()

        # Subscribers removed since the last event
        for subscriber in [s for s in self._outlets if s not in targets]:
            self._retire(self._outlets.pop(subscriber))

        for subscriber in targets:
            outlet = self._outlets.get(subscriber)
            if outlet is None:
                outlet = self._open(subscriber)
            try:
                outlet.queue.put_nowait(message)
            except asyncio.QueueFull:
                self.stats.dropped += 1
                logger.warning(
                    "delivery.dropped",
                    subscriber=subscriber.id,
                    reason="queue_full",
                    queue_size=self.queue_size,
                    type=message["type"],
                )
        logger.debug("dispatcher.fan_out", type=message["type"], subscribers=len(targets))

    def _open(self, subscriber: Subscriber) -> _Outlet:
        outlet = _Outlet(subscriber, self.queue_size)
        outlet.task = asyncio.create_task(
            self._write(outlet), name=f"outlet-{subscriber.id}"
        )
        self._outlets[subscriber] = outlet
        return outlet

    def _retire(self, outlet: _Outlet) -> None:
        outlet.discard()
        outlet.task.cancel()
        self._retired.add(outlet.task)
        outlet.task.add_done_callback(self._retired.discard)

    async def _write(self, outlet: _Outlet) -> None:
        subscriber = outlet.subscriber
        while True:
            message = await outlet.queue.get()
            try:
                if message is _STOP:
                    return
                if subscriber.closed:
                    continue
                error = await self.registry.deliver(subscriber, message)
                if error is None:
                    self.stats.delivered += 1
                else:
                    self.stats.dropped += 1
            finally:
                outlet.queue.task_done()

    # ─── Stats endpoint ──────────────────────────────────

    def get_stats(self) -> dict[str, Any]:
        """Return dispatcher statistics for monitoring."""
        return {
            "observed": self.stats.observed,
            "dispatched": self.stats.dispatched,
            "ignored": self.stats.ignored,
            "rejected": self.stats.rejected,
            "errors": self.stats.errors,
            "delivered": self.stats.delivered,
            "dropped": self.stats.dropped,
            "subscribers": len(self.registry),
            "in_flight": self.in_flight,
            "started_at": (
                self.stats.started_at.isoformat()
                if self.stats.started_at
                else None
            ),
            "last_error": self.stats.last_error,
        }
