"""StockTicker — the service that ties the core together.

Learn: one StockTicker owns one of each core component:

    ChangeSource ──on_change──▶ ChangeDispatcher ──broadcast──▶ SubscriberRegistry
                                                                  ▲
    SnapshotReader ◀──get_all_stocks / connect── handlers ────────┘

It's built by whoever owns the process (the FastAPI lifespan, or the CLI)
and passed to handlers by reference — see api/dependencies.py. There's
no module-level instance to reach for.

Error policy: an ObservationError halts the source and lands in
_on_observation_error, which records and logs it. The source stays
failed (health reports it) until someone calls restart(). Nothing here
retries on its own.
"""

from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockticker.changes.mapping import FieldMapper
from stockticker.changes.snapshot import SnapshotReader
from stockticker.changes.sources import (
    ChangeSource,
    PgNotifyChangeSource,
    PollingChangeSource,
)
from stockticker.changes.types import Record, snapshot_message
from stockticker.config import Settings
from stockticker.exceptions import ObservationError
from stockticker.realtime.dispatcher import ChangeDispatcher
from stockticker.realtime.registry import Subscriber, SubscriberRegistry

logger = structlog.get_logger()


class StockTicker:
    """Owns the change source, dispatcher, subscriber registry and snapshot reader."""

    def __init__(
        self,
        source: ChangeSource,
        reader: SnapshotReader,
        registry: Optional[SubscriberRegistry] = None,
        on_error: Optional[Callable[[ObservationError], None]] = None,
        queue_size: int = 100,
    ):
        self.source = source
        self.reader = reader
        self.registry = registry if registry is not None else SubscriberRegistry()
        self.dispatcher = ChangeDispatcher(self.registry, queue_size=queue_size)
        self.dispatcher.attach(source)
        self.dispatcher.set_error_handler(self._on_observation_error)
        self.last_error: Optional[ObservationError] = None
        self._on_error = on_error

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        **kwargs,
    ) -> "StockTicker":
        """Build a ticker from configuration (the composition root's shortcut)."""
        mapper = FieldMapper(config.field_mapping, identifier=config.identifier_field)
        reader = SnapshotReader(session_factory, config.table_name, mapper)
        source: ChangeSource
        if config.change_source == "poll":
            source = PollingChangeSource(reader, interval=config.poll_interval)
        else:
            source = PgNotifyChangeSource(
                config.asyncpg_dsn,
                channel=config.notify_channel,
                mapper=mapper,
                table=config.table_name,
            )
        registry = SubscriberRegistry(send_timeout=config.send_timeout)
        kwargs.setdefault("queue_size", config.subscriber_queue_size)
        return cls(source, reader, registry, **kwargs)

    # ─── Lifecycle ────────────────────────────────────────

    async def start(self) -> None:
        """Start broadcasting, then start observing. Raises ObservationError."""
        await self.dispatcher.start()
        try:
            await self.source.start()
        except ObservationError:
            await self.dispatcher.close()
            raise
        logger.info("ticker.started", source=self.source.name)

    async def stop(self) -> None:
        """Stop observing first so no event arrives after broadcasting stops."""
        await self.source.stop()
        await self.dispatcher.close()
        logger.info("ticker.stopped", source=self.source.name)

    async def restart(self) -> None:
        """Recover a failed source: stop() then start()."""
        await self.stop()
        self.last_error = None
        await self.start()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # ─── Snapshot + subscribers ───────────────────────────

    async def get_all_stocks(self) -> list[Record]:
        """Every stock, right now. Raises SnapshotError."""
        return await self.reader.read_all()

    async def connect(self, subscriber: Subscriber) -> list[Record]:
        """Send a subscriber the current table, then start sending it changes.

        Raises SnapshotError (and doesn't register) if the table can't be read.
        """
        stocks = await self.reader.read_all()
        await subscriber.send(snapshot_message(stocks))
        self.registry.add(subscriber)
        return stocks

    def disconnect(self, subscriber: Subscriber) -> None:
        self.registry.remove(subscriber)

    # ─── Status ───────────────────────────────────────────

    def get_stats(self) -> dict:
        return {
            "source": self.source.name,
            "state": self.source.state,
            **self.dispatcher.get_stats(),
        }

    def _on_observation_error(self, error: ObservationError) -> None:
        """Fatal-and-halt: remember the error, leave the source stopped."""
        self.last_error = error
        logger.error(
            "ticker.observation_failed",
            source=self.source.name,
            error=str(error),
        )
        if self._on_error is not None:
            self._on_error(error)
