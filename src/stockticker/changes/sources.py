"""Change sources — observe a table, emit one ChangeEvent per mutation.

Learn: two ways to find out that a row changed:

1. PgNotifyChangeSource — push. A row trigger (see the
   a84e5c61f2d3 migration) calls pg_notify on every committed
   INSERT/UPDATE/DELETE; we LISTEN on a dedicated asyncpg connection.
   Latency is milliseconds, cost is one idle connection.
2. PollingChangeSource — pull. Read the whole table every N seconds and
   diff against the last read. Works on any database SQLAlchemy can talk
   to, at the price of latency and a full scan per tick.

Both share the same lifecycle, in ChangeSource:
- start() opens resources and spawns the observation task, then returns.
  Calling it again while running is a no-op.
- The observation task calls the change handler sequentially, one event
  at a time, in the order the store reported them.
- stop() cancels the task and closes the connection before returning.
  After it returns the handler is never called again. Stopping a source
  that never started does nothing.
- An ObservationError (connect failure, lost connection) halts the loop
  and goes to the error handler. The source stays failed until the caller
  does stop() + start(); there is no automatic retry in here.
"""

import asyncio
import json
from contextlib import suppress
from decimal import Decimal
from typing import Callable, Optional

import asyncpg
import structlog

from stockticker.changes.mapping import FieldMapper
from stockticker.changes.snapshot import SnapshotReader
from stockticker.changes.types import ChangeEvent, ChangeType, Record
from stockticker.exceptions import ObservationError, SnapshotError

logger = structlog.get_logger()

ChangeHandler = Callable[[ChangeEvent], None]
ErrorHandler = Callable[[ObservationError], None]


class ChangeSource:
    """Base lifecycle shared by every change source.

    Subclasses implement _open() (acquire resources, raise
    ObservationError on failure), _run() (the observation loop, calling
    _emit / _fail), and _close() (release resources).
    """

    name = "base"

    def __init__(self):
        self._change_handler: Optional[ChangeHandler] = None
        self._error_handler: Optional[ErrorHandler] = None
        self._task: Optional[asyncio.Task] = None
        self._lifecycle = asyncio.Lock()
        self._running = False
        self._failed = False

    # ─── Handler registration ─────────────────────────────

    def set_change_handler(self, handler: ChangeHandler) -> None:
        self._change_handler = handler

    def set_error_handler(self, handler: ErrorHandler) -> None:
        self._error_handler = handler

    @property
    def running(self) -> bool:
        return self._running

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def state(self) -> str:
        if self._running:
            return "running"
        return "failed" if self._failed else "stopped"

    # ─── Lifecycle ────────────────────────────────────────

    async def start(self) -> None:
        """Begin observing. Returns once the observation task is running."""
        async with self._lifecycle:
            if self._running:
                return
            if self._failed:
                raise ObservationError(
                    f"{self.name} source has failed; stop() it before restarting"
                )
            try:
                await self._open()
            except ObservationError:
                await self._close()
                raise
            self._running = True
            self._task = asyncio.create_task(
                self._run(), name=f"change-source-{self.name}"
            )
            logger.info("change_source.started", source=self.name)

    async def stop(self) -> None:
        """Stop observing and release resources. Safe to call repeatedly."""
        async with self._lifecycle:
            task, self._task = self._task, None
            was_active = self._running or self._failed or task is not None
            self._running = False
            self._failed = False
            if task is not None and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
            await self._close()
            if was_active:
                logger.info("change_source.stopped", source=self.name)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # ─── Called from the observation task ─────────────────

    def _emit(self, event: ChangeEvent) -> None:
        if not self._running or self._change_handler is None:
            return
        try:
            self._change_handler(event)
        except Exception:
            logger.exception(
                "change_source.handler_failed",
                source=self.name,
                operation=event.operation.value,
            )

    def _fail(self, error: ObservationError) -> None:
        """Halt observation and report the error. Resources stay held until stop()."""
        self._running = False
        self._failed = True
        logger.error("change_source.failed", source=self.name, error=str(error))
        if self._error_handler is None:
            return
        try:
            self._error_handler(error)
        except Exception:
            logger.exception("change_source.error_handler_failed", source=self.name)

    # ─── Subclass hooks ───────────────────────────────────

    async def _open(self) -> None:
        raise NotImplementedError

    async def _run(self) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        raise NotImplementedError


# ─── PostgreSQL LISTEN/NOTIFY ─────────────────────────────


class PgNotifyChangeSource(ChangeSource):
    """Push-based source: LISTEN on the channel fed by the row trigger.

    Learn: asyncpg delivers notifications through a synchronous callback
    on the event loop. We only parse and enqueue there; a dedicated
    consumer task drains the queue and calls the change handler, so the
    handler never runs inside asyncpg's protocol code and events keep
    their commit order. A dropped connection is pushed through the same
    queue, so it's reported after every event that arrived before it.
    """

    name = "notify"

    def __init__(
        self,
        dsn: str,
        channel: str,
        mapper: FieldMapper,
        table: Optional[str] = None,
    ):
        super().__init__()
        self.dsn = dsn
        self.channel = channel
        self.mapper = mapper
        self.table = table
        self._conn: Optional[asyncpg.Connection] = None
        self._queue: asyncio.Queue = asyncio.Queue()

    async def _open(self) -> None:
        self._queue = asyncio.Queue()
        try:
            self._conn = await asyncpg.connect(self.dsn)
            await self._conn.add_listener(self.channel, self._on_notify)
        except Exception as e:
            raise ObservationError(f"could not LISTEN on {self.channel!r}: {e}") from e
        self._conn.add_termination_listener(self._on_terminated)

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            if isinstance(item, ObservationError):
                self._fail(item)
                return
            self._emit(item)

    async def _close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        # Closing the connection drops the LISTEN with it
        conn.remove_termination_listener(self._on_terminated)
        await conn.close()

    # ─── asyncpg callbacks (sync, on the event loop) ──────

    def _on_notify(self, conn, pid, channel, payload):
        event = self.parse_payload(payload)
        if event is not None:
            self._queue.put_nowait(event)

    def _on_terminated(self, conn):
        self._queue.put_nowait(
            ObservationError(f"connection listening on {self.channel!r} was terminated")
        )

    def parse_payload(self, payload: str) -> Optional[ChangeEvent]:
        """Turn a trigger payload into a ChangeEvent in domain names.

        Payload shape: {"op": "UPDATE", "table": "stocks", "new": {...},
        "old": {...}}. Notifications for other tables, and payloads we
        can't read, yield None.
        """
        try:
            data = json.loads(payload, parse_float=Decimal)
        except (TypeError, json.JSONDecodeError):
            logger.warning("change_source.bad_payload", source=self.name, payload=payload)
            return None
        if not isinstance(data, dict):
            logger.warning("change_source.bad_payload", source=self.name, payload=payload)
            return None

        table = data.get("table")
        if self.table and table and table != self.table:
            return None

        operation = ChangeType.parse(data.get("op"))
        new = data.get("new") or None
        old = data.get("old") or None

        if operation is ChangeType.DELETE:
            entity, previous = old, old
        elif operation is ChangeType.INSERT:
            entity, previous = new, None
        else:
            entity, previous = new or old, old

        return ChangeEvent(
            operation=operation,
            entity=self.mapper.to_domain(entity or {}),
            previous_entity=self.mapper.to_domain(previous) if previous else None,
            table=table,
        )


# ─── Polling ──────────────────────────────────────────────


def diff_snapshots(
    before: dict[str, Record], after: list[Record]
) -> list[ChangeEvent]:
    """Events that turn ``before`` into ``after``.

    Inserts and updates come in ``after`` order, deletes last. Rows whose
    fields didn't change produce nothing.
    """
    events = []
    seen = set()
    for record in after:
        seen.add(record.identifier)
        old = before.get(record.identifier)
        if old is None:
            events.append(ChangeEvent(ChangeType.INSERT, record.fields))
        elif old.fields != record.fields:
            events.append(ChangeEvent(ChangeType.UPDATE, record.fields, old.fields))
    for identifier, old in before.items():
        if identifier not in seen:
            events.append(ChangeEvent(ChangeType.DELETE, old.fields, old.fields))
    return events


class PollingChangeSource(ChangeSource):
    """Pull-based source: snapshot every ``interval`` seconds and diff.

    Learn: the first read happens in start() and only sets the baseline —
    rows that already exist are not reported as inserts. If that read
    fails, start() raises ObservationError. A failed read later on halts
    the loop like a dropped LISTEN connection would.

    Several changes to one row between two polls collapse into one event,
    and an insert followed by a delete within a tick is never seen.
    """

    name = "poll"

    def __init__(self, reader: SnapshotReader, interval: float = 1.0):
        super().__init__()
        if interval <= 0:
            raise ValueError("poll interval must be positive")
        self.reader = reader
        self.interval = interval
        self._known: dict[str, Record] = {}

    async def _open(self) -> None:
        try:
            records = await self.reader.read_all()
        except SnapshotError as e:
            raise ObservationError(f"initial poll failed: {e}") from e
        self._known = {r.identifier: r for r in records}

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                records = await self.reader.read_all()
            except SnapshotError as e:
                self._fail(ObservationError(f"poll failed: {e}"))
                return
            for event in diff_snapshots(self._known, records):
                self._emit(event)
            self._known = {r.identifier: r for r in records}

    async def _close(self) -> None:
        self._known = {}
