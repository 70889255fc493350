"""Test doubles for the store side of the ticker.

Learn: the core talks to two outside things — an asyncpg connection (for
LISTEN) and a snapshot reader (for full reads). Both are small interfaces,
so the fakes here stand in for them and let tests drive changes by hand.
"""

import asyncio
import json

from stockticker.changes.mapping import FieldMapper
from stockticker.exceptions import SnapshotError

STOCK_MAPPING = {"code": "Symbol", "name": "Name", "price": "Price"}


def stock_mapper() -> FieldMapper:
    return FieldMapper(STOCK_MAPPING, identifier="Symbol")


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll ``predicate`` until it's true, or fail the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


class FakeReader:
    """In-memory stocks table with the SnapshotReader interface."""

    def __init__(self, rows=None):
        self.mapper = stock_mapper()
        self.rows = {row["code"]: dict(row) for row in rows or []}
        self.fail = False
        self.reads = 0

    async def read_all(self):
        self.reads += 1
        if self.fail:
            raise SnapshotError("store unavailable")
        return [self.mapper.to_record(row) for row in list(self.rows.values())]

    def upsert(self, code, name, price):
        self.rows[code] = {"code": code, "name": name, "price": price}

    def delete(self, code):
        self.rows.pop(code, None)


class FakePgConnection:
    """Just enough of asyncpg.Connection for PgNotifyChangeSource."""

    def __init__(self):
        self.listeners = {}
        self.termination_listeners = []
        self.closed = False

    async def add_listener(self, channel, callback):
        self.listeners.setdefault(channel, []).append(callback)

    def add_termination_listener(self, callback):
        self.termination_listeners.append(callback)

    def remove_termination_listener(self, callback):
        if callback in self.termination_listeners:
            self.termination_listeners.remove(callback)

    async def close(self):
        self.closed = True
        self.listeners.clear()

    def notify(self, channel, payload):
        """Deliver a notification the way asyncpg does: sync callbacks."""
        if not isinstance(payload, str):
            payload = json.dumps(payload)
        for callback in list(self.listeners.get(channel, [])):
            callback(self, 4242, channel, payload)

    def terminate(self):
        self.closed = True
        for callback in list(self.termination_listeners):
            callback(self)


def stock_row(code, name, price):
    return {"code": code, "name": name, "price": price}


def trigger_payload(op, new=None, old=None, table="stocks"):
    """The JSON the notify_stock_change() trigger sends."""
    return {"op": op, "table": table, "new": new, "old": old}
