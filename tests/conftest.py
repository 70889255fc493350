"""Test fixtures — fake store, fake LISTEN connection, throwaway SQLite DB.

Learn: Nothing here needs a running PostgreSQL. The snapshot reader is
tested against SQLite (aiosqlite), the NOTIFY source against a fake
asyncpg connection patched in for asyncpg.connect, and everything above
that against FakeReader, an in-memory stocks table.
"""

from decimal import Decimal

import asyncpg
import pytest
import pytest_asyncio

from helpers import FakePgConnection, FakeReader, stock_mapper
from stockticker.changes.snapshot import SnapshotReader
from stockticker.db.engine import build_engine, build_session_factory
from stockticker.db.models import Base, Stock


@pytest.fixture()
def mapper():
    return stock_mapper()


@pytest.fixture()
def reader():
    """Two-row in-memory stocks table."""
    return FakeReader([
        {"code": "MSFT", "name": "Microsoft", "price": Decimal("100.00")},
        {"code": "AAPL", "name": "Apple", "price": Decimal("180.00")},
    ])


@pytest.fixture()
def pg_connection(monkeypatch):
    """Patch asyncpg.connect to hand out one FakePgConnection.

    The test gets the connection to push notifications through it.
    """
    conn = FakePgConnection()
    connects = []

    async def fake_connect(dsn, *args, **kwargs):
        connects.append(dsn)
        return conn

    monkeypatch.setattr(asyncpg, "connect", fake_connect)
    conn.connects = connects
    return conn


@pytest_asyncio.fixture()
async def sqlite_engine(tmp_path):
    """File-backed SQLite DB with the stocks table and two quotes."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'stocks.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = build_session_factory(engine)
    async with session_factory() as session:
        session.add_all([
            Stock(code="MSFT", name="Microsoft", price=Decimal("100.00")),
            Stock(code="GOOG", name="Alphabet", price=Decimal("140.50")),
        ])
        await session.commit()

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def snapshot_reader(sqlite_engine, mapper):
    return SnapshotReader(build_session_factory(sqlite_engine), "stocks", mapper)
