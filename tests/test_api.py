"""HTTP API tests — stocks snapshot, stats, health.

Learn: ASGITransport doesn't run the app lifespan, so the fixture builds
the ticker itself (SQLite-backed reader, polling source), starts it, and
hands it to create_app() the way the lifespan would.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from stockticker.changes.sources import PollingChangeSource
from stockticker.config import Settings
from stockticker.main import create_app
from stockticker.services.ticker import StockTicker


@pytest_asyncio.fixture()
async def ticker(snapshot_reader):
    ticker = StockTicker(PollingChangeSource(snapshot_reader, interval=0.05), snapshot_reader)
    async with ticker:
        yield ticker


@pytest_asyncio.fixture()
async def client(ticker, sqlite_engine):
    app = create_app(config=Settings(), ticker=ticker, engine=sqlite_engine)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_list_stocks(client):
    """GET /stocks returns the full table in client-facing names."""
    r = await client.get("/api/v1/stocks")
    assert r.status_code == 200
    stocks = sorted(r.json(), key=lambda s: s["Symbol"])
    assert stocks == [
        {"Symbol": "GOOG", "Name": "Alphabet", "Price": 140.5},
        {"Symbol": "MSFT", "Name": "Microsoft", "Price": 100.0},
    ]


@pytest.mark.asyncio
async def test_get_one_stock(client):
    r = await client.get("/api/v1/stocks/MSFT")
    assert r.status_code == 200
    assert r.json()["Name"] == "Microsoft"


@pytest.mark.asyncio
async def test_get_unknown_stock(client):
    r = await client.get("/api/v1/stocks/NOPE")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_stocks_unavailable_when_snapshot_fails(client, ticker):
    ticker.reader.table_name = "missing_table"
    r = await client.get("/api/v1/stocks")
    assert r.status_code == 503


@pytest.mark.asyncio
async def test_ticker_stats(client):
    r = await client.get("/api/v1/ticker/stats")
    assert r.status_code == 200
    stats = r.json()
    assert stats["source"] == "poll"
    assert stats["state"] == "running"
    assert stats["observed"] == 0
    assert stats["subscribers"] == 0


@pytest.mark.asyncio
async def test_health_ok(client):
    r = await client.get("/api/v1/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert data["change_source"] == "ok"
    assert "version" in data


@pytest.mark.asyncio
async def test_health_degraded_when_source_stopped(client, ticker):
    await ticker.source.stop()
    r = await client.get("/api/v1/health")
    data = r.json()
    assert data["status"] == "degraded"
    assert data["change_source"] == "stopped"


@pytest.mark.asyncio
async def test_no_ticker_means_503():
    app = create_app(config=Settings())
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        r = await ac.get("/api/v1/stocks")
    assert r.status_code == 503
