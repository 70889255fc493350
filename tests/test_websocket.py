"""WebSocket endpoint tests — snapshot on connect, live changes, commands.

Learn: starlette's TestClient runs the app (and its lifespan) in a
background event loop. The ticker uses a polling source over FakeReader,
so the test thread changes a row in the fake table and the next poll
picks it up and pushes it to the socket.
"""

import time
from decimal import Decimal

import pytest
from starlette.testclient import TestClient

from helpers import FakeReader
from stockticker.changes.sources import PollingChangeSource
from stockticker.config import Settings
from stockticker.main import create_app
from stockticker.services.ticker import StockTicker


@pytest.fixture()
def store():
    return FakeReader([
        {"code": "MSFT", "name": "Microsoft", "price": Decimal("100.00")},
        {"code": "AAPL", "name": "Apple", "price": Decimal("180.00")},
    ])


@pytest.fixture()
def ticker(store):
    return StockTicker(PollingChangeSource(store, interval=0.02), store)


@pytest.fixture()
def client(ticker):
    app = create_app(config=Settings(), ticker=ticker)
    with TestClient(app) as c:
        yield c


def test_snapshot_on_connect(client):
    with client.websocket_connect("/ws/stocks") as ws:
        message = ws.receive_json()
    assert message["type"] == "stock.snapshot"
    assert sorted(s["Symbol"] for s in message["stocks"]) == ["AAPL", "MSFT"]


def test_price_update_is_pushed(client, store):
    """Row MSFT 100 → 101 reaches the connected client as stock.update."""
    with client.websocket_connect("/ws/stocks") as ws:
        ws.receive_json()  # snapshot
        store.upsert("MSFT", "Microsoft", Decimal("101.00"))
        message = ws.receive_json()

    assert message == {
        "type": "stock.update",
        "operation": "update",
        "entity": {"Symbol": "MSFT", "Name": "Microsoft", "Price": 101.0},
        "previous": {"Symbol": "MSFT", "Name": "Microsoft", "Price": 100.0},
    }


def test_insert_and_delete_are_pushed(client, store):
    with client.websocket_connect("/ws/stocks") as ws:
        ws.receive_json()
        store.upsert("IBM", "IBM", Decimal("50.00"))
        inserted = ws.receive_json()
        store.delete("AAPL")
        deleted = ws.receive_json()

    assert inserted["type"] == "stock.insert"
    assert inserted["entity"]["Symbol"] == "IBM"
    assert deleted["type"] == "stock.delete"
    assert deleted["entity"]["Symbol"] == "AAPL"


def test_every_client_gets_the_update(client, store):
    with client.websocket_connect("/ws/stocks") as first:
        with client.websocket_connect("/ws/stocks") as second:
            first.receive_json()
            second.receive_json()
            store.upsert("AAPL", "Apple", Decimal("181.00"))
            assert first.receive_json()["entity"]["Price"] == 181.0
            assert second.receive_json()["entity"]["Price"] == 181.0


def test_ping_pong(client):
    with client.websocket_connect("/ws/stocks") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_get_all_stocks_command(client, store):
    with client.websocket_connect("/ws/stocks") as ws:
        ws.receive_json()
        ws.send_json({"type": "get_all_stocks"})
        message = ws.receive_json()
    assert message["type"] == "stock.snapshot"
    assert len(message["stocks"]) == 2


def test_disconnect_unregisters(client, ticker):
    with client.websocket_connect("/ws/stocks") as ws:
        ws.receive_json()
        # A round trip guarantees the handler registered the subscriber
        ws.send_json({"type": "ping"})
        ws.receive_json()
        assert len(ticker.registry) == 1

    # The handler runs its cleanup on the server loop, after the close
    deadline = time.monotonic() + 2.0
    while len(ticker.registry) and time.monotonic() < deadline:
        time.sleep(0.01)
    assert len(ticker.registry) == 0


def test_snapshot_failure_closes_socket(client, store):
    from starlette.websockets import WebSocketDisconnect

    store.fail = True
    with client.websocket_connect("/ws/stocks") as ws:
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 1011
