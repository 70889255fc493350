"""WebSocket endpoint — live stock updates to browser clients.

Learn: Each client connects to /ws/stocks. The handler:
1. Sends the full table as a stock.snapshot message
2. Registers the connection as a subscriber — from here on the dispatcher
   pushes stock.insert / stock.update / stock.delete messages to it
3. Answers client messages: ping → pong, get_all_stocks → fresh snapshot
4. Unregisters on disconnect, whichever side closes first

Snapshot first, then register: the client never sees an update for a row
it doesn't have yet. The cost is a small window where a change committed
between the SELECT and add() is missed; the next change to that row
fixes it.

No authentication — the ticker is public data.
"""

import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from stockticker.api.dependencies import get_ticker
from stockticker.changes.types import snapshot_message
from stockticker.exceptions import SnapshotError
from stockticker.realtime.registry import Subscriber
from stockticker.services.ticker import StockTicker

logger = structlog.get_logger()
router = APIRouter()


class WebSocketSubscriber(Subscriber):
    """One browser connection."""

    kind = "ws"

    def __init__(self, websocket: WebSocket):
        super().__init__()
        self.websocket = websocket

    async def send(self, message: dict[str, Any]) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise RuntimeError("websocket is not connected")
        await self.websocket.send_json(message)


@router.websocket("/ws/stocks")
async def stocks_websocket(
    websocket: WebSocket,
    ticker: StockTicker = Depends(get_ticker),
):
    """WebSocket endpoint for real-time stock changes."""
    await websocket.accept()
    subscriber = WebSocketSubscriber(websocket)

    try:
        await ticker.connect(subscriber)
    except SnapshotError as e:
        logger.warning("ws.snapshot_failed", subscriber=subscriber.id, error=str(e))
        await websocket.close(code=1011, reason="Snapshot unavailable")
        return

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue

            if msg.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
            elif msg.get("type") == "get_all_stocks":
                try:
                    stocks = await ticker.get_all_stocks()
                except SnapshotError as e:
                    await websocket.send_json({"type": "error", "detail": str(e)})
                    continue
                await websocket.send_json(snapshot_message(stocks))
    except WebSocketDisconnect:
        pass
    finally:
        ticker.disconnect(subscriber)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
