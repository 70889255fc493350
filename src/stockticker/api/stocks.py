"""Stocks API — the full table on demand, plus ticker statistics.

Learn: GET /stocks is the HTTP twin of the snapshot a WebSocket client
gets on connect. Useful for clients that only want the current prices,
and for checking what a subscriber should be seeing.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from stockticker.api.dependencies import get_ticker
from stockticker.exceptions import SnapshotError
from stockticker.schemas.ticker import TickerStats
from stockticker.services.ticker import StockTicker

router = APIRouter()


@router.get("/stocks")
async def list_stocks(
    ticker: StockTicker = Depends(get_ticker),
) -> list[dict[str, Any]]:
    """Every stock, with attribute names from the field mapping."""
    try:
        stocks = await ticker.get_all_stocks()
    except SnapshotError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [stock.to_jsonable() for stock in stocks]


@router.get("/stocks/{symbol}")
async def get_stock(
    symbol: str,
    ticker: StockTicker = Depends(get_ticker),
) -> dict[str, Any]:
    """One stock by identifier."""
    try:
        stocks = await ticker.get_all_stocks()
    except SnapshotError as e:
        raise HTTPException(status_code=503, detail=str(e))
    for stock in stocks:
        if stock.identifier == symbol:
            return stock.to_jsonable()
    raise HTTPException(status_code=404, detail=f"Stock {symbol} not found")


@router.get("/ticker/stats", response_model=TickerStats)
async def ticker_stats(ticker: StockTicker = Depends(get_ticker)):
    """Dispatcher counters and change source state."""
    return ticker.get_stats()
