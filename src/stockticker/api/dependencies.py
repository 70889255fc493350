"""FastAPI dependencies — hand the app's services to route handlers.

Learn: the lifespan in main.py builds the StockTicker and the database
engine and stores them on app.state. Handlers ask for them through these
dependencies instead of importing a global, so tests can build an app
around a ticker wired to fakes.

HTTPConnection (not Request) so the same dependency works for HTTP and
WebSocket routes.
"""

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.requests import HTTPConnection

from stockticker.services.ticker import StockTicker


def get_ticker(conn: HTTPConnection) -> StockTicker:
    ticker = getattr(conn.app.state, "ticker", None)
    if ticker is None:
        raise HTTPException(status_code=503, detail="Ticker not started")
    return ticker


def get_engine(conn: HTTPConnection) -> AsyncEngine | None:
    return getattr(conn.app.state, "engine", None)
