"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running, the
database answers, and the change source is still observing. A failed
source makes the service "degraded": clients still get snapshots but
no live updates.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from stockticker import __version__
from stockticker.api.dependencies import get_engine, get_ticker
from stockticker.services.ticker import StockTicker

router = APIRouter()


@router.get("/health")
async def health_check(
    ticker: StockTicker = Depends(get_ticker),
    engine: AsyncEngine | None = Depends(get_engine),
):
    """Check server health, database connectivity and change source state."""
    checks = {"server": "ok", "version": __version__}

    # Check the database
    if engine is None:
        checks["database"] = "error: no engine"
    else:
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {e}"

    # Check the change source
    state = ticker.source.state
    checks["change_source"] = "ok" if state == "running" else state
    if ticker.last_error is not None:
        checks["last_error"] = str(ticker.last_error)

    status = "healthy" if (
        checks["database"] == "ok" and checks["change_source"] == "ok"
    ) else "degraded"

    return {"status": status, **checks}
