"""API route aggregation.

All routers registered here get mounted in main.py. The WebSocket route
lives in realtime/websocket.py and is mounted separately (no /api prefix).
"""

from fastapi import APIRouter

from stockticker.api.health import router as health_router
from stockticker.api.stocks import router as stocks_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(stocks_router, tags=["stocks"])
