"""Stock Ticker — real-time broadcast of database row changes.

Watches the stocks table for inserts, updates and deletes, and fans each
change out to every connected WebSocket client so their tables stay live
without polling the API.
"""

__version__ = "0.1.0"
