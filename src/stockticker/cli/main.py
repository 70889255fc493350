"""Stock Ticker CLI — run the server, watch changes, inspect prices.

Usage:
    stockticker serve                    # Run the API + WebSocket server
    stockticker watch                    # Print every change as it happens
    stockticker watch --source poll      # ...using the polling source
    stockticker snapshot                 # Current table, read from the database
    stockticker prices                   # Current table, from a running server
    stockticker stats                    # Dispatcher counters of a running server

`watch` and `snapshot` talk to the database directly (STOCKTICKER_DATABASE_URL);
`prices` and `stats` go through the HTTP API (STOCKTICKER_API_URL).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
from typing import Optional

import click
import httpx
import structlog

from stockticker import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("STOCKTICKER_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the ticker server."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=10.0)


def _configure_logging(level: int = logging.INFO):
    """Send structlog through stdlib logging on stderr.

    stdout is for command output only (`snapshot --json` gets piped).
    """
    logging.basicConfig(
        stream=sys.stderr,
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _print_table(rows: list[dict]):
    """Print rows as a simple ASCII table, one column per attribute."""
    if not rows:
        click.echo("(no rows)")
        return
    columns = list(rows[0])
    widths = {
        c: max(len(c), *(len(str(r.get(c, ""))) for r in rows)) for c in columns
    }
    header = "  ".join(c.ljust(widths[c]) for c in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        click.echo("  ".join(str(row.get(c, "—")).ljust(widths[c]) for c in columns))


_OPERATION_COLORS = {
    "stock.insert": "green",
    "stock.update": "yellow",
    "stock.delete": "red",
}


def _format_change(message: dict) -> str:
    entity = message.get("entity") or {}
    fields = "  ".join(f"{k}={v}" for k, v in entity.items())
    return f"{message['operation'].upper():<7} {fields}"


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="stockticker")
def main():
    """Stock Ticker — live stock prices pushed from the database to browsers."""
    _configure_logging()


# ---------------------------------------------------------------------------
# stockticker serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: STOCKTICKER_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: STOCKTICKER_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes (development)")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API and WebSocket server."""
    import uvicorn

    from stockticker.config import settings

    uvicorn.run(
        "stockticker.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# stockticker watch
# ---------------------------------------------------------------------------


@main.command()
@click.option(
    "--source",
    type=click.Choice(["notify", "poll"]),
    default=None,
    help="Change source (default: STOCKTICKER_CHANGE_SOURCE)",
)
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON messages")
def watch(source: Optional[str], as_json: bool):
    """Print every stock change until interrupted."""
    asyncio.run(_watch_impl(source, as_json))


async def _watch_impl(
    source: Optional[str], as_json: bool, done: Optional[asyncio.Event] = None
):
    from stockticker.config import settings
    from stockticker.db.engine import build_engine, build_session_factory
    from stockticker.exceptions import ObservationError, SnapshotError
    from stockticker.realtime.registry import QueueSubscriber
    from stockticker.services.ticker import StockTicker

    config = settings.model_copy(update={"change_source": source}) if source else settings
    engine = build_engine(config.database_url)
    if done is None:
        done = asyncio.Event()

    def on_error(error: ObservationError):
        click.secho(f"Change source failed: {error}", fg="red", err=True)
        done.set()

    ticker = StockTicker.from_settings(
        config, build_session_factory(engine), on_error=on_error
    )
    subscriber = QueueSubscriber()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, done.set)

    try:
        async with ticker:
            stocks = await ticker.connect(subscriber)
            click.echo(
                f"Watching {config.table_name} ({len(stocks)} rows, "
                f"source={ticker.source.name}). Ctrl-C to stop."
            )
            await subscriber.queue.get()  # the snapshot message
            while not done.is_set():
                getter = asyncio.ensure_future(subscriber.queue.get())
                stopper = asyncio.ensure_future(done.wait())
                finished, pending = await asyncio.wait(
                    [getter, stopper], return_when=asyncio.FIRST_COMPLETED
                )
                for task in pending:
                    task.cancel()
                if getter in finished:
                    message = getter.result()
                    if as_json:
                        click.echo(json.dumps(message))
                    else:
                        click.secho(
                            _format_change(message),
                            fg=_OPERATION_COLORS.get(message["type"], "white"),
                        )
    except ObservationError as e:
        click.secho(f"Could not start change source: {e}", fg="red", err=True)
        sys.exit(1)
    except SnapshotError as e:
        click.secho(f"Could not read {config.table_name}: {e}", fg="red", err=True)
        sys.exit(1)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await engine.dispose()


# ---------------------------------------------------------------------------
# stockticker snapshot
# ---------------------------------------------------------------------------


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
def snapshot(as_json: bool):
    """Read the current table straight from the database."""
    asyncio.run(_snapshot_impl(as_json))


async def _snapshot_impl(as_json: bool):
    from stockticker.changes.mapping import FieldMapper
    from stockticker.changes.snapshot import SnapshotReader
    from stockticker.config import settings
    from stockticker.db.engine import build_engine, build_session_factory
    from stockticker.exceptions import SnapshotError

    engine = build_engine(settings.database_url)
    mapper = FieldMapper(settings.field_mapping, identifier=settings.identifier_field)
    reader = SnapshotReader(build_session_factory(engine), settings.table_name, mapper)
    try:
        records = await reader.read_all()
    except SnapshotError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    finally:
        await engine.dispose()

    rows = [r.to_jsonable() for r in records]
    if as_json:
        click.echo(json.dumps(rows, indent=2))
    else:
        _print_table(rows)


# ---------------------------------------------------------------------------
# stockticker prices / stats (via the HTTP API)
# ---------------------------------------------------------------------------


@main.command()
def prices():
    """Current prices from a running server."""
    asyncio.run(_prices_impl())


async def _prices_impl():
    async with _client() as c:
        try:
            r = await c.get("/api/v1/stocks")
            r.raise_for_status()
        except httpx.HTTPError as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            sys.exit(1)
    _print_table(r.json())


@main.command()
def stats():
    """Dispatcher statistics from a running server."""
    asyncio.run(_stats_impl())


async def _stats_impl():
    async with _client() as c:
        try:
            r = await c.get("/api/v1/ticker/stats")
            r.raise_for_status()
        except httpx.HTTPError as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            sys.exit(1)
    data = r.json()
    state = data.get("state", "unknown")
    click.secho(f"Source: {data.get('source')} ({state})",
                fg="green" if state == "running" else "red", bold=True)
    for key in ("observed", "dispatched", "ignored", "rejected", "delivered", "dropped",
                "errors", "subscribers", "in_flight", "started_at", "last_error"):
        click.echo(f"  {key:<12} {data.get(key)}")


if __name__ == "__main__":
    main()
