"""Snapshot reader — the whole observed table, right now.

Learn: a new subscriber needs the current state before incremental
events make sense (an "update MSFT" message is useless to a client that
has never seen MSFT). The WebSocket handler calls read_all() once per
connection; the polling change source calls it every tick and diffs.

There's no transactional link between a snapshot and the event stream —
a change committed between the SELECT and the subscriber registering
can be missed. Acceptable for a ticker: the next change to that row
repairs it.
"""

import structlog
from sqlalchemy import literal_column, select, table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockticker.changes.mapping import FieldMapper
from stockticker.changes.types import Record
from stockticker.exceptions import SnapshotError

logger = structlog.get_logger()


class SnapshotReader:
    """Reads every row of one table through SQLAlchemy."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        table_name: str,
        mapper: FieldMapper,
    ):
        self.session_factory = session_factory
        self.table_name = table_name
        self.mapper = mapper

    async def read_all(self) -> list[Record]:
        """Point-in-time read of the full table.

        Raises SnapshotError if the query fails. Rows sharing an
        identifier collapse to the last one read, so the result is
        duplicate-free even on a table without a primary key.
        """
        query = select(literal_column("*")).select_from(table(self.table_name))
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                rows = [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            logger.warning("snapshot.failed", table=self.table_name, error=str(e))
            raise SnapshotError(f"could not read {self.table_name}: {e}") from e

        records: dict[str, Record] = {}
        for row in rows:
            try:
                record = self.mapper.to_record(row)
            except ValueError as e:
                raise SnapshotError(str(e)) from e
            records[record.identifier] = record

        logger.debug("snapshot.read", table=self.table_name, rows=len(records))
        return list(records.values())
