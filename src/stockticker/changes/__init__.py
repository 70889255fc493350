"""Change detection — turning table mutations into ChangeEvents.

Learn: the pieces, bottom-up:
1. types.py    — ChangeType, ChangeEvent, Record (immutable values)
2. mapping.py  — FieldMapper, source columns -> client-facing attribute names
3. snapshot.py — SnapshotReader, the full table at a point in time
4. sources.py  — ChangeSource implementations (PG NOTIFY push, or polling)

Nothing here knows about WebSockets. The realtime package consumes the
events these produce.
"""

from stockticker.changes.mapping import FieldMapper
from stockticker.changes.types import ChangeEvent, ChangeType, Record

__all__ = ["ChangeEvent", "ChangeType", "FieldMapper", "Record"]
