"""Value types for row changes.

Learn: ChangeEvent and Record are frozen dataclasses, and the mappings
inside them are wrapped in MappingProxyType. Once an event is built it
can be handed to any number of subscribers without anyone being able to
mutate what the others see.
"""

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping, Optional

from pydantic_core import to_jsonable_python

# ─── Message types sent to clients ───────────────────────

STOCK_INSERTED = "stock.insert"
STOCK_UPDATED = "stock.update"
STOCK_DELETED = "stock.delete"
STOCK_SNAPSHOT = "stock.snapshot"


class ChangeType(str, enum.Enum):
    """Kind of mutation observed on a row."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    NONE = "none"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ChangeType":
        """Parse a trigger op (``TG_OP``) or our own value; unknown -> NONE."""
        if not value:
            return cls.NONE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.NONE


def _jsonable(values: Mapping[str, Any]) -> dict[str, Any]:
    """JSON-ready copy of a row. Decimal prices go out as numbers, not strings."""
    return to_jsonable_python(
        {k: float(v) if isinstance(v, Decimal) else v for k, v in values.items()}
    )


def _frozen(values: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    if values is None:
        return None
    return MappingProxyType(dict(values))


@dataclass(frozen=True)
class ChangeEvent:
    """One committed mutation, in domain attribute names.

    For DELETE, ``entity`` holds the row as it was just before deletion.
    ``previous_entity`` is set for UPDATE (and DELETE when known).
    """

    operation: ChangeType
    entity: Mapping[str, Any] = field(default_factory=dict)
    previous_entity: Optional[Mapping[str, Any]] = None
    table: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "operation", ChangeType.parse(self.operation))
        object.__setattr__(self, "entity", _frozen(self.entity))
        object.__setattr__(self, "previous_entity", _frozen(self.previous_entity))

    @property
    def is_noop(self) -> bool:
        return self.operation is ChangeType.NONE

    @property
    def message_type(self) -> str:
        return f"stock.{self.operation.value}"

    def to_message(self) -> dict[str, Any]:
        """Serialize to the JSON-ready message sent to subscribers."""
        return {
            "type": self.message_type,
            "operation": self.operation.value,
            "entity": _jsonable(self.entity),
            "previous": (
                _jsonable(self.previous_entity)
                if self.previous_entity is not None
                else None
            ),
        }


@dataclass(frozen=True)
class Record:
    """A row of the observed table, keyed by its identifier."""

    identifier: str
    fields: Mapping[str, Any]

    def __post_init__(self):
        object.__setattr__(self, "fields", _frozen(self.fields))

    def as_dict(self) -> dict[str, Any]:
        return dict(self.fields)

    def to_jsonable(self) -> dict[str, Any]:
        return _jsonable(self.fields)


def snapshot_message(records: list[Record]) -> dict[str, Any]:
    """Build the message a new subscriber gets before any incremental event."""
    return {
        "type": STOCK_SNAPSHOT,
        "stocks": [r.to_jsonable() for r in records],
    }
