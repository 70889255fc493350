"""Column-to-attribute mapping.

Learn: the database speaks in column names (``code``, ``price``), clients
speak in attribute names (``Symbol``, ``Price``). The mapper is the only
place that knows both. Change sources and the snapshot reader run every
row through it, so everything past this point uses attribute names.

Columns missing from the mapping pass through unchanged.
"""

from typing import Any, Mapping

from stockticker.changes.types import Record


class FieldMapper:
    """Maps source column names to domain attribute names and back."""

    def __init__(self, mapping: Mapping[str, str], identifier: str):
        targets = list(mapping.values())
        if len(set(targets)) != len(targets):
            raise ValueError("field mapping has duplicate attribute names")
        if identifier not in targets:
            raise ValueError(f"identifier {identifier!r} is not a mapped attribute")
        self._to_domain = dict(mapping)
        self._to_source = {v: k for k, v in mapping.items()}
        self.identifier = identifier

    @property
    def identifier_column(self) -> str:
        return self._to_source[self.identifier]

    @property
    def columns(self) -> list[str]:
        return list(self._to_domain)

    def to_domain(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Rename a row's columns to attribute names."""
        return {self._to_domain.get(col, col): value for col, value in row.items()}

    def to_source(self, entity: Mapping[str, Any]) -> dict[str, Any]:
        """Rename an entity's attributes back to column names."""
        return {self._to_source.get(attr, attr): value for attr, value in entity.items()}

    def to_record(self, row: Mapping[str, Any]) -> Record:
        """Build a Record from a raw table row."""
        fields = self.to_domain(row)
        try:
            key = fields[self.identifier]
        except KeyError:
            raise ValueError(
                f"row has no {self.identifier_column!r} column: {sorted(row)}"
            ) from None
        return Record(identifier=str(key), fields=fields)
