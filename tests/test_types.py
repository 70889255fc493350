"""ChangeType, ChangeEvent and Record value semantics."""

from decimal import Decimal

import pytest

from stockticker.changes.types import (
    STOCK_SNAPSHOT,
    ChangeEvent,
    ChangeType,
    Record,
    snapshot_message,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("INSERT", ChangeType.INSERT),
        ("update", ChangeType.UPDATE),
        (" Delete ", ChangeType.DELETE),
        ("TRUNCATE", ChangeType.NONE),
        ("", ChangeType.NONE),
        (None, ChangeType.NONE),
        (ChangeType.UPDATE, ChangeType.UPDATE),
    ],
)
def test_change_type_parse(raw, expected):
    assert ChangeType.parse(raw) is expected


def test_change_event_is_immutable():
    """Neither the event nor the mappings inside it can be modified."""
    source = {"Symbol": "MSFT", "Price": 100}
    event = ChangeEvent(ChangeType.INSERT, source)

    source["Price"] = 999
    assert event.entity["Price"] == 100

    with pytest.raises(TypeError):
        event.entity["Price"] = 1
    with pytest.raises(AttributeError):
        event.operation = ChangeType.DELETE


def test_change_event_operation_accepts_strings():
    event = ChangeEvent("UPDATE", {"Symbol": "MSFT"})
    assert event.operation is ChangeType.UPDATE
    assert not event.is_noop
    assert ChangeEvent("bogus").is_noop


def test_to_message_serializes_decimals_as_numbers():
    event = ChangeEvent(
        ChangeType.UPDATE,
        {"Symbol": "MSFT", "Name": "Microsoft", "Price": Decimal("101.00")},
        {"Symbol": "MSFT", "Name": "Microsoft", "Price": Decimal("100.00")},
    )
    message = event.to_message()
    assert message == {
        "type": "stock.update",
        "operation": "update",
        "entity": {"Symbol": "MSFT", "Name": "Microsoft", "Price": 101.0},
        "previous": {"Symbol": "MSFT", "Name": "Microsoft", "Price": 100.0},
    }
    assert isinstance(message["entity"]["Price"], float)


def test_insert_message_has_no_previous():
    message = ChangeEvent(ChangeType.INSERT, {"Symbol": "IBM"}).to_message()
    assert message["type"] == "stock.insert"
    assert message["previous"] is None


def test_snapshot_message():
    records = [
        Record("MSFT", {"Symbol": "MSFT", "Price": Decimal("100.5")}),
        Record("AAPL", {"Symbol": "AAPL", "Price": Decimal("180")}),
    ]
    message = snapshot_message(records)
    assert message["type"] == STOCK_SNAPSHOT
    assert message["stocks"] == [
        {"Symbol": "MSFT", "Price": 100.5},
        {"Symbol": "AAPL", "Price": 180.0},
    ]
