"""FieldMapper — column names in, attribute names out."""

import pytest

from stockticker.changes.mapping import FieldMapper


def test_to_domain_renames_mapped_columns(mapper):
    row = {"code": "MSFT", "name": "Microsoft", "price": 100}
    assert mapper.to_domain(row) == {"Symbol": "MSFT", "Name": "Microsoft", "Price": 100}


def test_unmapped_columns_pass_through(mapper):
    assert mapper.to_domain({"code": "MSFT", "volume": 5}) == {"Symbol": "MSFT", "volume": 5}


def test_to_source_is_inverse(mapper):
    entity = {"Symbol": "MSFT", "Name": "Microsoft", "Price": 100}
    assert mapper.to_domain(mapper.to_source(entity)) == entity


def test_to_record_uses_identifier(mapper):
    record = mapper.to_record({"code": "MSFT", "name": "Microsoft", "price": 100})
    assert record.identifier == "MSFT"
    assert record.as_dict()["Name"] == "Microsoft"
    assert mapper.identifier_column == "code"


def test_to_record_without_identifier_column(mapper):
    with pytest.raises(ValueError, match="code"):
        mapper.to_record({"name": "Microsoft"})


def test_identifier_must_be_mapped():
    with pytest.raises(ValueError):
        FieldMapper({"code": "Symbol"}, identifier="Ticker")


def test_duplicate_attribute_names_rejected():
    with pytest.raises(ValueError):
        FieldMapper({"code": "Symbol", "ticker": "Symbol"}, identifier="Symbol")
