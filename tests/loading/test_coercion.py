"""Tests for locale-invariant cell coercion."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal

import pandas as pd
import pytest
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    Numeric,
    Table,
    Text,
    Time,
)

from list_mirror.exceptions import CoercionError, ConfigurationError
from list_mirror.loading.coercion import coerce_row, coerce_value

metadata = MetaData()
sample = Table(
    "sample",
    metadata,
    Column("required_text", Text, nullable=False),
    Column("count", Integer),
    Column("amount", Numeric(12, 0)),
    Column("ratio", Float),
    Column("flag", Boolean),
    Column("day", Date),
    Column("stamp", DateTime),
    Column("clock", Time),
    Column("note", Text),
)
c = sample.c


@pytest.mark.parametrize(
    ("column", "raw", "expected"),
    [
        (c.count, "42", 42),
        (c.count, 7.0, 7),
        (c.amount, "1,234,567", Decimal("1234567")),
        (c.amount, 150000, Decimal("150000")),
        (c.ratio, "0.25", 0.25),
        (c.flag, "TRUE", True),
        (c.flag, " 0 ", False),
        (c.flag, 1, True),
        (c.day, "2024/04/01", date(2024, 4, 1)),
        (c.day, "2024-04-01", date(2024, 4, 1)),
        (c.day, datetime(2024, 4, 1, 13, 0), date(2024, 4, 1)),
        (c.stamp, "2024/03/15 09:30:00", datetime(2024, 3, 15, 9, 30)),
        (c.stamp, "2024-03-15T09:30:00", datetime(2024, 3, 15, 9, 30)),
        (c.stamp, pd.Timestamp("2024-03-15 09:30"), datetime(2024, 3, 15, 9, 30)),
        (c.clock, "14:05", time(14, 5)),
        (c.note, 301.0, "301"),
        (c.note, "as is", "as is"),
    ],
)
def test_values_convert_to_declared_type(column, raw, expected) -> None:
    assert coerce_value(column, raw) == expected


@pytest.mark.parametrize(
    ("column", "raw"),
    [
        (c.count, "12.5"),
        (c.count, "1.234,5"),
        (c.amount, "abc"),
        (c.amount, "NaN"),
        (c.flag, "yes"),
        (c.flag, 2),
        (c.day, "01/04/2024"),
        (c.clock, "noon"),
    ],
)
def test_invalid_values_raise(column, raw) -> None:
    with pytest.raises(CoercionError) as excinfo:
        coerce_value(column, raw)

    assert excinfo.value.column == column.name


def test_blank_values_become_null_when_nullable() -> None:
    assert coerce_value(c.count, None) is None
    assert coerce_value(c.note, "   ") is None


def test_blank_required_value_is_rejected() -> None:
    with pytest.raises(CoercionError, match="required_text"):
        coerce_value(c.required_text, "")


def test_coerce_row_rejects_unknown_column() -> None:
    with pytest.raises(ConfigurationError):
        coerce_row(sample, {"missing": 1})

    assert coerce_row(sample, {"required_text": "x", "count": "3"}) == {
        "required_text": "x",
        "count": 3,
    }
