"""Locale-invariant conversion of spreadsheet cells into declared column types."""

from __future__ import annotations

import numbers
from collections.abc import Callable, Mapping
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Column, Table
from sqlalchemy import types as sqltypes

from ..exceptions import CoercionError, ConfigurationError

TRUE_VALUES = frozenset({"true", "1"})
FALSE_VALUES = frozenset({"false", "0"})

DATE_FORMATS: tuple[str, ...] = ("%Y/%m/%d", "%Y%m%d")
DATETIME_FORMATS: tuple[str, ...] = (
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
)
TIME_FORMATS: tuple[str, ...] = ("%H:%M:%S", "%H:%M", "%H%M%S")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, numbers.Integral):
        result = Decimal(int(value))
    elif isinstance(value, numbers.Real):
        result = Decimal(repr(float(value)))
    elif isinstance(value, str):
        # Only "." is a decimal point; "," may only group digits.
        text = value.strip().replace(",", "")
        try:
            result = Decimal(text)
        except InvalidOperation as exc:
            raise ValueError("not a number") from exc
    else:
        raise ValueError(f"unsupported type {type(value).__name__}")

    if not result.is_finite():
        raise ValueError("non-finite number")
    return result


def _to_integer(value: Any) -> int:
    if isinstance(value, numbers.Integral):
        return int(value)
    number = _to_decimal(value)
    if number != number.to_integral_value():
        raise ValueError("not an integral number")
    return int(number)


def _to_float(value: Any) -> float:
    return float(_to_decimal(value))


def _to_boolean(value: Any) -> bool:
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        if value in (0, 1):
            return bool(value)
        raise ValueError("only 0 or 1 are boolean numbers")
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError("expected one of true/false/1/0")


def _parse_with_formats(text: str, formats: tuple[str, ...]) -> datetime:
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"unrecognised format (accepted ISO-8601 or {', '.join(formats)})")


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if not isinstance(value, str):
        raise ValueError(f"unsupported type {type(value).__name__}")
    text = value.strip()
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return _parse_with_formats(text, DATETIME_FORMATS)


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"unsupported type {type(value).__name__}")
    text = value.strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return _parse_with_formats(text, DATE_FORMATS + DATETIME_FORMATS).date()


def _to_time(value: Any) -> time:
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    if not isinstance(value, str):
        raise ValueError(f"unsupported type {type(value).__name__}")
    text = value.strip()
    try:
        return time.fromisoformat(text)
    except ValueError:
        return _parse_with_formats(text, TIME_FORMATS).time()


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, numbers.Real) and not isinstance(value, numbers.Integral):
        if float(value).is_integer():
            return str(int(value))
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value)


def converter_for(column: Column) -> Callable[[Any], Any]:
    """Return the conversion function for a column's declared type."""

    column_type = column.type
    if isinstance(column_type, sqltypes.Boolean):
        return _to_boolean
    if isinstance(column_type, sqltypes.Integer):
        return _to_integer
    # Float subclasses Numeric.
    if isinstance(column_type, sqltypes.Float):
        return _to_float
    if isinstance(column_type, sqltypes.Numeric):
        return _to_decimal
    if isinstance(column_type, sqltypes.DateTime):
        return _to_datetime
    if isinstance(column_type, sqltypes.Date):
        return _to_date
    if isinstance(column_type, sqltypes.Time):
        return _to_time
    return _to_text


def coerce_value(column: Column, value: Any) -> Any:
    """Convert one cell for ``column``; blank cells become NULL when allowed."""

    if hasattr(value, "to_pydatetime"):
        value = value.to_pydatetime()

    if _is_blank(value):
        if column.nullable:
            return None
        raise CoercionError(column.name, value, "value is required")

    try:
        return converter_for(column)(value)
    except (ValueError, TypeError, OverflowError) as exc:
        raise CoercionError(column.name, value, str(exc)) from exc


def coerce_row(table: Table, row: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce every value in ``row`` (keyed by target column) for ``table``."""

    coerced: dict[str, Any] = {}
    for name, value in row.items():
        column = table.columns.get(name)
        if column is None:
            raise ConfigurationError(f"Column '{name}' does not exist on {table.fullname}")
        coerced[name] = coerce_value(column, value)
    return coerced
