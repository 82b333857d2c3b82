"""Bulk writes of coerced rows inside the caller's transaction."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import Table, insert
from sqlalchemy.orm import Session

from ..exceptions import ConfigurationError, IdentifierError
from ..models.base import Base, load_models


def split_identifier(qualified_name: str) -> tuple[str | None, str]:
    """Split ``schema.table`` (or ``table``) after validating its shape."""

    if qualified_name is None or not str(qualified_name).strip():
        raise IdentifierError("Table identifier must not be empty")

    parts = [part.strip() for part in str(qualified_name).split(".")]
    if len(parts) > 2:
        raise IdentifierError(
            f"Table identifier '{qualified_name}' may contain at most one schema separator"
        )
    if any(not part for part in parts):
        raise IdentifierError(f"Table identifier '{qualified_name}' has an empty segment")
    if len(parts) == 2:
        return parts[0], parts[1]
    return None, parts[0]


def quote_part(part: str) -> str:
    return '"' + part.replace('"', '""') + '"'


def quote_identifier(qualified_name: str) -> str:
    """Return ``"schema"."table"`` or ``"table"`` for a validated identifier."""

    schema, table = split_identifier(qualified_name)
    if schema is None:
        return quote_part(table)
    return f"{quote_part(schema)}.{quote_part(table)}"


def resolve_table(qualified_name: str) -> Table:
    schema, name = split_identifier(qualified_name)
    load_models()
    key = f"{schema}.{name}" if schema else name
    table = Base.metadata.tables.get(key)
    if table is None:
        raise ConfigurationError(f"Target table '{qualified_name}' is not declared")
    return table


def _copy_rows(
    session: Session,
    quoted_name: str,
    columns: Sequence[str],
    rows: Sequence[Mapping[str, Any]],
) -> None:
    driver_connection = session.connection().connection.driver_connection
    column_sql = ", ".join(quote_part(column) for column in columns)
    with driver_connection.cursor() as cursor:
        with cursor.copy(f"COPY {quoted_name} ({column_sql}) FROM STDIN") as copy:
            for row in rows:
                copy.write_row([row.get(column) for column in columns])


def bulk_write(
    session: Session,
    qualified_name: str,
    rows: Sequence[Mapping[str, Any]],
) -> int:
    """Write ``rows`` to ``qualified_name`` without committing.

    PostgreSQL connections driven by psycopg use ``COPY ... FROM STDIN``;
    other databases receive one executemany ``INSERT``.
    """

    quoted_name = quote_identifier(qualified_name)
    if not rows:
        return 0

    table = resolve_table(qualified_name)
    columns = list(rows[0].keys())

    connection = session.connection()
    dialect = connection.dialect
    if dialect.name == "postgresql" and dialect.driver == "psycopg":
        _copy_rows(session, quoted_name, columns, rows)
    else:
        session.execute(insert(table), [dict(row) for row in rows])
    return len(rows)
