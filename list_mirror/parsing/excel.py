"""Spreadsheet decoding into named tables using pandas."""

from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from ..exceptions import ParseError

SPREADSHEET_EXTENSIONS: frozenset[str] = frozenset({".xlsx", ".xls", ".xlsm", ".xlsb"})


@dataclass(slots=True)
class ParsedTable:
    """One worksheet: its header row and the data rows keyed by header."""

    name: str
    columns: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.rows


def is_spreadsheet(file_name: str | None) -> bool:
    if not file_name or "." not in file_name:
        return False
    return "." + file_name.rsplit(".", 1)[1].lower() in SPREADSHEET_EXTENSIONS


def _cell(value: Any) -> Any:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        return value
    return value


def _frame_to_table(name: str, frame: pd.DataFrame) -> ParsedTable:
    # Blank header cells come back as "Unnamed: N" and carry no meaning.
    keep = [
        column
        for column in frame.columns
        if str(column).strip() and not str(column).startswith("Unnamed:")
    ]
    frame = frame[keep].dropna(how="all")
    columns = [str(column).strip() for column in keep]

    rows: list[dict[str, Any]] = []
    for record in frame.itertuples(index=False, name=None):
        rows.append({column: _cell(value) for column, value in zip(columns, record)})
    return ParsedTable(name=str(name).strip(), columns=columns, rows=rows)


def parse_workbook(content: bytes) -> list[ParsedTable]:
    """Decode every worksheet, using the first row as headers.

    Raises:
        ParseError: If the bytes are not a readable workbook.
    """

    try:
        sheets = pd.read_excel(io.BytesIO(content), sheet_name=None, header=0, dtype=object)
    except Exception as exc:
        raise ParseError(f"Failed to parse Excel file: {exc}") from exc

    return [_frame_to_table(name, frame) for name, frame in sheets.items()]


async def parse_workbook_async(content: bytes) -> list[ParsedTable]:
    """Run :func:`parse_workbook` off the event loop."""

    return await asyncio.to_thread(parse_workbook, content)
