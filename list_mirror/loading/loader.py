"""Transactional loading of an artifact's tables into business tables."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ..exceptions import UnmappedColumnError
from ..monitoring.metrics import record_rows_loaded
from ..parsing.excel import ParsedTable
from ..utils.logging import setup_logger
from .bulk_copy import bulk_write, resolve_table
from .coercion import coerce_row
from .registry import IGNORED_COLUMNS, normalize_header
from .router import ResolvedTarget, SchemaRouter

logger = setup_logger(__name__, context={"component": "TabularLoader"})

ARTIFACT_COLUMN = "artifact_id"


@dataclass(slots=True)
class LoadSummary:
    """Rows written per qualified table for one artifact."""

    tables: dict[str, int] = field(default_factory=dict)

    @property
    def total_rows(self) -> int:
        return sum(self.tables.values())


class TabularLoader:
    """Route, translate, coerce and bulk-write the tables of one artifact.

    Everything happens on the caller's session; the caller owns commit and
    rollback. Routing and mapping problems surface before any row of the
    offending table is written.
    """

    def __init__(self, router: SchemaRouter) -> None:
        self._router = router

    def load(
        self,
        session: Session,
        tables: Iterable[ParsedTable],
        *,
        artifact_id: int,
    ) -> LoadSummary:
        prepared: list[tuple[ResolvedTarget, list[dict]]] = []
        for table in tables:
            if table.is_empty:
                logger.debug("Skipping empty table '%s'", table.name)
                continue
            target = self._router.resolve(table.name, table.columns)
            rows = self._translate(table, target, artifact_id)
            prepared.append((target, rows))

        summary = LoadSummary()
        for target, rows in prepared:
            written = bulk_write(session, target.qualified_name, rows)
            summary.tables[target.qualified_name] = (
                summary.tables.get(target.qualified_name, 0) + written
            )
            record_rows_loaded(target.qualified_name, written)

        logger.info(
            "Loaded %d rows for artifact %s across %d tables",
            summary.total_rows,
            artifact_id,
            len(summary.tables),
        )
        return summary

    def _translate(
        self,
        table: ParsedTable,
        target: ResolvedTarget,
        artifact_id: int,
    ) -> list[dict]:
        configuration = target.configuration
        column_pairs: list[tuple[str, str]] = []
        for source_column in table.columns:
            if normalize_header(source_column) in IGNORED_COLUMNS:
                continue
            mapped = configuration.target_column(source_column)
            if mapped is None:
                raise UnmappedColumnError(
                    f"Column '{source_column}' of table '{table.name}' has no mapping "
                    f"in {target.qualified_name}"
                )
            column_pairs.append((source_column, mapped))

        sql_table = resolve_table(target.qualified_name)
        rows: list[dict] = []
        for source_row in table.rows:
            translated = {mapped: source_row.get(source) for source, mapped in column_pairs}
            coerced = coerce_row(sql_table, translated)
            coerced[ARTIFACT_COLUMN] = artifact_id
            rows.append(coerced)
        return rows
