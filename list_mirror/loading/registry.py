"""Static registry of spreadsheet-to-table mappings."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ConfigurationError
from ..utils.config import load_yaml_config

# System-generated columns that never take part in header matching.
IGNORED_COLUMNS: frozenset[str] = frozenset({"id", "artifact_id"})


def normalize_header(value: str) -> str:
    return str(value).strip().casefold()


def header_key(headers: Iterable[str]) -> frozenset[str]:
    """Return the comparable header set used for strict matching."""

    normalized = {normalize_header(header) for header in headers}
    normalized.discard("")
    return frozenset(normalized - IGNORED_COLUMNS)


@dataclass(frozen=True, slots=True)
class TargetConfiguration:
    """One way a named source table maps onto a relational table."""

    source_name: str
    schema: str | None
    table: str
    column_map: Mapping[str, str]
    label: str | None = None
    header_set: frozenset[str] = field(init=False)
    _lookup: Mapping[str, str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "header_set", header_key(self.column_map))
        object.__setattr__(
            self,
            "_lookup",
            {normalize_header(src): dst for src, dst in self.column_map.items()},
        )

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}" if self.schema else self.table

    def target_column(self, source_column: str) -> str | None:
        """Return the mapped column name for a source header, if any."""

        return self._lookup.get(normalize_header(source_column))


class _TargetEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str = Field(min_length=1)
    schema_name: str | None = Field(default=None, alias="schema")
    table: str = Field(min_length=1)
    label: str | None = None
    columns: dict[str, str]

    @field_validator("columns")
    @classmethod
    def _require_columns(cls, value: dict[str, str]) -> dict[str, str]:
        if not value:
            raise ValueError("columns must map at least one source header")
        return value


class SchemaRegistry:
    """Source name to ordered target configurations, built once at startup."""

    def __init__(self, configurations: Iterable[TargetConfiguration] = ()) -> None:
        self._by_source: dict[str, list[TargetConfiguration]] = {}
        for configuration in configurations:
            self.register(configuration)

    def register(self, configuration: TargetConfiguration) -> None:
        key = normalize_header(configuration.source_name)
        existing = self._by_source.setdefault(key, [])
        for other in existing:
            if other.header_set == configuration.header_set:
                raise ConfigurationError(
                    f"Ambiguous schema registry: '{configuration.qualified_name}' and "
                    f"'{other.qualified_name}' both declare the same headers for "
                    f"source '{configuration.source_name}'"
                )
        existing.append(configuration)

    def candidates(self, source_name: str) -> list[TargetConfiguration]:
        """Return configurations registered under a source name, in registration order."""

        return list(self._by_source.get(normalize_header(source_name), ()))

    def __iter__(self):
        for configurations in self._by_source.values():
            yield from configurations

    def __len__(self) -> int:
        return sum(len(configurations) for configurations in self._by_source.values())

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SchemaRegistry:
        entries = data.get("targets")
        if not isinstance(entries, list):
            raise ConfigurationError("Schema registry must define a 'targets' list")

        configurations: list[TargetConfiguration] = []
        for position, raw in enumerate(entries):
            try:
                entry = _TargetEntry.model_validate(raw)
            except PydanticValidationError as exc:
                raise ConfigurationError(
                    f"Invalid schema registry entry #{position}: {exc}"
                ) from exc
            configurations.append(
                TargetConfiguration(
                    source_name=entry.source.strip(),
                    schema=entry.schema_name,
                    table=entry.table,
                    column_map=dict(entry.columns),
                    label=entry.label,
                )
            )
        return cls(configurations)

    @classmethod
    def from_yaml(cls, path: str | Path) -> SchemaRegistry:
        return cls.from_mapping(load_yaml_config(path))
