"""Strict header-set routing of parsed tables to target tables."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from ..exceptions import SchemaMatchError
from ..utils.logging import setup_logger
from .registry import SchemaRegistry, TargetConfiguration, header_key

logger = setup_logger(__name__, context={"component": "SchemaRouter"})


@dataclass(frozen=True, slots=True)
class ResolvedTarget:
    qualified_name: str
    configuration: TargetConfiguration


class SchemaRouter:
    """Pick the single configuration whose expected headers equal a table's headers.

    Headers are trimmed and compared case-insensitively with system columns
    removed. Several configurations may share a source name (schema versions);
    only exact set equality selects one, first registered wins.
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self._registry = registry

    def resolve(self, source_name: str, headers: Sequence[str]) -> ResolvedTarget:
        incoming = header_key(headers)
        for configuration in self._registry.candidates(source_name):
            if configuration.header_set == incoming:
                logger.debug(
                    "Routed '%s' to %s (%s)",
                    source_name,
                    configuration.qualified_name,
                    configuration.label or "unlabelled",
                )
                return ResolvedTarget(configuration.qualified_name, configuration)

        raise SchemaMatchError(source_name, incoming)
