"""Schema routing and tabular loading."""
from .loader import LoadSummary, TabularLoader
from .registry import SchemaRegistry, TargetConfiguration
from .router import ResolvedTarget, SchemaRouter

__all__ = [
    "LoadSummary",
    "ResolvedTarget",
    "SchemaRegistry",
    "SchemaRouter",
    "TabularLoader",
    "TargetConfiguration",
]
