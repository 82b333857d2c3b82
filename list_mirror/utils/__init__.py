"""Utilities package initialization."""
from .config import (
    BOOTSTRAP_CURSOR,
    GlobalSettings,
    ServiceConfiguration,
    ensure_runtime_configuration,
    get_service_configuration,
    get_settings,
    load_yaml_config,
)
from .hashing import ContentDigest, compute_digest
from .logging import log_sync_step, setup_logger

__all__ = [
    "BOOTSTRAP_CURSOR",
    "ContentDigest",
    "GlobalSettings",
    "ServiceConfiguration",
    "compute_digest",
    "ensure_runtime_configuration",
    "get_settings",
    "get_service_configuration",
    "load_yaml_config",
    "log_sync_step",
    "setup_logger",
]
