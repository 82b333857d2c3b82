"""Settings for the sync service.

Runtime values come from `MIRROR_*` environment variables (nested fields use
`__`). Per-deployment requirements live in YAML profile templates under
`config/`: `settings.base.yaml` overlaid with `settings.<profile>.yaml`.
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Watermark of a pair that has never been synchronized.
BOOTSTRAP_CURSOR = "latest"

BASE_TEMPLATE = "settings.base.yaml"
PROFILE_TEMPLATE = "settings.{profile}.yaml"
DEFAULT_SCHEMA_REGISTRY = "schema_registry.yaml"
ALWAYS_REQUIRED_ENV = "MIRROR_DATABASE_URL"


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """
    Read a YAML mapping; an empty file yields an empty mapping.

    Raises:
        ConfigurationError: If the file is missing, malformed, or not a mapping
    """
    path = Path(config_path)
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}")
    return loaded



class DatabasePoolSettings(BaseModel):
    """Pooling for server databases; ignored for SQLite."""

    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    timeout: float = Field(default=30.0, gt=0)
    recycle_seconds: int = Field(default=1800, ge=0)
    pre_ping: bool = True


class DeadLetterSettings(BaseModel):
    """Where archived queue messages are written."""

    model_config = ConfigDict(extra="forbid")

    backend: Literal["filesystem", "s3"] = "filesystem"
    directory: Path = Path("dead-letters")
    bucket: str | None = None
    prefix: str = ""
    region: str | None = None
    endpoint_url: str | None = None

    @model_validator(mode="after")
    def _require_bucket_for_s3(self) -> "DeadLetterSettings":
        if self.backend == "s3" and not self.bucket:
            raise ValueError("dead_letter.bucket is required when backend is 's3'")
        return self


class ServiceConfiguration(BaseModel):
    """A profile template after the base and override files are merged."""

    model_config = ConfigDict(extra="forbid")

    version: int = Field(default=1, ge=1)
    environment: str = "development"
    required_env: list[str] = Field(default_factory=list)
    schema_registry: str | None = None

    @field_validator("environment")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("required_env")
    @classmethod
    def _require_prefixed_names(cls, value: list[str]) -> list[str]:
        names = [name.strip() for name in value if name.strip()]
        unprefixed = [name for name in names if not name.startswith("MIRROR_")]
        if unprefixed:
            raise ValueError(f"required_env entries must start with MIRROR_: {unprefixed}")
        return names


class GlobalSettings(BaseSettings):
    """Process settings sourced from ``MIRROR_*`` variables and ``.env`` files."""

    model_config = SettingsConfigDict(
        env_prefix="MIRROR_",
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    config_profile: str | None = None
    log_level: str = "INFO"
    config_dir: Path = Path("config")
    schema_registry_path: Path | None = None

    # Infrastructure
    redis_url: str | None = None
    database_url: str | None = None
    database: DatabasePoolSettings = DatabasePoolSettings()
    dead_letter: DeadLetterSettings = DeadLetterSettings()

    # Graph access
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    graph_token_url: str | None = None
    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    graph_timeout_seconds: float = Field(default=30.0, gt=0)

    # Monitored list
    site_id: str | None = None
    list_id: str | None = None
    watched_path: str | None = None
    batch_size: int = Field(default=200, ge=1)

    # Webhook server
    api_host: str = "0.0.0.0"
    api_port: int = Field(default=8000, ge=1, le=65535)

    # Queue
    sync_queue: str = "sp-changes"
    webhook_keys: list[str] = Field(default_factory=list)
    queue_max_retries: int = Field(default=3, ge=0)
    queue_retry_backoff_seconds: float = Field(default=30.0, gt=0)
    queue_retry_max_backoff_seconds: float = Field(default=300.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def _uppercase_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("webhook_keys", mode="before")
    @classmethod
    def _parse_webhook_keys(cls, value: Any) -> list[str]:
        """Accept a JSON list or a comma-separated string; blanks are dropped."""

        if value is None:
            return []
        items = value.split(",") if isinstance(value, str) else value
        if not isinstance(items, list | tuple | set):
            raise ValueError("webhook_keys must be a list or comma-separated string")
        return [str(item).strip() for item in items if str(item).strip()]

    @field_validator("config_dir", "schema_registry_path", mode="before")
    @classmethod
    def _expand_user(cls, value: Any) -> Any:
        return Path(value).expanduser() if isinstance(value, str) else value

    @field_validator("config_profile", mode="before")
    @classmethod
    def _normalize_config_profile(cls, value: Any) -> Any:
        if value is None:
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("config_profile must be a non-empty string if provided")
        return value.strip().lower()

    @property
    def active_profile(self) -> str:
        """Template profile in use: ``config_profile`` when set, else ``environment``."""

        return (self.config_profile or self.environment).lower()

    @property
    def token_url(self) -> str:
        """OAuth2 token endpoint for the client-credentials grant."""

        if self.graph_token_url:
            return self.graph_token_url
        if not self.tenant_id:
            raise ConfigurationError("MIRROR_TENANT_ID is required to acquire Graph tokens")
        return f"https://login.microsoftonline.com/{self.tenant_id}/oauth2/v2.0/token"


def _merge_templates(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``override`` on ``base``; nested mappings merge, everything else replaces."""

    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        merged[key] = (
            _merge_templates(current, value)
            if isinstance(current, dict) and isinstance(value, dict)
            else value
        )
    return merged


@lru_cache(maxsize=8)
def _read_profile(config_dir: str, profile: str) -> ServiceConfiguration:
    directory = Path(config_dir)
    base_path = directory / BASE_TEMPLATE
    if not base_path.is_file():
        raise ConfigurationError(
            f"Missing base configuration template at '{base_path}'. "
            "Every deployment needs one to declare its required environment."
        )

    template = load_yaml_config(base_path)
    override_path = directory / PROFILE_TEMPLATE.format(profile=profile)
    if override_path.is_file():
        template = _merge_templates(template, load_yaml_config(override_path))
    else:
        logger.debug("No template override for profile '%s'", profile)
    template.setdefault("environment", profile)

    try:
        return ServiceConfiguration.model_validate(template)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration template for profile '{profile}': {exc}") from exc


def get_service_configuration(
    settings: GlobalSettings | None = None,
    *,
    reload: bool = False,
) -> ServiceConfiguration:
    """Return the base template merged with the active profile's override."""

    settings = settings or get_settings()
    if reload:
        _read_profile.cache_clear()
    return _read_profile(str(settings.config_dir), settings.active_profile)


def resolve_schema_registry_path(
    settings: GlobalSettings | None = None,
    service_config: ServiceConfiguration | None = None,
) -> Path:
    """Return the schema registry file, preferring ``MIRROR_SCHEMA_REGISTRY_PATH``."""

    settings = settings or get_settings()
    if settings.schema_registry_path is not None:
        return settings.schema_registry_path

    service_config = service_config or get_service_configuration(settings)
    return settings.config_dir / (service_config.schema_registry or DEFAULT_SCHEMA_REGISTRY)


def ensure_runtime_configuration(settings: GlobalSettings | None = None) -> GlobalSettings:
    """Fail fast when the active profile's required variables are unset.

    The database URL is always required; templates may add more, e.g. the
    site and list identifiers a worker needs.
    """

    settings = settings or get_settings()
    service_config = get_service_configuration(settings=settings, reload=True)

    required = {ALWAYS_REQUIRED_ENV, *service_config.required_env}
    missing = sorted(name for name in required if not os.environ.get(name))
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables for profile "
            f"'{service_config.environment}': {', '.join(missing)}"
        )
    return settings


@lru_cache(maxsize=1)
def _cached_settings() -> GlobalSettings:
    return GlobalSettings()


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Return process-wide settings; ``reload=True`` re-reads the environment."""

    if reload:
        _cached_settings.cache_clear()
    return _cached_settings()
