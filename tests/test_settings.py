"""Tests for global configuration settings powered by Pydantic."""

from pathlib import Path

import pytest
import yaml

from list_mirror.utils.config import (
    ConfigurationError,
    ensure_runtime_configuration,
    get_service_configuration,
    get_settings,
    resolve_schema_registry_path,
)


@pytest.fixture(autouse=True)
def clear_service_configuration_cache(monkeypatch: pytest.MonkeyPatch):
    """Ensure cached profile templates do not leak between tests."""

    try:
        get_service_configuration(reload=True)
    except ConfigurationError:
        pass
    yield
    monkeypatch.undo()
    get_settings(reload=True)
    try:
        get_service_configuration(reload=True)
    except ConfigurationError:
        pass


def test_global_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Default settings should reflect development-friendly values."""

    for name in ("MIRROR_ENVIRONMENT", "MIRROR_LOG_LEVEL", "MIRROR_BATCH_SIZE", "MIRROR_SYNC_QUEUE"):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings(reload=True)

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.batch_size == 200
    assert settings.sync_queue == "sp-changes"
    assert settings.graph_base_url == "https://graph.microsoft.com/v1.0"
    assert settings.dead_letter.backend == "filesystem"
    assert settings.webhook_keys == []


def test_global_settings_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Environment variables should override default configuration values."""

    monkeypatch.setenv("MIRROR_ENVIRONMENT", "production")
    monkeypatch.setenv("MIRROR_LOG_LEVEL", "debug")
    monkeypatch.setenv("MIRROR_BATCH_SIZE", "25")
    monkeypatch.setenv("MIRROR_WEBHOOK_KEYS", '["alpha", "beta"]')
    monkeypatch.setenv("MIRROR_DEAD_LETTER__BACKEND", "s3")
    monkeypatch.setenv("MIRROR_DEAD_LETTER__BUCKET", "mirror-dead-letters")
    monkeypatch.setenv("MIRROR_SCHEMA_REGISTRY_PATH", str(tmp_path / "registry.yaml"))

    settings = get_settings(reload=True)

    assert settings.environment == "production"
    assert settings.log_level == "DEBUG"
    assert settings.batch_size == 25
    assert settings.webhook_keys == ["alpha", "beta"]
    assert settings.dead_letter.backend == "s3"
    assert settings.dead_letter.bucket == "mirror-dead-letters"
    assert resolve_schema_registry_path(settings) == tmp_path / "registry.yaml"


def test_s3_dead_letters_require_bucket(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MIRROR_DEAD_LETTER__BACKEND", "s3")
    monkeypatch.delenv("MIRROR_DEAD_LETTER__BUCKET", raising=False)

    with pytest.raises(ValueError):
        get_settings(reload=True)


def test_token_url_defaults_to_tenant_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MIRROR_TENANT_ID", "contoso")
    monkeypatch.delenv("MIRROR_GRAPH_TOKEN_URL", raising=False)

    settings = get_settings(reload=True)

    assert settings.token_url == "https://login.microsoftonline.com/contoso/oauth2/v2.0/token"


def test_token_url_requires_tenant(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MIRROR_TENANT_ID", raising=False)
    monkeypatch.delenv("MIRROR_GRAPH_TOKEN_URL", raising=False)

    with pytest.raises(ConfigurationError):
        _ = get_settings(reload=True).token_url


def test_get_service_configuration_merges_profile(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """Service configuration should merge base and environment overrides."""

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "settings.base.yaml").write_text(
        yaml.safe_dump({"version": 1, "required_env": ["MIRROR_DATABASE_URL"]})
    )
    (config_dir / "settings.staging.yaml").write_text(
        yaml.safe_dump({"required_env": ["MIRROR_SITE_ID"], "schema_registry": "staging.yaml"})
    )

    monkeypatch.setenv("MIRROR_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("MIRROR_ENVIRONMENT", "staging")
    monkeypatch.delenv("MIRROR_SCHEMA_REGISTRY_PATH", raising=False)

    settings = get_settings(reload=True)
    service_config = get_service_configuration(settings=settings, reload=True)

    assert service_config.environment == "staging"
    assert service_config.required_env == ["MIRROR_SITE_ID"]
    assert resolve_schema_registry_path(settings, service_config) == config_dir / "staging.yaml"


def test_missing_base_template_is_reported(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("MIRROR_CONFIG_DIR", str(tmp_path))

    with pytest.raises(ConfigurationError, match="Missing base configuration template"):
        get_service_configuration(settings=get_settings(reload=True), reload=True)


def test_ensure_runtime_configuration_requires_env(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """Template-declared variables must be present at startup."""

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "settings.base.yaml").write_text(
        yaml.safe_dump({"required_env": ["MIRROR_SITE_ID"]})
    )
    monkeypatch.setenv("MIRROR_CONFIG_DIR", str(config_dir))
    monkeypatch.delenv("MIRROR_SITE_ID", raising=False)

    with pytest.raises(ConfigurationError, match="MIRROR_SITE_ID"):
        ensure_runtime_configuration(get_settings(reload=True))

    monkeypatch.setenv("MIRROR_SITE_ID", "site-1")
    assert ensure_runtime_configuration(get_settings(reload=True)).site_id == "site-1"


def test_config_profile_overrides_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MIRROR_ENVIRONMENT", "production")
    monkeypatch.setenv("MIRROR_CONFIG_PROFILE", " Staging ")

    assert get_settings(reload=True).active_profile == "staging"


def test_template_must_be_a_mapping(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    (tmp_path / "settings.base.yaml").write_text("- just\n- a list\n")
    monkeypatch.setenv("MIRROR_CONFIG_DIR", str(tmp_path))

    with pytest.raises(ConfigurationError, match="Expected a mapping"):
        get_service_configuration(settings=get_settings(reload=True), reload=True)


def test_required_env_must_use_service_prefix(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    (tmp_path / "settings.base.yaml").write_text(yaml.safe_dump({"required_env": ["DATABASE_URL"]}))
    monkeypatch.setenv("MIRROR_CONFIG_DIR", str(tmp_path))

    with pytest.raises(ConfigurationError, match="Invalid configuration template"):
        get_service_configuration(settings=get_settings(reload=True), reload=True)


def test_shipped_production_profile_requires_worker_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MIRROR_ENVIRONMENT", "production")
    monkeypatch.delenv("MIRROR_CONFIG_PROFILE", raising=False)

    service_config = get_service_configuration(settings=get_settings(reload=True), reload=True)

    assert service_config.environment == "production"
    assert {"MIRROR_SITE_ID", "MIRROR_LIST_ID", "MIRROR_WATCHED_PATH"} <= set(service_config.required_env)
