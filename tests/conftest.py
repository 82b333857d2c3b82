"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

import io
import os
from collections.abc import Callable
from pathlib import Path

import pandas as pd
import pytest

from list_mirror.loading import SchemaRegistry
from list_mirror.models.base import reset_engine
from list_mirror.utils.config import get_settings

REPO_ROOT = Path(__file__).resolve().parents[1]
REGISTRY_PATH = REPO_ROOT / "config" / "schema_registry.yaml"


@pytest.fixture(autouse=True)
def _ensure_database_url(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Give every test its own SQLite database and fresh settings."""

    if os.getenv("MIRROR_DATABASE_URL") is None:
        db_path = tmp_path_factory.mktemp("sqlite-db") / "mirror.sqlite"
        monkeypatch.setenv("MIRROR_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("MIRROR_CONFIG_DIR", str(REPO_ROOT / "config"))

    get_settings(reload=True)
    reset_engine()
    yield
    reset_engine()
    monkeypatch.undo()
    get_settings(reload=True)


@pytest.fixture
def schema_registry() -> SchemaRegistry:
    """Registry shipped with the service."""

    return SchemaRegistry.from_yaml(REGISTRY_PATH)


@pytest.fixture
def workbook_bytes() -> Callable[[dict[str, list[dict]]], bytes]:
    """Build an in-memory .xlsx from ``{sheet name: [row dicts]}``."""

    def _build(sheets: dict[str, list[dict]]) -> bytes:
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            for name, rows in sheets.items():
                pd.DataFrame(rows).to_excel(writer, sheet_name=name, index=False)
        return buffer.getvalue()

    return _build


@pytest.fixture
def renewal_row() -> dict[str, object]:
    return {
        "Contract ID": "C-1001",
        "Property No": 12,
        "Room No": 301,
        "Contractor Name": "Sato Hanako",
        "Renewal Date": "2024/04/01",
        "Next Contract Start": "2024-04-01",
        "Next Contract End": "2026-03-31",
        "Output Date Time": "2024/03/15 09:30:00",
    }
