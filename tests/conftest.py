# Shared pytest fixtures
from __future__ import annotations

import io
import json
from collections.abc import Callable
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from cashflow_import.config.loader import (
    AIConfig,
    ExtractionConfig,
    ImportConfig,
    ReconciliationConfig,
)
from cashflow_import.db.store import InMemoryBackend, TeamScope
from cashflow_import.logging.init import reset_logging


@pytest.fixture()
def today() -> date:
    return date(2024, 6, 1)


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(tmp_path: Path, monkeypatch) -> Path:
    (tmp_path / "config").mkdir()
    (tmp_path / "data").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    return tmp_path


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_directory: ./data
team_id: team-1
profession: arquitetura
timezone: America/Sao_Paulo
ai:
  provider: mock
extraction:
  chunk_rows: 50
  min_confidence: 0.5
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def import_config(tmp_path: Path) -> ImportConfig:
    return ImportConfig(
        source_directory=str(tmp_path),
        team_id="team-1",
        ai=AIConfig(provider="mock", rate_limit_retry_seconds=0.0),
        extraction=ExtractionConfig(chunk_rows=50, max_parallel_chunks=2),
        reconciliation=ReconciliationConfig(),
    )


@pytest.fixture()
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture()
def scope(backend: InMemoryBackend) -> TeamScope:
    return TeamScope(backend, "team-1")


def _csv(rows: list[list[object]]) -> bytes:
    buf = io.StringIO()
    pd.DataFrame(rows).to_csv(buf, index=False, header=False)
    return buf.getvalue().encode("utf-8")


def _xlsx(sheets: dict[str, list[list[object]]]) -> bytes:
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, index=False, header=False)
    return buf.getvalue()


@pytest.fixture()
def csv_bytes() -> Callable[[list[list[object]]], bytes]:
    """Build CSV bytes from rows (first row is the header)."""
    return _csv


@pytest.fixture()
def xlsx_bytes() -> Callable[[dict[str, list[list[object]]]], bytes]:
    """Build an .xlsx workbook from {sheet name: rows}."""
    return _xlsx


def _ai_payload(contracts=(), receivables=(), expenses=()) -> str:
    return json.dumps({
        "contracts": list(contracts),
        "receivables": list(receivables),
        "expenses": list(expenses),
    }, ensure_ascii=False)


@pytest.fixture()
def ai_payload() -> Callable[..., str]:
    """JSON text shaped like a model extraction response."""
    return _ai_payload
