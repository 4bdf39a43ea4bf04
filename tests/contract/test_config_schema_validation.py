from __future__ import annotations

import json

import jsonschema
import pytest
import yaml
from jsonschema.exceptions import ValidationError

from cashflow_import.config.loader import SCHEMA_PATH

"""Config schema contract (cashflow_import/config/config_schema.json)."""

FULL_EXAMPLE = """
source_directory: ./data
team_id: team-1
profession: medicina
timezone: America/Sao_Paulo
ai:
  provider: claude
  model: claude-sonnet-4-20250514
  api_key_env: ANTHROPIC_API_KEY
  timeout_seconds: 90
  max_tokens: 16000
  temperature: 0
  default_confidence: 0.7
  rate_limit_retry_seconds: 5
extraction:
  chunk_rows: 80
  max_parallel_chunks: 4
  min_confidence: 0.5
  fallback_contract_confidence: 0.75
  ai_fallback_for_unmapped_sheets: true
reconciliation:
  duplicate_threshold: 0.85
  value_tolerance: 0.01
  contract_match_threshold: 0.8
progress:
  ttl_seconds: 300
database:
  host: localhost
  port: 5432
  user: postgres
  database: arqcashflow
"""


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_config_schema_valid_example(schema):
    jsonschema.validate(yaml.safe_load(FULL_EXAMPLE), schema)


def test_config_schema_minimal_example(schema):
    jsonschema.validate({"source_directory": "./data", "team_id": "t"}, schema)


@pytest.mark.parametrize(
    "patch",
    [
        {"team_id": ""},
        {"ai": {"provider": "openai"}},
        {"ai": {"temperature": 2}},
        {"extraction": {"max_parallel_chunks": 0}},
        {"reconciliation": {"duplicate_threshold": 1.5}},
        {"database": {"port": "5432"}},
        {"sheet_mappings": {}},
    ],
)
def test_config_schema_rejects(schema, patch):
    data = {"source_directory": "./data", "team_id": "t", **patch}
    with pytest.raises(ValidationError):
        jsonschema.validate(data, schema)
