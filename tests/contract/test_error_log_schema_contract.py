from __future__ import annotations

import json
from pathlib import Path

import jsonschema
import pytest

from cashflow_import.logging.error_log import ErrorLogBuffer
from cashflow_import.models.error_record import ErrorRecord, ErrorType

"""Error log line format contract (contracts/error_log_schema.json)."""

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SCHEMA_PATH = PROJECT_ROOT / "contracts" / "error_log_schema.json"


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


ALL_TYPES = [
    ErrorType.UNSUPPORTED_FILE_TYPE,
    ErrorType.WORKBOOK_READ_ERROR,
    ErrorType.SHEET_ERROR,
    ErrorType.VALIDATION_ERROR,
    ErrorType.LOW_CONFIDENCE,
    ErrorType.AI_UPSTREAM_ERROR,
    ErrorType.AI_RESPONSE_ERROR,
    ErrorType.INSERT_ERROR,
    ErrorType.PERSISTENCE_ERROR,
    ErrorType.UNEXPECTED_ERROR,
]


def test_schema_enum_matches_error_types(schema):
    assert set(schema["properties"]["error_type"]["enum"]) == set(ALL_TYPES)


@pytest.mark.parametrize("error_type", ALL_TYPES)
def test_every_error_type_produces_valid_lines(schema, error_type):
    record = ErrorRecord.create("dados.xlsx", "Plan1", 4, error_type, "mensagem")
    jsonschema.validate(json.loads(record.to_json_line()), schema)


def test_file_level_record_uses_sentinels(schema):
    line = json.loads(ErrorRecord.create("proposta.pdf", None, None, ErrorType.AI_RESPONSE_ERROR, "x").to_json_line())
    jsonschema.validate(line, schema)
    assert line["row"] == -1
    assert line["sheet"] == ""


def test_schema_rejects_row_below_sentinel(schema):
    line = json.loads(ErrorRecord.create("f.csv", "S", 1, ErrorType.SHEET_ERROR, "x").to_json_line())
    line["row"] = -2
    with pytest.raises(jsonschema.ValidationError):
        jsonschema.validate(line, schema)


def test_schema_rejects_unknown_keys_and_types(schema):
    line = json.loads(ErrorRecord.create("f.csv", "S", 1, ErrorType.SHEET_ERROR, "x").to_json_line())
    with pytest.raises(jsonschema.ValidationError):
        jsonschema.validate({**line, "db_message": "extra"}, schema)
    with pytest.raises(jsonschema.ValidationError):
        jsonschema.validate({**line, "error_type": "CONSTRAINT_VIOLATION"}, schema)


def test_flushed_file_lines_validate(schema, tmp_path: Path):
    buf = ErrorLogBuffer(logs_dir=tmp_path)
    buf.extend(ErrorRecord.create("f.xlsx", "S", i + 2, t, f"erro {i}") for i, t in enumerate(ALL_TYPES))
    path = buf.flush()
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == len(ALL_TYPES)
    for raw in lines:
        jsonschema.validate(json.loads(raw), schema)
