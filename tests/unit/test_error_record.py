from __future__ import annotations

import json

import pytest

from cashflow_import.models.error_record import ErrorRecord, ErrorType
from cashflow_import.models.processing_result import CommitResult


def test_create_and_json_line():
    rec = ErrorRecord.create("dados.xlsx", "Contratos", 7, ErrorType.VALIDATION_ERROR, "amount must be positive")
    data = json.loads(rec.to_json_line())
    assert data["file"] == "dados.xlsx"
    assert data["sheet"] == "Contratos"
    assert data["row"] == 7
    assert data["error_type"] == "VALIDATION_ERROR"
    assert data["timestamp"].endswith("Z")
    assert set(data) == {"timestamp", "file", "sheet", "row", "error_type", "message"}


def test_sentinels_for_missing_location():
    rec = ErrorRecord.create("proposta.pdf", None, None, ErrorType.AI_UPSTREAM_ERROR, "timeout")
    assert rec.sheet == ""
    assert rec.row == -1


@pytest.mark.parametrize(
    "sheet, row, expected",
    [
        ("Contratos", 7, "Contratos row 7: boom"),
        ("Contratos", None, "Contratos: boom"),
        (None, 3, "row 3: boom"),
        (None, None, "boom"),
    ],
)
def test_describe(sheet, row, expected):
    assert ErrorRecord.create("f.csv", sheet, row, ErrorType.SHEET_ERROR, "boom").describe() == expected


def test_json_line_keeps_accents():
    rec = ErrorRecord.create("f.csv", "Receitas", 2, ErrorType.SHEET_ERROR, "cabeçalho não encontrado")
    assert "cabeçalho não encontrado" in rec.to_json_line()


@pytest.mark.parametrize(
    "error_type, systematic",
    [
        (ErrorType.UNSUPPORTED_FILE_TYPE, True),
        (ErrorType.WORKBOOK_READ_ERROR, True),
        (ErrorType.AI_UPSTREAM_ERROR, True),
        (ErrorType.AI_RESPONSE_ERROR, True),
        (ErrorType.PERSISTENCE_ERROR, True),
        (ErrorType.UNEXPECTED_ERROR, True),
        (ErrorType.SHEET_ERROR, False),
        (ErrorType.VALIDATION_ERROR, False),
        (ErrorType.LOW_CONFIDENCE, False),
        (ErrorType.INSERT_ERROR, False),
    ],
)
def test_systematic_classification(error_type, systematic):
    assert ErrorRecord.create("f", None, None, error_type, "m").is_systematic is systematic


def test_commit_result_record_error():
    result = CommitResult()
    result.record_error(ErrorRecord.create("f", "S", 2, ErrorType.INSERT_ERROR, "dup"))
    assert result.success
    result.record_error(ErrorRecord.create("f", None, None, ErrorType.PERSISTENCE_ERROR, "down"))
    assert not result.success
    assert result.errors == ["S row 2: dup", "down"]
    assert len(result.error_records) == 2


def test_commit_result_add_created():
    result = CommitResult()
    result.add_created("contract", ["c1"])
    result.add_created("expense", ["e1", "e2"])
    assert result.total_created == 3
    assert result.created_ids == {"contract": ["c1"], "expense": ["e1", "e2"]}
    with pytest.raises(ValueError):
        result.add_created("invoice", ["x"])
