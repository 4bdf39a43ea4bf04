from __future__ import annotations

import json
import re
from pathlib import Path

import pandas as pd

from cashflow_import.cli.__main__ import main as cli_main

"""SUMMARY line and --json output contract."""

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY\s+files=([0-9]+)/(\1)\s+success=([0-9]+)\s+failed=([0-9]+)\s+"
    r"contracts=([0-9]+)\s+receivables=([0-9]+)\s+expenses=([0-9]+)\s+"
    r"errors=([0-9]+)\s+elapsed_sec=([0-9]+\.?[0-9]*)$"
)


def _summary_line(out: str) -> str:
    [line] = [l for l in out.splitlines() if l.startswith("SUMMARY ")]
    return line


def test_summary_pattern_example_line():
    line = "SUMMARY files=2/2 success=1 failed=1 contracts=4 receivables=4 expenses=7 errors=1 elapsed_sec=0.84"
    assert SUMMARY_PATTERN.match(line)


def test_cli_summary_line_matches_contract(temp_workdir: Path, write_config, capsys):
    pd.DataFrame([
        ["Cliente", "Projeto", "Valor Total", "Data Assinatura"],
        ["Ana Souza", "Casa Praia", "85000", "15/03/2024"],
        ["Bruno Lima", "Loja Centro", "-10", "02/02/2024"],
    ]).to_csv(temp_workdir / "data" / "contratos.csv", index=False, header=False)

    cli_main([])
    m = SUMMARY_PATTERN.match(_summary_line(capsys.readouterr().out))

    assert m, "SUMMARY line should match contract regex"
    files, _, success, failed, contracts, receivables, expenses, errors, _ = m.groups()
    assert (files, success, failed) == ("1", "1", "0")
    assert (contracts, receivables, expenses, errors) == ("1", "0", "0", "1")


def test_json_output_shape(temp_workdir: Path, write_config, capsys):
    pd.DataFrame([
        ["Cliente", "Projeto", "Valor Total", "Data Assinatura"],
        ["Ana Souza", "Casa Praia", "85000", "15/03/2024"],
    ]).to_csv(temp_workdir / "data" / "contratos.csv", index=False, header=False)

    cli_main(["--json"])
    payload = json.loads(capsys.readouterr().out)

    assert set(payload) == {"success", "totalFiles", "successfulFiles", "failedFiles", "summary", "files"}
    assert set(payload["summary"]) == {"contractsCreated", "receivablesCreated", "expensesCreated", "errors"}
    [file_result] = payload["files"]
    assert set(file_result) == {
        "fileName", "success", "summary", "entitiesExtracted", "duplicatesSkipped",
        "sheetsProcessed", "elapsedSeconds", "error",
    }
    assert file_result["summary"] == {
        "contractsCreated": 1, "receivablesCreated": 0, "expensesCreated": 0, "errors": [],
    }
