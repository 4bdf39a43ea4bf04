from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from cashflow_import.cli.__main__ import main as cli_main

"""End-to-end CLI run over a directory of workbooks (mock backend)."""


def _make_excel_file(path: Path, sheets: dict[str, list[list[object]]]) -> Path:
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for sheet_name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return path


@pytest.fixture
def workbook_dir(temp_workdir: Path, write_config: Any) -> Path:
    data_dir = temp_workdir / "data"
    _make_excel_file(data_dir / "escritorio.xlsx", {
        "Contratos": [
            ["Controle de contratos 2024"],  # title row above the header
            [],
            ["Cliente", "Projeto", "Valor Total", "Data Assinatura"],
            ["Ana Souza", "Casa Praia", 85000, "15/03/2024"],
            ["Bruno Lima", "Loja Centro", 40000, "02/02/2024"],
        ],
        "Recebíveis": [
            ["Projeto", "Valor", "Data Esperada", "Status"],
            ["Casa Praia", 42500, "15/04/2024", "Recebido"],
            ["Loja Centro", 20000, "01/03/2024", "Recebido"],
            ["Loja Centro", 20000, "01/09/2030", "Pendente"],
        ],
        "Despesas": [
            ["Descrição", "Valor", "Data Pagamento", "Categoria"],
            ["Aluguel", "3.200,00", "05/03/2024", "Aluguel"],
            ["Software", "289,90", "10/03/2024", "Software"],
        ],
    })
    pd.DataFrame([
        ["Descrição", "Valor", "Data Pagamento", "Fornecedor"],
        ["Plotagem", "450", "12/03/2024", "Gráfica Central"],
    ]).to_csv(data_dir / "despesas-extra.csv", index=False, header=False)
    return data_dir


def test_run_success_all_files(workbook_dir: Path, temp_workdir: Path, capsys):
    code = cli_main([])
    out = capsys.readouterr().out

    assert code == 0
    assert "SUMMARY files=2/2 success=2 failed=0 contracts=2 receivables=3 expenses=3 errors=0" in out
    assert not (temp_workdir / "logs").exists()


def test_run_success_json_summary(workbook_dir: Path, capsys):
    code = cli_main(["--json"])
    payload = json.loads(capsys.readouterr().out)

    assert code == 0
    assert payload["totalFiles"] == 2
    assert payload["successfulFiles"] == 2
    assert payload["summary"] == {
        "contractsCreated": 2,
        "receivablesCreated": 3,
        "expensesCreated": 3,
        "errors": [],
    }
    files = {f["fileName"]: f for f in payload["files"]}
    assert files["escritorio.xlsx"]["sheetsProcessed"] == 3
    assert files["escritorio.xlsx"]["entitiesExtracted"] == {"contracts": 2, "receivables": 3, "expenses": 2}
    assert files["despesas-extra.csv"]["error"] is None
