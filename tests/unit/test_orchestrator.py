from __future__ import annotations

import json
from pathlib import Path

import pytest

import cashflow_import.services.orchestrator as orchestrator
from cashflow_import.ai.providers import MockProvider
from cashflow_import.db.store import InMemoryBackend, TeamScope
from cashflow_import.logging.error_log import ErrorLogBuffer
from cashflow_import.models.entities import EntityType
from cashflow_import.services.extraction import Extractor
from cashflow_import.services.orchestrator import (
    ProcessingError,
    RequestContext,
    SourceFile,
    process_directory,
    process_file,
    process_files,
    scan_source_files,
)
from cashflow_import.services.progress import InMemoryProgressStore

CONTRACTS = [
    ["Cliente", "Projeto", "Valor Total", "Data Assinatura"],
    ["Ana Souza", "Casa Praia", "85000", "15/03/2024"],
    ["Bruno Lima", "Loja Centro", "40000", "20/03/2024"],
]


class RecordingSink:
    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)


class TrackingBackend(InMemoryBackend):
    def __init__(self):
        super().__init__()
        self.calls: list[str] = []

    def begin(self):
        self.calls.append("begin")

    def commit(self):
        self.calls.append("commit")

    def rollback(self):
        self.calls.append("rollback")


@pytest.fixture()
def extractor(import_config):
    return Extractor(import_config, MockProvider())


@pytest.fixture()
def sink():
    return RecordingSink()


@pytest.fixture()
def ctx(sink):
    return RequestContext(team_id="team-1", actor="tester", audit=sink, progress=InMemoryProgressStore())


def _options(extractor, backend, import_config, today, **extra):
    return {"extractor": extractor, "backend": backend, "config": import_config, "today": today, **extra}


def test_process_file_success(csv_bytes, ctx, sink, extractor, import_config, today):
    backend = TrackingBackend()

    result = process_file(csv_bytes(CONTRACTS), "contratos.csv", ctx, **_options(extractor, backend, import_config, today))

    assert result.success
    assert result.commit.contracts_created == 2
    assert result.entities_extracted == {"contracts": 2, "receivables": 0, "expenses": 0}
    assert result.sheets_processed == 1
    assert result.errors == []
    assert backend.calls == ["begin", "commit"]
    assert TeamScope(backend, "team-1").count(EntityType.CONTRACT) == 2
    [event] = sink.events
    assert event.action == "import.file"
    assert event.metadata == {"file": "contratos.csv", "success": True, "created": 2, "errors": 0}


def test_process_file_without_entities_skips_transaction(ctx, extractor, import_config, today):
    backend = TrackingBackend()
    result = process_file(b"%PDF-1.4", "vazio.pdf", ctx, **_options(extractor, backend, import_config, today))
    assert result.success
    assert backend.calls == []


def test_process_file_unsupported_type(ctx, extractor, import_config, today):
    result = process_file(b"PK\x03\x04", "contrato.docx", ctx, **_options(extractor, InMemoryBackend(), import_config, today))
    assert not result.success
    assert result.systematic_error.startswith("Unsupported file type: contrato.docx")
    assert result.commit.total_created == 0


def test_process_file_never_raises(ctx, import_config, today):
    class ExplodingExtractor:
        def extract(self, *args, **kwargs):
            raise RuntimeError("parser crashed")

    error_log = ErrorLogBuffer()
    result = process_file(
        b"x", "dados.csv", ctx,
        **_options(ExplodingExtractor(), InMemoryBackend(), import_config, today, error_log=error_log),
    )

    assert not result.success
    assert result.errors == ["unexpected error: parser crashed"]
    assert len(error_log) == 1


def test_commit_failure_rolls_back(csv_bytes, ctx, extractor, import_config, today, monkeypatch):
    def failing_commit(*args, **kwargs):
        raise RuntimeError("constraint exploded")

    monkeypatch.setattr(orchestrator, "commit", failing_commit)
    backend = TrackingBackend()

    result = process_file(csv_bytes(CONTRACTS), "contratos.csv", ctx, **_options(extractor, backend, import_config, today))

    assert backend.calls == ["begin", "rollback"]
    assert not result.success
    assert result.systematic_error == "unexpected error: constraint exploded"


def test_process_files_isolates_failures(csv_bytes, ctx, sink, extractor, import_config, today, tmp_path):
    error_log = ErrorLogBuffer(logs_dir=tmp_path / "logs")
    files = [
        SourceFile(name="contratos.csv", data=csv_bytes(CONTRACTS)),
        SourceFile(name="sumiu.xlsx", path=tmp_path / "sumiu.xlsx"),
        SourceFile(name="contrato.docx", data=b"PK\x03\x04"),
    ]

    batch = process_files(files, ctx, **_options(extractor, InMemoryBackend(), import_config, today, error_log=error_log))

    assert [f.success for f in batch.files] == [True, False, False]
    assert batch.successful_files == 1
    assert batch.failed_files == 2
    assert batch.files[1].errors[0].startswith("cannot read file:")
    assert batch.totals()["contractsCreated"] == 2

    [log_file] = (tmp_path / "logs").glob("errors-*.log")
    lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert {line["file"] for line in lines} == {"sumiu.xlsx", "contrato.docx"}

    snapshot = ctx.progress.get(ctx.request_id)
    assert snapshot.status == "completed"
    assert (snapshot.processed_files, snapshot.successful_files, snapshot.failed_files) == (3, 1, 2)

    assert [e.action for e in sink.events] == ["import.file", "import.file", "import.batch"]
    assert sink.events[-1].metadata == {"files": 3, "successfulFiles": 1, "failedFiles": 2}


def test_duplicate_files_do_not_create_twice(csv_bytes, ctx, extractor, import_config, today):
    backend = InMemoryBackend()
    data = csv_bytes(CONTRACTS)
    files = [SourceFile(name="a.csv", data=data), SourceFile(name="b.csv", data=data)]

    batch = process_files(files, ctx, **_options(extractor, backend, import_config, today))

    assert batch.success
    assert batch.files[0].commit.contracts_created == 2
    assert batch.files[1].commit.contracts_created == 0
    assert len(batch.files[1].commit.duplicates) == 2


def test_scan_source_files(tmp_path: Path):
    for name in ("b.xlsx", "a.csv", "c.pdf", "notes.docx", "foto.PNG"):
        (tmp_path / name).write_bytes(b"x")
    (tmp_path / "sub.csv").mkdir()
    assert [p.name for p in scan_source_files(tmp_path)] == ["a.csv", "b.xlsx", "c.pdf", "foto.PNG"]


def test_scan_source_files_missing_directory(tmp_path: Path):
    with pytest.raises(ProcessingError, match="Directory not found"):
        scan_source_files(tmp_path / "missing")


def test_process_directory(csv_bytes, ctx, extractor, import_config, tmp_path):
    (tmp_path / "contratos.csv").write_bytes(csv_bytes(CONTRACTS))
    batch = process_directory(import_config, ctx, extractor=extractor, backend=InMemoryBackend())
    assert batch.total_files == 1
    assert batch.files[0].file_name == "contratos.csv"
    assert batch.success


def test_source_file_without_content():
    with pytest.raises(ValueError):
        SourceFile(name="x.csv").read()


def test_request_ids_are_unique():
    assert RequestContext(team_id="t").request_id != RequestContext(team_id="t").request_id
