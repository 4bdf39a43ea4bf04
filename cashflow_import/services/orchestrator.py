from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from ..config.loader import ImportConfig
from ..db.store import Backend, TeamScope
from ..logging.error_log import ErrorLogBuffer
from ..models.error_record import ErrorRecord, ErrorType
from ..models.processing_result import BatchResult, CommitResult, FileResult, FileStatus
from ..spreadsheet.reader import IMAGE_MEDIA_TYPES, PDF_EXTENSIONS, SPREADSHEET_EXTENSIONS, TEXT_EXTENSIONS
from .audit import AuditSink, audited
from .commit import commit
from .extraction import Extractor
from .progress import ProgressSnapshot, ProgressStore, ProgressTracker

logger = logging.getLogger(__name__)

"""File-level orchestration: extraction + commit per file, batches of files.

``process_file`` is the error boundary: whatever happens inside, the caller
gets a ``FileResult`` with counts (possibly zero) and error strings. Files of
a batch run sequentially, each in its own transaction, so one failed file
never affects the others.
"""

__all__ = [
    "ProcessingError",
    "RequestContext",
    "SourceFile",
    "SUPPORTED_EXTENSIONS",
    "scan_source_files",
    "process_file",
    "process_files",
    "process_directory",
]

SUPPORTED_EXTENSIONS = frozenset(
    [*SPREADSHEET_EXTENSIONS, *PDF_EXTENSIONS, *IMAGE_MEDIA_TYPES, *TEXT_EXTENSIONS]
)


class ProcessingError(Exception):
    """Fatal error preventing a batch from starting (e.g. missing directory)."""


@dataclass(frozen=True)
class RequestContext:
    """Per-request values threaded through the pipeline."""
    team_id: str
    actor: str | None = None
    audit: AuditSink | None = None
    progress: ProgressStore | None = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class SourceFile:
    name: str
    data: bytes | None = None
    path: Path | None = None

    def read(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is None:
            raise ValueError(f"no content for {self.name}")
        return self.path.read_bytes()


def scan_source_files(directory: Path) -> list[Path]:
    """Supported files directly inside ``directory``, sorted by name.

    Raises:
        ProcessingError: directory missing or unreadable
    """
    if not directory.exists():
        raise ProcessingError(f"Directory not found: {directory}")
    if not directory.is_dir():
        raise ProcessingError(f"Path is not a directory: {directory}")
    try:
        paths = [p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS]
    except OSError as e:
        raise ProcessingError(f"Error reading directory {directory}: {e}") from e
    return sorted(paths, key=lambda p: p.name)


def _today(config: ImportConfig) -> date:
    return datetime.now(ZoneInfo(config.timezone)).date()


def _describe_file(result: FileResult) -> dict:
    return {
        "file": result.file_name,
        "success": result.success,
        "created": result.commit.total_created,
        "errors": len(result.errors),
    }


def _describe_batch(result: BatchResult) -> dict:
    return {
        "files": result.total_files,
        "successfulFiles": result.successful_files,
        "failedFiles": result.failed_files,
    }


@audited("import.file", describe=_describe_file)
def process_file(
    data: bytes,
    filename: str,
    ctx: RequestContext,
    *,
    extractor: Extractor,
    backend: Backend,
    config: ImportConfig,
    hint: str | None = None,
    profession: str | None = None,
    error_log: ErrorLogBuffer | None = None,
    today: date | None = None,
) -> FileResult:
    """Extract and commit one file for ``ctx.team_id``; never raises."""
    started = time.monotonic()
    profession = profession or config.profession
    records: list[ErrorRecord] = []
    commit_result = CommitResult()
    entities_extracted: dict[str, int] = {}
    sheets = 0

    try:
        outcome = extractor.extract(data, filename, hint, profession)
        records.extend(outcome.error_records)
        entities_extracted = outcome.count_by_type()
        sheets = outcome.sheets_processed
        if outcome.entities:
            backend.begin()
            try:
                commit_result = commit(
                    outcome.entities,
                    TeamScope(backend, ctx.team_id),
                    config=config.reconciliation,
                    today=today or _today(config),
                    profession=profession,
                )
            except Exception:
                backend.rollback()
                raise
            backend.commit()
            records.extend(commit_result.error_records)
    except Exception as e:
        logger.exception("unexpected failure processing file=%s", filename)
        records.append(ErrorRecord.create(filename, None, None, ErrorType.UNEXPECTED_ERROR, f"unexpected error: {e}"))

    if error_log is not None:
        error_log.extend(records)

    systematic = [r for r in records if r.is_systematic]
    result = FileResult(
        file_name=filename,
        status=FileStatus.FAILED if systematic else FileStatus.SUCCESS,
        commit=commit_result,
        errors=[r.describe() for r in records],
        entities_extracted=entities_extracted,
        sheets_processed=sheets,
        elapsed_seconds=time.monotonic() - started,
        systematic_error=systematic[0].describe() if systematic else None,
    )
    log = logger.warning if systematic else logger.info
    log(
        "file=%s status=%s contracts=%d receivables=%d expenses=%d errors=%d duplicates=%d",
        filename, result.status.value, commit_result.contracts_created,
        commit_result.receivables_created, commit_result.expenses_created,
        len(result.errors), len(commit_result.duplicates),
    )
    return result


def _report(ctx: RequestContext, snapshot: ProgressSnapshot) -> None:
    if ctx.progress is None:
        return
    try:
        ctx.progress.update(ctx.request_id, snapshot)
    except Exception as e:
        logger.warning("progress update failed: %s", e)


def _unreadable(source: SourceFile, error: Exception, error_log: ErrorLogBuffer | None) -> FileResult:
    record = ErrorRecord.create(source.name, None, None, ErrorType.UNEXPECTED_ERROR, f"cannot read file: {error}")
    if error_log is not None:
        error_log.append(record)
    logger.error("cannot read file=%s: %s", source.name, error)
    return FileResult(
        file_name=source.name,
        status=FileStatus.FAILED,
        commit=CommitResult(),
        errors=[record.describe()],
        systematic_error=record.describe(),
    )


@audited("import.batch", describe=_describe_batch)
def process_files(
    files: Sequence[SourceFile],
    ctx: RequestContext,
    *,
    extractor: Extractor,
    backend: Backend,
    config: ImportConfig,
    hint: str | None = None,
    profession: str | None = None,
    error_log: ErrorLogBuffer | None = None,
    today: date | None = None,
) -> BatchResult:
    """Process ``files`` sequentially; a failing file never stops the batch."""
    start_time = datetime.now(UTC)
    results: list[FileResult] = []
    ok = failed = 0

    with ProgressTracker(len(files)) as tracker:
        for source in files:
            tracker.start_file(source.name)
            _report(ctx, ProgressSnapshot(
                total_files=len(files), processed_files=len(results), current_file=source.name,
                successful_files=ok, failed_files=failed,
            ))
            try:
                data = source.read()
            except (OSError, ValueError) as e:
                result = _unreadable(source, e, error_log)
            else:
                result = process_file(
                    data, source.name, ctx,
                    extractor=extractor, backend=backend, config=config,
                    hint=hint, profession=profession, error_log=error_log, today=today,
                )
            results.append(result)
            if result.success:
                ok += 1
            else:
                failed += 1
            tracker.set_postfix(success=ok, failed=failed)
            tracker.finish_file(success=result.success)

    _report(ctx, ProgressSnapshot(
        total_files=len(files), processed_files=len(results), status="completed",
        successful_files=ok, failed_files=failed,
    ))

    if error_log is not None:
        try:
            path = error_log.flush()
        except OSError as e:
            logger.warning("could not write error log: %s", e)
        else:
            if path is not None:
                logger.info("error log written to %s", path)

    return BatchResult(start_time=start_time, end_time=datetime.now(UTC), files=results)


def process_directory(
    config: ImportConfig,
    ctx: RequestContext,
    *,
    extractor: Extractor,
    backend: Backend,
    hint: str | None = None,
    profession: str | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> BatchResult:
    """Import every supported file in ``config.source_directory``.

    Raises:
        ProcessingError: the directory is missing or unreadable
    """
    paths = scan_source_files(Path(config.source_directory))
    logger.info("found %d file(s) in %s", len(paths), config.source_directory)
    return process_files(
        [SourceFile(name=p.name, path=p) for p in paths],
        ctx,
        extractor=extractor,
        backend=backend,
        config=config,
        hint=hint,
        profession=profession,
        error_log=error_log,
    )
