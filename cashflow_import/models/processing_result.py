from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .error_record import ErrorRecord

"""Result models for commit, per-file and batch processing.

``to_dict`` methods produce the JSON-serializable summaries returned to
callers (camelCase keys, matching the upload API responses).
"""

__all__ = [
    "CommitResult",
    "FileStatus",
    "FileResult",
    "BatchResult",
]


@dataclass
class CommitResult:
    """Outcome of committing one file's entities.

    ``success`` is False only when a systematic failure happened (a whole
    entity type batch could not be persisted). Per-entity rejections are
    listed in ``errors`` but do not flip it.
    """
    contracts_created: int = 0
    receivables_created: int = 0
    expenses_created: int = 0
    errors: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    systematic_failures: int = 0
    created_ids: dict[str, list[Any]] = field(default_factory=dict)
    error_records: list[ErrorRecord] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.systematic_failures == 0

    @property
    def total_created(self) -> int:
        return self.contracts_created + self.receivables_created + self.expenses_created

    def record_error(self, record: ErrorRecord) -> None:
        self.error_records.append(record)
        self.errors.append(record.describe())
        if record.is_systematic:
            self.systematic_failures += 1

    def add_created(self, entity_type: str, ids: list[Any]) -> None:
        self.created_ids.setdefault(entity_type, []).extend(ids)
        if entity_type == "contract":
            self.contracts_created += len(ids)
        elif entity_type == "receivable":
            self.receivables_created += len(ids)
        elif entity_type == "expense":
            self.expenses_created += len(ids)
        else:
            raise ValueError(f"unknown entity type: {entity_type}")

    def to_summary(self) -> dict[str, Any]:
        return {
            "contractsCreated": self.contracts_created,
            "receivablesCreated": self.receivables_created,
            "expensesCreated": self.expenses_created,
            "errors": list(self.errors),
        }

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "summary": self.to_summary()}


class FileStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class FileResult:
    file_name: str
    status: FileStatus
    commit: CommitResult
    errors: list[str] = field(default_factory=list)  # extraction + commit, in order
    entities_extracted: dict[str, int] = field(default_factory=dict)
    sheets_processed: int = 0
    elapsed_seconds: float = 0.0
    systematic_error: str | None = None

    @property
    def success(self) -> bool:
        return self.status is FileStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        summary = self.commit.to_summary()
        summary["errors"] = list(self.errors)
        return {
            "fileName": self.file_name,
            "success": self.success,
            "summary": summary,
            "entitiesExtracted": dict(self.entities_extracted),
            "duplicatesSkipped": list(self.commit.duplicates),
            "sheetsProcessed": self.sheets_processed,
            "elapsedSeconds": round(self.elapsed_seconds, 3),
            "error": self.systematic_error,
        }


@dataclass
class BatchResult:
    start_time: datetime
    end_time: datetime
    files: list[FileResult] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return len(self.files)

    @property
    def successful_files(self) -> int:
        return sum(1 for f in self.files if f.success)

    @property
    def failed_files(self) -> int:
        return self.total_files - self.successful_files

    @property
    def success(self) -> bool:
        return self.failed_files == 0

    @property
    def elapsed_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def totals(self) -> dict[str, Any]:
        errors: list[str] = []
        for f in self.files:
            errors.extend(f"{f.file_name}: {e}" for e in f.errors)
        return {
            "contractsCreated": sum(f.commit.contracts_created for f in self.files),
            "receivablesCreated": sum(f.commit.receivables_created for f in self.files),
            "expensesCreated": sum(f.commit.expenses_created for f in self.files),
            "errors": errors,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "totalFiles": self.total_files,
            "successfulFiles": self.successful_files,
            "failedFiles": self.failed_files,
            "summary": self.totals(),
            "files": [f.to_dict() for f in self.files],
        }
