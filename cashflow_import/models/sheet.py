from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from .entities import RowType
from .error_record import ErrorRecord

"""Spreadsheet processing models.

ColumnMapping is built once per table from its header row. ProcessedRow
keeps the raw cells next to the parsed field map so error messages can
point back at the source. DataSection is reporting-only.
"""

__all__ = [
    "ColumnMapping",
    "ProcessedRow",
    "DataSection",
    "SheetTable",
    "ProcessedSheet",
    "FileReadResult",
]


@dataclass(frozen=True)
class ColumnMapping:
    """Canonical field name -> column index, with the winning match score."""
    columns: Mapping[str, int]
    scores: Mapping[str, int]

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", MappingProxyType(dict(self.columns)))
        object.__setattr__(self, "scores", MappingProxyType(dict(self.scores)))

    def __contains__(self, field_name: object) -> bool:
        return field_name in self.columns

    def __len__(self) -> int:
        return len(self.columns)

    def get(self, field_name: str) -> int | None:
        return self.columns.get(field_name)

    @property
    def fields(self) -> list[str]:
        return list(self.columns)


@dataclass(frozen=True)
class ProcessedRow:
    row_number: int  # 1-based physical row in the sheet
    raw: tuple[Any, ...]
    parsed: Mapping[str, Any]
    detected_type: RowType

    def has(self, field_name: str) -> bool:
        value = self.parsed.get(field_name)
        return value is not None and value != ""


@dataclass(frozen=True)
class DataSection:
    type: RowType
    start_row: int
    end_row: int
    row_count: int
    matching_rows: int

    @property
    def confidence(self) -> float:
        if self.row_count == 0:
            return 0.0
        return self.matching_rows / self.row_count


@dataclass
class SheetTable:
    """One table of a sheet with its own header and column mapping.

    ``first_column`` is where the table starts when tables sit side by side;
    ``raw`` cells of its rows are relative to that column.
    """
    header_row: int  # 1-based
    headers: list[str]
    mapping: ColumnMapping
    first_column: int = 0
    rows: list[ProcessedRow] = field(default_factory=list)
    sections: list[DataSection] = field(default_factory=list)

    def typed_rows(self, row_type: RowType | None = None) -> list[ProcessedRow]:
        return _typed(self.rows, row_type)


@dataclass
class ProcessedSheet:
    name: str
    tables: list[SheetTable] = field(default_factory=list)

    @property
    def rows(self) -> list[ProcessedRow]:
        return [r for t in self.tables for r in t.rows]

    @property
    def sections(self) -> list[DataSection]:
        return [s for t in self.tables for s in t.sections]

    def typed_rows(self, row_type: RowType | None = None) -> list[ProcessedRow]:
        return _typed(self.rows, row_type)

    def count_by_type(self) -> dict[str, int]:
        counts = {t.value: 0 for t in RowType}
        for r in self.rows:
            counts[r.detected_type.value] += 1
        return counts


def _typed(rows: list[ProcessedRow], row_type: RowType | None) -> list[ProcessedRow]:
    if row_type is None:
        return [r for r in rows if r.detected_type is not RowType.UNKNOWN]
    return [r for r in rows if r.detected_type is row_type]


@dataclass
class FileReadResult:
    sheets: list[ProcessedSheet] = field(default_factory=list)
    error_records: list[ErrorRecord] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [r.describe() for r in self.error_records]
