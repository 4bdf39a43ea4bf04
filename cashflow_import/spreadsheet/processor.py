from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..models.entities import RowType
from ..models.error_record import ErrorRecord, ErrorType
from ..models.sheet import ColumnMapping, DataSection, FileReadResult, ProcessedRow, ProcessedSheet, SheetTable
from .column_mapper import detect_columns
from .locale_parsers import clean_text, parse_currency, parse_date, parse_project_client
from .reader import UnsupportedFileTypeError, WorkbookReadError, read_workbook
from .segmenter import is_blank, split_columns, split_rows

logger = logging.getLogger(__name__)

"""Spreadsheet processor: raw sheets -> typed rows and sections.

Flow per sheet:
1. cut the sheet into tables (segmenter; blank rows and blank columns)
2. per table, locate the header row (first row with at least 3 non-empty
   cells) and map headers to canonical fields (column_mapper)
3. parse every later non-empty row of the table with the locale parsers
4. classify rows and group them into sections

Sheet failures are isolated: the sheet is reported in ``errors`` and the
remaining sheets of the workbook are still processed.
"""

__all__ = [
    "SheetHeaderError",
    "MIN_HEADER_CELLS",
    "find_header_row",
    "process_row",
    "detect_row_type",
    "is_complete_contract",
    "detect_sections",
    "process_sheet",
    "process_file",
]

MIN_HEADER_CELLS = 3
HEADER_SCAN_ROWS = 5  # rows of a block searched for a header

CURRENCY_FIELDS = frozenset({"totalValue", "amount"})
DATE_FIELDS = frozenset({"signedDate", "expectedDate", "dueDate"})


class SheetHeaderError(Exception):
    """Raised when a non-empty sheet has no row usable as header."""


def _non_empty_count(row: Sequence[Any]) -> int:
    return sum(1 for c in row if not is_blank(c))


def find_header_row(rows: Sequence[Sequence[Any]]) -> int:
    """Return the 0-based index of the header row.

    Raises:
        SheetHeaderError: no row has ``MIN_HEADER_CELLS`` non-empty cells
    """
    for index, row in enumerate(rows):
        if _non_empty_count(row) >= MIN_HEADER_CELLS:
            return index
    raise SheetHeaderError(f"no header row with at least {MIN_HEADER_CELLS} filled columns")


def _present(parsed: Mapping[str, Any], field_name: str) -> bool:
    value = parsed.get(field_name)
    return value is not None and value != ""


def is_complete_contract(parsed: Mapping[str, Any]) -> bool:
    return all(_present(parsed, f) for f in ("projectName", "totalValue", "signedDate"))


def detect_row_type(parsed: Mapping[str, Any]) -> RowType:
    """Classify a row from the set of fields that parsed to a value."""
    def has(field_name: str) -> bool:
        return _present(parsed, field_name)

    if is_complete_contract(parsed):
        return RowType.CONTRACT
    if has("expectedDate") and has("amount"):
        return RowType.RECEIVABLE
    if has("dueDate") and has("amount") and (has("description") or has("vendor")):
        return RowType.EXPENSE
    if (has("clientName") or has("projectName")) and has("totalValue"):
        return RowType.CONTRACT
    return RowType.UNKNOWN


def process_row(raw: Sequence[Any], row_number: int, mapping: ColumnMapping) -> ProcessedRow:
    parsed: dict[str, Any] = {}
    split_client = ""
    for field_name, index in mapping.columns.items():
        if index >= len(raw) or is_blank(raw[index]):
            continue
        value = raw[index]
        if field_name in CURRENCY_FIELDS:
            parsed_value: Any = parse_currency(value)
        elif field_name in DATE_FIELDS:
            parsed_value = parse_date(value)
        elif field_name == "projectName":
            pc = parse_project_client(value)
            parsed_value = pc.project or None
            split_client = pc.client
        else:
            parsed_value = clean_text(value) or None
        if parsed_value is not None:
            parsed[field_name] = parsed_value

    if split_client and not _present(parsed, "clientName"):
        parsed["clientName"] = split_client

    return ProcessedRow(
        row_number=row_number,
        raw=tuple(raw),
        parsed=parsed,
        detected_type=detect_row_type(parsed),
    )


def detect_sections(rows: Sequence[ProcessedRow]) -> list[DataSection]:
    """Group runs of same-type rows.

    Unknown rows sitting between two rows of the same type belong to that
    run and lower its confidence; unknown rows at the edges of a run and
    unknown-only runs produce no section.
    """
    sections: list[DataSection] = []
    current: RowType | None = None
    start = end = 0
    matching = 0

    def close() -> None:
        if current is not None:
            sections.append(DataSection(
                type=current,
                start_row=rows[start].row_number,
                end_row=rows[end].row_number,
                row_count=end - start + 1,
                matching_rows=matching,
            ))

    for index, row in enumerate(rows):
        row_type = row.detected_type
        if row_type is RowType.UNKNOWN:
            continue
        if row_type is current:
            end = index
            matching += 1
            continue
        close()
        current, start, end, matching = row_type, index, index, 1
    close()
    return sections


def _labels(row: Sequence[Any]) -> list[str]:
    return [clean_text(c) for c in row]


def _looks_like_header(row: Sequence[Any]) -> bool:
    """Enough filled cells and all of them labels (no amount, no date)."""
    cells = [c for c in row if not is_blank(c)]
    if len(cells) < MIN_HEADER_CELLS:
        return False
    return all(parse_currency(c) is None and parse_date(c) is None for c in cells)


def _append_rows(
    table: SheetTable, rows: Sequence[Sequence[Any]], start: int, stop: int, last_column: int | None = None
) -> None:
    for index in range(start, stop):
        raw = rows[index][table.first_column:last_column]
        if _non_empty_count(raw):
            table.rows.append(process_row(raw, index + 1, table.mapping))


def _start_table(
    rows: Sequence[Sequence[Any]], start: int, stop: int, first_column: int = 0, last_column: int | None = None
) -> SheetTable:
    block = [r[first_column:last_column] for r in rows[start:stop]]
    header_index = start + find_header_row(block)
    headers = _labels(rows[header_index][first_column:last_column])
    table = SheetTable(
        header_row=header_index + 1,
        headers=headers,
        mapping=detect_columns(headers),
        first_column=first_column,
    )
    _append_rows(table, rows, header_index + 1, stop, last_column)
    return table


def _opening_header(rows: Sequence[Sequence[Any]], start: int, stop: int, table: SheetTable) -> int | None:
    """Index of the row that opens a new table in ``rows[start:stop]``, if any.

    A candidate is a header-like row whose labels map at least one column.
    The scan stops at the first row that still parses as data under the open
    table.
    """
    for index in range(start, min(stop, start + HEADER_SCAN_ROWS)):
        raw = rows[index]
        if process_row(raw, index + 1, table.mapping).detected_type is not RowType.UNKNOWN:
            return None
        if _looks_like_header(raw) and detect_columns(_labels(raw)):
            return index
    return None


def _side_by_side(rows: Sequence[Sequence[Any]], start: int, stop: int) -> list[tuple[int, int]]:
    """Column ranges of tables placed next to each other, when every one has a header."""
    columns = split_columns(rows[start:stop])
    if len(columns) < 2:
        return []
    head = rows[start:min(stop, start + HEADER_SCAN_ROWS)]
    for first, last in columns:
        if not any(_looks_like_header(r[first:last]) for r in head):
            return []
    return columns


def process_sheet(name: str, rows: Sequence[Sequence[Any]]) -> ProcessedSheet | None:
    """Process one sheet; returns None for a sheet with no content at all.

    Blank-row runs cut the sheet into blocks. A block opens a new table when
    a header-like row (labels only) shows up among its first rows before any
    row that parses as data under the open table; otherwise it continues the
    open table, so a stray blank line inside a table changes nothing. A
    block split by blank columns where every part has its own header becomes
    side-by-side tables. Row numbers stay physical throughout.

    Raises:
        SheetHeaderError: content but no header row anywhere
    """
    blocks = split_rows(rows)
    if not blocks:
        return None

    sheet = ProcessedSheet(name=name)
    current: SheetTable | None = None
    for start, stop in blocks:
        columns = _side_by_side(rows, start, stop)
        if columns:
            sheet.tables.extend(_start_table(rows, start, stop, first, last) for first, last in columns)
            current = None
            continue
        if current is not None:
            header_index = _opening_header(rows, start, stop, current)
            if header_index is None:
                _append_rows(current, rows, start, stop)
                continue
            start = header_index
        elif not any(_non_empty_count(r) >= MIN_HEADER_CELLS for r in rows[start:stop]):
            if sheet.tables:
                logger.warning("sheet=%s rows %d-%d have no header, skipped", name, start + 1, stop)
            continue
        current = _start_table(rows, start, stop)
        sheet.tables.append(current)

    if not sheet.tables:
        raise SheetHeaderError(f"no header row with at least {MIN_HEADER_CELLS} filled columns")

    for table in sheet.tables:
        table.sections = detect_sections(table.rows)
        logger.debug(
            "sheet=%s header_row=%d first_column=%d mapped=%s rows=%d",
            name, table.header_row, table.first_column, sorted(table.mapping.fields), len(table.rows),
        )
    if len(sheet.tables) > 1:
        logger.info(
            "sheet=%s holds %d tables header_rows=%s",
            name, len(sheet.tables), [t.header_row for t in sheet.tables],
        )
    logger.debug("sheet=%s rows=%s", name, sheet.count_by_type())
    return sheet


def process_file(data: bytes, filename: str) -> FileReadResult:
    """Parse spreadsheet bytes into processed sheets; never raises."""
    result = FileReadResult()
    try:
        raw_sheets = read_workbook(data, filename)
    except UnsupportedFileTypeError as e:
        result.error_records.append(
            ErrorRecord.create(filename, None, None, ErrorType.UNSUPPORTED_FILE_TYPE, str(e))
        )
        return result
    except WorkbookReadError as e:
        logger.warning("workbook read failed file=%s: %s", filename, e)
        result.error_records.append(
            ErrorRecord.create(filename, None, None, ErrorType.WORKBOOK_READ_ERROR, str(e))
        )
        return result

    for sheet_name, rows in raw_sheets.items():
        try:
            sheet = process_sheet(sheet_name, rows)
        except SheetHeaderError as e:
            result.error_records.append(
                ErrorRecord.create(filename, sheet_name, None, ErrorType.SHEET_ERROR, str(e))
            )
            continue
        except Exception as e:
            logger.exception("sheet processing failed file=%s sheet=%s", filename, sheet_name)
            result.error_records.append(
                ErrorRecord.create(filename, sheet_name, None, ErrorType.SHEET_ERROR, f"failed to process sheet: {e}")
            )
            continue
        if sheet is not None:
            result.sheets.append(sheet)
    return result
