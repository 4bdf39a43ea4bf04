from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from .locale_parsers import clean_text

"""Cut a sheet into blocks of filled cells.

Hand-kept workbooks often stack several tables on one sheet (contracts, a
blank row, then expenses) or put two tables side by side with an empty
column between them. ``split_rows`` cuts on blank-row runs and
``split_columns`` on fully blank columns; which block starts a new table is
decided by the processor.
"""

__all__ = ["is_blank", "is_blank_row", "split_rows", "split_columns"]


def is_blank(cell: Any) -> bool:
    return cell is None or clean_text(cell) == ""


def is_blank_row(row: Sequence[Any]) -> bool:
    return all(is_blank(c) for c in row)


def _runs(flags: Sequence[bool]) -> list[tuple[int, int]]:
    ranges: list[tuple[int, int]] = []
    start: int | None = None
    for index, flag in enumerate(flags):
        if flag and start is None:
            start = index
        elif not flag and start is not None:
            ranges.append((start, index))
            start = None
    if start is not None:
        ranges.append((start, len(flags)))
    return ranges


def split_rows(rows: Sequence[Sequence[Any]]) -> list[tuple[int, int]]:
    """``(start, stop)`` index ranges of consecutive non-blank rows."""
    return _runs([not is_blank_row(r) for r in rows])


def split_columns(rows: Sequence[Sequence[Any]]) -> list[tuple[int, int]]:
    """``(start, stop)`` column ranges separated by columns blank in every row."""
    width = max((len(r) for r in rows), default=0)
    return _runs([
        any(i < len(r) and not is_blank(r[i]) for r in rows)
        for i in range(width)
    ])
