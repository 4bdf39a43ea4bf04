from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_values

"""Batch INSERT on top of psycopg2.extras.execute_values.

One statement per page (``page_size`` rows). With ``returning`` set, the
generated values of every page are fetched (``fetch=True``), so callers get
one returned tuple per inserted row in input order.

Table and column names come from the fixed entity table definitions in
``db.store``; they are quoted but never user supplied.
"""


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of a single batch_insert call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: str | None = None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Insert ``rows`` into ``table``.

    Parameters
    ----------
    cursor: psycopg2 cursor (transaction handled by the caller)
    table: target table
    columns: column names, in row order
    rows: row sequences
    returning: column to return per inserted row (e.g. ``"id"``), or None
    page_size: rows per INSERT statement
    metrics_callback: receives a BatchMetrics when rows were sent

    Raises
    ------
    BatchInsertError: wraps any driver error
    """
    if execute_values is None:
        raise BatchInsertError("psycopg2 not available")

    rows_list = [tuple(r) for r in rows]
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f'INSERT INTO "{table}" ({cols_sql}) VALUES %s'
    if returning:
        sql += f' RETURNING "{returning}"'

    start_time = time.time()
    try:
        returned = execute_values(cursor, sql, rows_list, page_size=page_size, fetch=bool(returning))
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(BatchMetrics(
                batch_size=len(rows_list),
                elapsed_seconds=end_time - start_time,
                start_time=start_time,
                end_time=end_time,
            ))

    if returning:
        returned_values = [tuple(r) for r in (returned or [])]
        if len(returned_values) != len(rows_list):
            raise BatchInsertError(
                f"expected {len(rows_list)} returned rows from {table}, got {len(returned_values)}"
            )
        return InsertResult(inserted_rows=len(rows_list), returned_values=returned_values)
    return InsertResult(inserted_rows=len(rows_list))
