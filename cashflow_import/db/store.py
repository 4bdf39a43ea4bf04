from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, fields
from datetime import date
from decimal import Decimal
from typing import Any, Protocol

from ..models.entities import EntityType
from ..matching.fuzzy import normalize
from .batch_insert import BatchInsertError, batch_insert

logger = logging.getLogger(__name__)

"""Team-scoped persistence.

All reads and writes go through ``TeamScope``, which binds one team id to a
storage backend; the import pipeline never talks to a backend directly.
Two backends exist: ``PostgresBackend`` (psycopg2 cursor, one table per
entity type with a ``team_id`` column) and ``InMemoryBackend`` used in mock
mode and tests.

Records are plain dicts with camelCase keys plus ``id``; only the fields
listed in ``ENTITY_FIELDS`` are persisted.
"""

__all__ = [
    "ENTITY_FIELDS",
    "TABLES",
    "StoreError",
    "RecordFilter",
    "RowFailure",
    "CreateManyResult",
    "Backend",
    "TeamScope",
    "InMemoryBackend",
    "PostgresBackend",
]

ENTITY_FIELDS: dict[EntityType, tuple[str, ...]] = {
    EntityType.CONTRACT: (
        "clientName", "projectName", "totalValue", "signedDate",
        "status", "description", "category", "notes",
    ),
    EntityType.RECEIVABLE: (
        "contractId", "clientName", "expectedDate", "amount", "status",
        "receivedDate", "receivedAmount", "invoiceNumber", "description", "category", "notes",
    ),
    EntityType.EXPENSE: (
        "description", "amount", "dueDate", "category", "status", "paidDate",
        "paidAmount", "vendor", "invoiceNumber", "contractId", "notes",
    ),
}

TABLES: dict[EntityType, str] = {
    EntityType.CONTRACT: "contracts",
    EntityType.RECEIVABLE: "receivables",
    EntityType.EXPENSE: "expenses",
}

# field used by RecordFilter date/amount bounds, per type
DATE_FIELD = {
    EntityType.CONTRACT: "signedDate",
    EntityType.RECEIVABLE: "expectedDate",
    EntityType.EXPENSE: "dueDate",
}
AMOUNT_FIELD = {
    EntityType.CONTRACT: "totalValue",
    EntityType.RECEIVABLE: "amount",
    EntityType.EXPENSE: "amount",
}


class StoreError(Exception):
    """The backend could not complete an operation as a whole."""


def _column(field_name: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in field_name)


@dataclass(frozen=True)
class RecordFilter:
    """Explicit query filter; every field is optional and ANDed.

    Text fields compare case-insensitively for equality. Date bounds apply
    to the type's main date (signed/expected/due), amount bounds to its
    main amount (total value / amount); both are inclusive.
    """
    status: str | None = None
    client_name: str | None = None
    project_name: str | None = None
    contract_id: str | None = None
    date_from: str | None = None
    date_to: str | None = None
    min_amount: float | None = None
    max_amount: float | None = None

    def __post_init__(self) -> None:
        for name in ("date_from", "date_to"):
            value = getattr(self, name)
            if value is not None:
                try:
                    date.fromisoformat(value)
                except ValueError as e:
                    raise ValueError(f"{name} must be YYYY-MM-DD, got {value!r}") from e
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise ValueError("min_amount must not exceed max_amount")

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def matches(self, entity_type: EntityType, record: Mapping[str, Any]) -> bool:
        def same(a: Any, b: Any) -> bool:
            return normalize(a) == normalize(b)

        if self.status is not None and not same(record.get("status"), self.status):
            return False
        if self.client_name is not None and not same(record.get("clientName"), self.client_name):
            return False
        if self.project_name is not None and not same(record.get("projectName"), self.project_name):
            return False
        if self.contract_id is not None:
            key = "id" if entity_type is EntityType.CONTRACT else "contractId"
            if record.get(key) != self.contract_id:
                return False
        when = record.get(DATE_FIELD[entity_type])
        if self.date_from is not None and (when is None or when < self.date_from):
            return False
        if self.date_to is not None and (when is None or when > self.date_to):
            return False
        amount = record.get(AMOUNT_FIELD[entity_type])
        if self.min_amount is not None and (amount is None or amount < self.min_amount):
            return False
        if self.max_amount is not None and (amount is None or amount > self.max_amount):
            return False
        return True


@dataclass(frozen=True)
class RowFailure:
    index: int  # position in the create_many input
    message: str


@dataclass
class CreateManyResult:
    created: list[dict[str, Any]] = field(default_factory=list)
    failures: list[RowFailure] = field(default_factory=list)


class Backend(Protocol):
    def create_many(
        self, team_id: str, entity_type: EntityType, records: Sequence[Mapping[str, Any]]
    ) -> CreateManyResult: ...

    def find_many(
        self, team_id: str, entity_type: EntityType, flt: RecordFilter
    ) -> list[dict[str, Any]]: ...

    def count(self, team_id: str, entity_type: EntityType, flt: RecordFilter) -> int: ...

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


def _project(entity_type: EntityType, record: Mapping[str, Any]) -> dict[str, Any]:
    return {k: record.get(k) for k in ENTITY_FIELDS[entity_type]}


class TeamScope:
    """Storage access bound to one team."""

    def __init__(self, backend: Backend, team_id: str) -> None:
        if not team_id:
            raise ValueError("team_id is required")
        self.backend = backend
        self.team_id = team_id

    def create_many(
        self, entity_type: EntityType, records: Sequence[Mapping[str, Any]]
    ) -> CreateManyResult:
        if not records:
            return CreateManyResult()
        projected = [_project(entity_type, r) for r in records]
        return self.backend.create_many(self.team_id, entity_type, projected)

    def find_many(self, entity_type: EntityType, flt: RecordFilter | None = None) -> list[dict[str, Any]]:
        return self.backend.find_many(self.team_id, entity_type, flt or RecordFilter())

    def count(self, entity_type: EntityType, flt: RecordFilter | None = None) -> int:
        return self.backend.count(self.team_id, entity_type, flt or RecordFilter())


class InMemoryBackend:
    """Dict-backed backend for mock mode and tests.

    ``reject`` may return an error message for a record to simulate a
    constraint violation on that row.
    """

    def __init__(self, reject: Callable[[EntityType, Mapping[str, Any]], str | None] | None = None) -> None:
        self._rows: dict[tuple[str, EntityType], list[dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._reject = reject

    def create_many(
        self, team_id: str, entity_type: EntityType, records: Sequence[Mapping[str, Any]]
    ) -> CreateManyResult:
        result = CreateManyResult()
        with self._lock:
            bucket = self._rows.setdefault((team_id, entity_type), [])
            for index, record in enumerate(records):
                message = self._reject(entity_type, record) if self._reject else None
                if message:
                    result.failures.append(RowFailure(index=index, message=message))
                    continue
                row = {"id": str(uuid.uuid4()), **record, "teamId": team_id}
                bucket.append(row)
                result.created.append(dict(row))
        return result

    def find_many(self, team_id: str, entity_type: EntityType, flt: RecordFilter) -> list[dict[str, Any]]:
        with self._lock:
            rows = list(self._rows.get((team_id, entity_type), []))
        return [dict(r) for r in rows if flt.matches(entity_type, r)]

    def count(self, team_id: str, entity_type: EntityType, flt: RecordFilter) -> int:
        return len(self.find_many(team_id, entity_type, flt))

    # writes are immediate; transaction hooks exist for interface parity
    def begin(self) -> None:
        pass

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass


class PostgresBackend:
    """psycopg2 backend; tables ``contracts``, ``receivables``, ``expenses``.

    Each create_many runs inside a savepoint. If the batch INSERT fails the
    savepoint is rolled back and rows are retried one by one (savepoint per
    row) so a single bad row is reported without losing its siblings.
    """

    def __init__(self, cursor: Any, page_size: int = 500) -> None:
        self.cursor = cursor
        self.page_size = page_size

    def _columns(self, entity_type: EntityType) -> list[str]:
        return ["team_id"] + [_column(f) for f in ENTITY_FIELDS[entity_type]]

    def _row(self, team_id: str, entity_type: EntityType, record: Mapping[str, Any]) -> tuple:
        return (team_id, *(record.get(f) for f in ENTITY_FIELDS[entity_type]))

    def begin(self) -> None:
        self.cursor.execute("BEGIN")

    def commit(self) -> None:
        self.cursor.execute("COMMIT")

    def rollback(self) -> None:
        self.cursor.execute("ROLLBACK")

    def create_many(
        self, team_id: str, entity_type: EntityType, records: Sequence[Mapping[str, Any]]
    ) -> CreateManyResult:
        table = TABLES[entity_type]
        columns = self._columns(entity_type)
        rows = [self._row(team_id, entity_type, r) for r in records]
        savepoint = f"bulk_{table}"
        result = CreateManyResult()
        try:
            self.cursor.execute(f"SAVEPOINT {savepoint}")
            try:
                inserted = batch_insert(
                    self.cursor, table, columns, rows, returning="id", page_size=self.page_size
                )
            except BatchInsertError as e:
                self.cursor.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                logger.warning("batch insert into %s failed, retrying row by row: %s", table, e)
                self._insert_rows_individually(table, columns, rows, records, result)
            else:
                for record, returned in zip(records, inserted.returned_values or []):
                    result.created.append({"id": returned[0], **record})
            self.cursor.execute(f"RELEASE SAVEPOINT {savepoint}")
        except Exception as e:
            raise StoreError(f"{table}: {e}") from e
        return result

    def _insert_rows_individually(
        self,
        table: str,
        columns: list[str],
        rows: list[tuple],
        records: Sequence[Mapping[str, Any]],
        result: CreateManyResult,
    ) -> None:
        for index, (row, record) in enumerate(zip(rows, records)):
            self.cursor.execute("SAVEPOINT row_insert")
            try:
                inserted = batch_insert(self.cursor, table, columns, [row], returning="id")
            except BatchInsertError as e:
                self.cursor.execute("ROLLBACK TO SAVEPOINT row_insert")
                result.failures.append(RowFailure(index=index, message=str(e).strip()))
                continue
            self.cursor.execute("RELEASE SAVEPOINT row_insert")
            returned = inserted.returned_values or [(None,)]
            result.created.append({"id": returned[0][0], **record})

    def _where(self, team_id: str, entity_type: EntityType, flt: RecordFilter) -> tuple[str, list[Any]]:
        clauses = ["team_id = %s"]
        params: list[Any] = [team_id]
        if flt.status is not None:
            clauses.append("lower(status) = lower(%s)")
            params.append(flt.status)
        if flt.client_name is not None:
            clauses.append("lower(client_name) = lower(%s)")
            params.append(flt.client_name)
        if flt.project_name is not None:
            clauses.append("lower(project_name) = lower(%s)")
            params.append(flt.project_name)
        if flt.contract_id is not None:
            clauses.append("id = %s" if entity_type is EntityType.CONTRACT else "contract_id = %s")
            params.append(flt.contract_id)
        date_col = _column(DATE_FIELD[entity_type])
        if flt.date_from is not None:
            clauses.append(f"{date_col} >= %s")
            params.append(flt.date_from)
        if flt.date_to is not None:
            clauses.append(f"{date_col} <= %s")
            params.append(flt.date_to)
        amount_col = _column(AMOUNT_FIELD[entity_type])
        if flt.min_amount is not None:
            clauses.append(f"{amount_col} >= %s")
            params.append(flt.min_amount)
        if flt.max_amount is not None:
            clauses.append(f"{amount_col} <= %s")
            params.append(flt.max_amount)
        return " AND ".join(clauses), params

    def find_many(self, team_id: str, entity_type: EntityType, flt: RecordFilter) -> list[dict[str, Any]]:
        field_names = ENTITY_FIELDS[entity_type]
        cols = ", ".join(["id"] + [_column(f) for f in field_names])
        where, params = self._where(team_id, entity_type, flt)
        try:
            self.cursor.execute(f"SELECT {cols} FROM {TABLES[entity_type]} WHERE {where}", params)
            fetched = self.cursor.fetchall()
        except Exception as e:
            raise StoreError(f"{TABLES[entity_type]}: {e}") from e
        records = []
        for row in fetched:
            record = {"id": row[0]}
            for name, value in zip(field_names, row[1:]):
                if isinstance(value, date):
                    value = value.isoformat()
                elif isinstance(value, Decimal):
                    value = float(value)
                record[name] = value
            records.append(record)
        return records

    def count(self, team_id: str, entity_type: EntityType, flt: RecordFilter) -> int:
        where, params = self._where(team_id, entity_type, flt)
        try:
            self.cursor.execute(f"SELECT count(*) FROM {TABLES[entity_type]} WHERE {where}", params)
            return int(self.cursor.fetchone()[0])
        except Exception as e:
            raise StoreError(f"{TABLES[entity_type]}: {e}") from e
