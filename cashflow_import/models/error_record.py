from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for structured error logging.

One record per problem found while importing a file: an unsupported
format, a sheet without header, a rejected entity, a failed insert. Records
are written as JSON Lines by ``ErrorLogBuffer`` and rendered as the
human-readable strings returned in ``summary.errors``.

``row`` uses -1 as the sentinel for file- or sheet-level errors, and
``sheet`` is empty when the error is not tied to a sheet (documents, AI
responses). The JSON shape is fixed by contracts/error_log_schema.json.
"""

__all__ = [
    "ErrorRecord",
    "ErrorType",
]


class ErrorType:
    UNSUPPORTED_FILE_TYPE = "UNSUPPORTED_FILE_TYPE"
    WORKBOOK_READ_ERROR = "WORKBOOK_READ_ERROR"
    SHEET_ERROR = "SHEET_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    AI_UPSTREAM_ERROR = "AI_UPSTREAM_ERROR"
    AI_RESPONSE_ERROR = "AI_RESPONSE_ERROR"
    INSERT_ERROR = "INSERT_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

    # errors that fail the whole unit (file / chunk / entity type batch)
    SYSTEMATIC = frozenset({
        UNSUPPORTED_FILE_TYPE,
        WORKBOOK_READ_ERROR,
        AI_UPSTREAM_ERROR,
        AI_RESPONSE_ERROR,
        PERSISTENCE_ERROR,
        UNEXPECTED_ERROR,
    })


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: name of the uploaded file
        sheet: sheet name, empty for non-spreadsheet sources
        row: 1-based source row, -1 when not row-specific
        error_type: UPPER_SNAKE classification (see ErrorType)
        message: description shown to the user
    """
    timestamp: str
    file: str
    sheet: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(file: str, sheet: str | None, row: int | None, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            sheet=sheet or "",
            row=-1 if row is None else row,
            error_type=error_type,
            message=message,
        )

    @property
    def is_systematic(self) -> bool:
        return self.error_type in ErrorType.SYSTEMATIC

    def describe(self) -> str:
        """Render as the user-facing error string, e.g. ``Contratos row 7: amount must be positive``."""
        location = []
        if self.sheet:
            location.append(self.sheet)
        if self.row >= 0:
            location.append(f"row {self.row}")
        if location:
            return f"{' '.join(location)}: {self.message}"
        return self.message

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
