from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord

"""Structured error log.

Records are buffered in memory and appended as JSON Lines to
``logs/errors-YYYYMMDD-HHMMSS.log`` (UTC, one file per run) on ``flush``.
The line format is fixed by contracts/error_log_schema.json.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "LOGS_DIR",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer of ``ErrorRecord``; ``flush`` appends them to the run's file.

    The file is only created when there is something to write.
    """

    def __init__(self, logs_dir: Path | None = None) -> None:
        self.logs_dir = logs_dir or LOGS_DIR
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self.logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        with self._lock:
            self._records.append(record)

    def extend(self, records: Iterable[ErrorRecord]) -> None:
        with self._lock:
            self._records.extend(records)

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records; returns the log path, or None if nothing was written."""
        with self._lock:
            if not self._records:
                return None
            records, self._records = self._records, []
        fp = self.file_path
        fp.parent.mkdir(parents=True, exist_ok=True)
        with fp.open("a", encoding="utf-8") as f:
            for r in records:
                f.write(r.to_json_line() + "\n")
        return fp
