from __future__ import annotations

import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress reporting.

Two consumers:
- ``ProgressTracker``: a tqdm bar for CLI runs, only when stdout is a TTY
  (no ANSI noise in CI logs)
- ``ProgressStore``: session id -> latest ``ProgressSnapshot``, polled by a
  UI while an upload is processed. ``InMemoryProgressStore`` drops entries
  older than its TTL.
"""

__all__ = [
    "ProgressSnapshot",
    "ProgressStore",
    "InMemoryProgressStore",
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


@dataclass(frozen=True)
class ProgressSnapshot:
    total_files: int
    processed_files: int
    current_file: str | None = None
    status: str = "processing"  # processing | completed
    successful_files: int = 0
    failed_files: int = 0

    @property
    def percent(self) -> float:
        if self.total_files == 0:
            return 100.0
        return round(100.0 * self.processed_files / self.total_files, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "totalFiles": self.total_files,
            "processedFiles": self.processed_files,
            "currentFile": self.current_file,
            "successfulFiles": self.successful_files,
            "failedFiles": self.failed_files,
            "percent": self.percent,
        }


class ProgressStore(Protocol):
    def update(self, session_id: str, snapshot: ProgressSnapshot) -> None: ...

    def get(self, session_id: str) -> ProgressSnapshot | None: ...


class InMemoryProgressStore:
    """Thread-safe snapshot store with per-entry TTL (seconds since last update)."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, ProgressSnapshot]] = {}
        self._lock = threading.Lock()

    def update(self, session_id: str, snapshot: ProgressSnapshot) -> None:
        with self._lock:
            self._entries[session_id] = (self._clock(), snapshot)
            self._evict()

    def get(self, session_id: str) -> ProgressSnapshot | None:
        with self._lock:
            self._evict()
            entry = self._entries.get(session_id)
        return entry[1] if entry else None

    def __len__(self) -> int:
        with self._lock:
            self._evict()
            return len(self._entries)

    def _evict(self) -> None:
        now = self._clock()
        expired = [k for k, (ts, _) in self._entries.items() if now - ts > self.ttl_seconds]
        for key in expired:
            del self._entries[key]


class ProgressTracker:
    """tqdm bar over the files of a batch; a no-op outside a TTY."""

    def __init__(self, total_files: int, *, description: str = "Importing files") -> None:
        self.total_files = total_files
        self.description = description
        self.current_file = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_files,
                desc=description,
                unit="file",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def start_file(self, file_name: str) -> None:
        self.current_file += 1
        if self.pbar is not None:
            self.pbar.set_description(f"{self.description} ({file_name})")

    def finish_file(self, success: bool = True) -> None:
        if self.pbar is not None:
            self.pbar.update(1)
            self.pbar.set_description(self.description)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
