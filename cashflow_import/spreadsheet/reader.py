from __future__ import annotations

import io
from enum import Enum
from pathlib import Path
from typing import Any

import pandas as pd

"""Workbook reading and file type detection.

Spreadsheets are read raw (``header=None``): header detection happens later
in the processor because real-world sheets carry title rows, notes and
blank lines above the header. Each sheet is returned as a 2D list with
empty cells normalized to ``None``.
"""

__all__ = [
    "FileKind",
    "SPREADSHEET_EXTENSIONS",
    "UnsupportedFileTypeError",
    "WorkbookReadError",
    "decode_text",
    "detect_file_type",
    "image_media_type",
    "read_workbook",
]

SPREADSHEET_EXTENSIONS = (".csv", ".xlsx", ".xls")
PDF_EXTENSIONS = (".pdf",)
IMAGE_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}
TEXT_EXTENSIONS = (".txt", ".md")


class UnsupportedFileTypeError(Exception):
    """Raised for files that no parser branch accepts."""

    def __init__(self, filename: str) -> None:
        super().__init__(
            f"Unsupported file type: {filename}. Supported types: {', '.join(SPREADSHEET_EXTENSIONS)}"
        )
        self.filename = filename


class WorkbookReadError(Exception):
    """Raised when a workbook/CSV cannot be decoded at all."""


class FileKind(str, Enum):
    SPREADSHEET = "spreadsheet"
    PDF = "pdf"
    IMAGE = "image"
    TEXT = "text"
    UNKNOWN = "unknown"


def detect_file_type(filename: str, data: bytes | None = None) -> FileKind:
    """Classify by extension, falling back to magic bytes."""
    ext = Path(filename).suffix.lower()
    if ext in SPREADSHEET_EXTENSIONS:
        return FileKind.SPREADSHEET
    if ext in PDF_EXTENSIONS:
        return FileKind.PDF
    if ext in IMAGE_MEDIA_TYPES:
        return FileKind.IMAGE
    if ext in TEXT_EXTENSIONS:
        return FileKind.TEXT

    if data:
        head = data[:8]
        if head.startswith(b"%PDF"):
            return FileKind.PDF
        if head.startswith(b"\x89PNG") or head.startswith(b"\xff\xd8") or head.startswith(b"GIF8"):
            return FileKind.IMAGE
    return FileKind.UNKNOWN


def image_media_type(filename: str, data: bytes | None = None) -> str:
    ext = Path(filename).suffix.lower()
    if ext in IMAGE_MEDIA_TYPES:
        return IMAGE_MEDIA_TYPES[ext]
    if data:
        if data.startswith(b"\xff\xd8"):
            return "image/jpeg"
        if data.startswith(b"GIF8"):
            return "image/gif"
    return "image/png"


def decode_text(data: bytes) -> str:
    # exports from Excel pt-BR are often cp1252/latin-1
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _detect_delimiter(text: str) -> str:
    sample = [line for line in text.splitlines()[:10] if line.strip()]
    semicolons = sum(line.count(";") for line in sample)
    commas = sum(line.count(",") for line in sample)
    return ";" if semicolons > commas else ","


def _cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _frame_to_rows(df: pd.DataFrame) -> list[list[Any]]:
    return [[_cell(v) for v in row] for row in df.itertuples(index=False, name=None)]


def _read_csv(data: bytes) -> dict[str, list[list[Any]]]:
    text = decode_text(data)
    if not text.strip():
        return {"Sheet1": []}
    delimiter = _detect_delimiter(text)
    # ragged rows (title lines with one cell) need the widest line as column count
    width = max(line.count(delimiter) + 1 for line in text.splitlines() or [""])
    df = pd.read_csv(
        io.StringIO(text),
        sep=delimiter,
        header=None,
        names=range(width),
        dtype=object,
        engine="python",
        na_filter=False,
        skip_blank_lines=False,
    )
    return {"Sheet1": _frame_to_rows(df)}


def _read_excel(data: bytes) -> dict[str, list[list[Any]]]:
    sheets: dict[str, list[list[Any]]] = {}
    with pd.ExcelFile(io.BytesIO(data)) as xls:
        for name in xls.sheet_names:
            df = xls.parse(name, header=None, dtype=object)
            sheets[str(name)] = _frame_to_rows(df)
    return sheets


def read_workbook(data: bytes, filename: str) -> dict[str, list[list[Any]]]:
    """Read CSV/XLSX/XLS bytes into ``{sheet name: rows}``.

    Raises:
        UnsupportedFileTypeError: extension is not a spreadsheet extension
        WorkbookReadError: the bytes could not be parsed
    """
    ext = Path(filename).suffix.lower()
    if ext not in SPREADSHEET_EXTENSIONS:
        raise UnsupportedFileTypeError(filename)
    try:
        if ext == ".csv":
            return _read_csv(data)
        return _read_excel(data)
    except Exception as e:
        raise WorkbookReadError(f"could not read {filename}: {e}") from e
