"""Domain models for the financial document importer.

Entity candidates, spreadsheet processing structures, error records and
result summaries shared by the spreadsheet, extraction and commit stages.
"""

from .entities import EntityOrigin, EntitySource, EntityType, ExtractedEntity, RowType
from .error_record import ErrorRecord, ErrorType
from .processing_result import BatchResult, CommitResult, FileResult, FileStatus
from .sheet import ColumnMapping, DataSection, FileReadResult, ProcessedRow, ProcessedSheet, SheetTable

__all__ = [
    # Entity candidates
    "EntityOrigin",
    "EntitySource",
    "EntityType",
    "ExtractedEntity",
    "RowType",
    # Spreadsheet processing
    "ColumnMapping",
    "DataSection",
    "FileReadResult",
    "ProcessedRow",
    "ProcessedSheet",
    "SheetTable",
    # Errors and results
    "ErrorRecord",
    "ErrorType",
    "BatchResult",
    "CommitResult",
    "FileResult",
    "FileStatus",
]
