"""Financial spreadsheet and document importer for ArqCashflow teams."""

__version__ = "0.1.0"
