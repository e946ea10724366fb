"""Spreadsheet-driven answer generation with cooperative workers."""

__version__ = "0.4.0"
