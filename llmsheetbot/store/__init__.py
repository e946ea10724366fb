"""Tabular store adapters."""

from .base import TabularStore, UpdateRequest, build_store
from .memory import InMemoryStore
from .csv_store import CsvFileStore
from .sheets import GoogleSheetsStore

__all__ = [
    "TabularStore",
    "UpdateRequest",
    "build_store",
    "InMemoryStore",
    "CsvFileStore",
    "GoogleSheetsStore",
]
