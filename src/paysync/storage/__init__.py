"""Persistent store used by the scheduler and the reliability layer."""

from .base import Storage
from .duckdb_store import DuckDBStorage, open_storage

__all__ = ["DuckDBStorage", "Storage", "open_storage"]
