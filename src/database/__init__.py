"""
Persistence layer for the filing wizard.

Provides filing storage backends (in-memory and SQLite) behind the
FilingStore interface used by wizard sessions.
"""

from .filing_persistence import (
    DuplicateRecordError,
    FilingNotFoundError,
    FilingStore,
    FilingStoreError,
    InMemoryFilingStore,
    SQLiteFilingStore,
    generate_reference_number,
)

__all__ = [
    "DuplicateRecordError",
    "FilingNotFoundError",
    "FilingStore",
    "FilingStoreError",
    "InMemoryFilingStore",
    "SQLiteFilingStore",
    "generate_reference_number",
]
