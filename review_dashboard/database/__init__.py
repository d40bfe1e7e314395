"""
Database Package

- base: the Database handle (query / query_one / execute / transaction)
- schema: table definitions
- settings: key/value settings store
- records: projects, merge requests, reviews and comments
"""

from review_dashboard.database.base import Database, DatabaseError
from review_dashboard.database.records import RecordStore
from review_dashboard.database.settings import SettingsStore

__all__ = [
    "Database",
    "DatabaseError",
    "RecordStore",
    "SettingsStore",
]
