"""Storage layer for Lorekeeper.

This module provides the SQLite backend and the repositories built on it.
"""

from lorekeeper.storage.repositories import (
    SQLiteInteractionLog,
    SQLiteNarrativeStore,
    SQLiteTagStore,
    SQLiteTemplateStore,
)
from lorekeeper.storage.sqlite import SQLiteStorage

__all__ = [
    "SQLiteStorage",
    "SQLiteNarrativeStore",
    "SQLiteTagStore",
    "SQLiteTemplateStore",
    "SQLiteInteractionLog",
]
