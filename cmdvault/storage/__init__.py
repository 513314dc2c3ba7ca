"""cmdvault storage backends.

Local-first storage using SQLite.
"""

from cmdvault.types import CommandRecord, ConflictRecord

from .sqlite import SQLiteStorage

__all__ = ["CommandRecord", "ConflictRecord", "SQLiteStorage"]
