"""
cmdvault - A local library of shell commands, synced through a private gist.
"""

from .storage import SQLiteStorage
from .sync import SyncEngine

try:
    from importlib.metadata import version

    __version__ = version("cmdvault")
except Exception:
    __version__ = "0.0.0"

__all__ = ["SQLiteStorage", "SyncEngine"]
