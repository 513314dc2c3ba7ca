"""Filesystem helpers for cmdvault."""

import os
from pathlib import Path


def get_cmdvault_home() -> Path:
    """Directory holding the database, config, credentials and logs.

    ``CMDVAULT_DATA_DIR`` overrides the default ``~/.cmdvault``.
    """
    override = os.environ.get("CMDVAULT_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".cmdvault"
