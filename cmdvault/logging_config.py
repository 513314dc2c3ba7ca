"""Logging setup for cmdvault.

Two log streams live under ``<data dir>/logs``:

- ``local-YYYY-MM-DD.log``: the ``cmdvault`` logger hierarchy
- ``sync-events-YYYY-MM-DD.log``: one line per push/pull/sync, for auditing
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from cmdvault.utils import get_cmdvault_home

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _log_dir() -> Path:
    log_dir = get_cmdvault_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_cmdvault_logging(profile: str = "default", level: str = "INFO") -> logging.Logger:
    """Configure the ``cmdvault`` logger with a dated file handler.

    Args:
        profile: Name recorded in the startup line
        level: Level name (case-insensitive). Invalid names fall back to INFO.

    Returns:
        The configured ``cmdvault`` logger. Calling this twice does not add
        duplicate handlers.
    """
    logger = logging.getLogger("cmdvault")
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        log_file = _log_dir() / f"local-{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if resolved <= logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console)

    logger.debug("Logging configured for profile=%s", profile)
    return logger


def log_sync_event(event_type: str, details: str, profile: str = "default") -> None:
    """Append one line to the sync events log."""
    log_file = _log_dir() / f"sync-events-{datetime.now().strftime('%Y-%m-%d')}.log"
    timestamp = datetime.now().isoformat(timespec="seconds")
    with open(log_file, "a", encoding="utf-8") as f:
        f.write(f"{timestamp} | {event_type} | profile={profile} | {details}\n")


def log_sync(
    profile: str,
    direction: str,
    count: int,
    errors: int = 0,
    version: Optional[int] = None,
) -> None:
    """Record a completed sync operation."""
    details = f"direction={direction}, count={count}, errors={errors}"
    if version is not None:
        details += f", version={version}"
    log_sync_event("sync", details, profile=profile)
