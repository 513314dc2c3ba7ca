"""
Pytest fixtures and test configuration for cmdvault tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from cmdvault.storage import SQLiteStorage
from cmdvault.testing import InMemoryRemote
from cmdvault.types import CommandRecord

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point the data dir at a temp directory and clear credential env vars."""
    home = tmp_path / "cmdvault-home"
    monkeypatch.setenv("CMDVAULT_DATA_DIR", str(home))
    for name in (
        "CMDVAULT_GITHUB_TOKEN",
        "GITHUB_TOKEN",
        "CMDVAULT_SYNC_ENABLED",
        "CMDVAULT_CONFLICT_RESOLUTION",
        "CMDVAULT_GITHUB_API_URL",
        "CMDVAULT_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def storage(tmp_path):
    """Create a SQLiteStorage instance for testing."""
    return SQLiteStorage(db_path=tmp_path / "commands.db")


@pytest.fixture
def remote():
    """An in-memory remote blob client."""
    return InMemoryRemote()


@pytest.fixture
def at():
    """Fixed timestamps: ``at(5)`` is five minutes after 2026-01-01 12:00 UTC."""

    def _at(minutes: int) -> datetime:
        return T0 + timedelta(minutes=minutes)

    return _at


@pytest.fixture
def make_record(at):
    """Factory for CommandRecords with deterministic timestamps (in minutes)."""

    def _make(
        id: str,
        command: str = "ls -la",
        prompt: Optional[str] = None,
        updated: int = 0,
        synced: Optional[int] = None,
        deleted: Optional[int] = None,
        sync_id: Optional[str] = None,
        **kwargs,
    ) -> CommandRecord:
        return CommandRecord(
            id=id,
            sync_id=sync_id,
            prompt=prompt if prompt is not None else f"prompt for {id}",
            command=command,
            created_at=T0,
            updated_at=at(updated),
            last_synced_at=at(synced) if synced is not None else None,
            deleted_at=at(deleted) if deleted is not None else None,
            **kwargs,
        )

    return _make
