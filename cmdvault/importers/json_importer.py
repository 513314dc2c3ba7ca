"""JSON import/export for the command library.

Uses the same document as gist sync, so a file written by
``cmdvault sync export`` can be imported on another machine or pasted
into a gist by hand.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from cmdvault.sync.payload import SyncPayload, parse_payload
from cmdvault.types import CommandRecord, utc_now

if TYPE_CHECKING:
    from cmdvault.storage import SQLiteStorage

logger = logging.getLogger(__name__)


class JsonImporter:
    """Import commands from a cmdvault JSON export file."""

    def __init__(self, file_path: str):
        self.file_path = Path(file_path).expanduser()
        self.payload: Optional[SyncPayload] = None

    def parse(self) -> List[CommandRecord]:
        """Read and validate the file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            InvalidPayload: If the file is not a valid command payload
        """
        if not self.file_path.exists():
            raise FileNotFoundError(f"File not found: {self.file_path}")

        content = self.file_path.read_text(encoding="utf-8")
        self.payload = parse_payload(content)
        return self.payload.commands

    def import_to(self, storage: "SQLiteStorage", merge: bool = True) -> Dict[str, Any]:
        """Write the parsed commands into ``storage``.

        Args:
            storage: Destination store
            merge: Merge-write (newer ``updated_at`` wins) instead of
                replacing the whole library

        Returns:
            Dict with ``total`` records in the file and ``written`` records
        """
        if self.payload is None:
            self.parse()

        commands = [c for c in self.payload.commands if not c.is_deleted]
        if merge:
            written = storage.merge_write(commands)
        else:
            written = storage.replace_all(commands)

        skipped = len(self.payload.commands) - len(commands)
        logger.info("Imported %d/%d commands from %s", written, len(self.payload.commands), self.file_path)
        return {
            "total": len(self.payload.commands),
            "written": written,
            "skipped_deleted": skipped,
            "mode": "merge" if merge else "replace",
        }


def export_to_file(storage: "SQLiteStorage", file_path: str) -> int:
    """Write every live command to ``file_path`` as a sync payload.

    Returns:
        Number of commands exported
    """
    path = Path(file_path).expanduser()
    commands = storage.list_commands()
    payload = SyncPayload(commands=commands, exported_at=utc_now())
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload.to_json() + "\n", encoding="utf-8")
    logger.info("Exported %d commands to %s", len(commands), path)
    return len(commands)
