"""The remote payload: the JSON document shared between replicas.

Layout::

    {
      "version": "1.0",
      "commands": [ {...command...}, ... ],
      "exportedAt": "2026-01-01T00:00:00Z",
      "syncVersion": 3            # optional
    }

The same document is used for gist sync and for file import/export.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from cmdvault.protocols import InvalidPayload
from cmdvault.types import CommandRecord, format_datetime, parse_datetime, utc_now

PAYLOAD_FORMAT_VERSION = "1.0"

PAYLOAD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["commands"],
    "properties": {
        "version": {"type": "string"},
        "exportedAt": {"type": "string"},
        "syncVersion": {"type": "integer", "minimum": 0},
        "commands": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "syncId": {"type": "string", "minLength": 1},
                    "prompt": {"type": "string"},
                    "command": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}},
                    "shell": {"type": ["string", "null"]},
                    "isFavorite": {"type": "boolean"},
                    "source": {"type": ["string", "null"]},
                    "usageCount": {"type": "integer"},
                    "skipDestructiveWarning": {"type": "boolean"},
                    "createdAt": {"type": ["string", "null"]},
                    "updatedAt": {"type": "string"},
                    "lastUsedAt": {"type": ["string", "null"]},
                    "lastSyncedAt": {"type": ["string", "null"]},
                    "deletedAt": {"type": ["string", "null"]},
                },
            },
        },
    },
}

_validator = Draft7Validator(PAYLOAD_SCHEMA)


@dataclass
class SyncPayload:
    """A decoded remote/exported document."""

    commands: List[CommandRecord] = field(default_factory=list)
    exported_at: datetime = field(default_factory=utc_now)
    sync_version: Optional[int] = None
    version: str = PAYLOAD_FORMAT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "version": self.version,
            "commands": [c.to_dict() for c in self.commands],
            "exportedAt": format_datetime(self.exported_at),
        }
        if self.sync_version is not None:
            data["syncVersion"] = self.sync_version
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def parse_payload(data: Any) -> SyncPayload:
    """Validate and decode a payload.

    Args:
        data: A JSON string/bytes or an already-decoded object.

    Raises:
        InvalidPayload: Malformed JSON, a missing ``commands`` array, bad
            records, or two records sharing a ``syncId``.
    """
    if isinstance(data, (str, bytes, bytearray)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise InvalidPayload(f"Payload is not valid JSON: {e}") from e

    errors = sorted(_validator.iter_errors(data), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        path = ".".join(str(part) for part in first.path) or "(root)"
        raise InvalidPayload(f"Invalid payload at {path}: {first.message}")

    commands: List[CommandRecord] = []
    seen_keys = set()
    for index, item in enumerate(data["commands"]):
        try:
            record = CommandRecord.from_dict(item)
        except ValueError as e:
            raise InvalidPayload(f"Invalid command at commands.{index}: {e}") from e
        if record.key in seen_keys:
            raise InvalidPayload(f"Duplicate syncId in payload: {record.key}")
        seen_keys.add(record.key)
        commands.append(record)

    try:
        exported_at = parse_datetime(data.get("exportedAt")) or utc_now()
    except ValueError as e:
        raise InvalidPayload(f"Invalid exportedAt: {data.get('exportedAt')!r}") from e

    return SyncPayload(
        commands=commands,
        exported_at=exported_at,
        sync_version=data.get("syncVersion"),
        version=data.get("version") or PAYLOAD_FORMAT_VERSION,
    )
