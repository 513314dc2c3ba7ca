"""
Shared types for cmdvault.

The command record and the sync vocabulary (conflicts, resolutions,
results) live here. Storage, the sync engine, importers and the CLI all
speak in these dataclasses.
"""

import hashlib
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# === Shared Utility Functions ===

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string, treating naive values as UTC.

    Raises:
        TypeError: If ``s`` is neither a string nor a datetime.
        ValueError: If ``s`` is not ISO 8601.
    """
    if s is None or s == "":
        return None
    if isinstance(s, datetime):
        dt = s
    elif not isinstance(s, str):
        raise TypeError(f"expected an ISO datetime string, got {type(s).__name__}")
    else:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime for storage and the wire."""
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def generate_command_id() -> str:
    """Generate a new local command id."""
    return f"cmd_{uuid.uuid4().hex}"


# === Enums ===


class CommandSource(str, Enum):
    """How a command entered the library."""

    MANUAL = "manual"
    AI = "ai"
    IMPORTED = "imported"
    SHARED = "shared"


class ConflictKind(str, Enum):
    """Why a record pair could not be merged automatically."""

    MODIFIED = "modified"  # Both sides changed since their last sync
    DELETED_LOCAL = "deleted_local"  # Tombstoned locally, live remotely
    DELETED_REMOTE = "deleted_remote"  # Tombstoned remotely, live locally


class Resolution(str, Enum):
    """A human choice for one conflict."""

    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"
    KEEP_BOTH = "keep_both"


VALID_RESOLUTION_VALUES = frozenset(r.value for r in Resolution)


class SyncState(str, Enum):
    """Orchestrator states. IDLE is both initial and terminal."""

    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    FETCHING_REMOTE = "fetching_remote"
    NO_CONFLICT = "no_conflict"
    RESOLVING_CONFLICTS = "resolving_conflicts"
    MERGING = "merging"
    PUSHING = "pushing"
    FAILED = "failed"


# === Command Record ===

# Wire names for the record fields. Everything not listed is dropped on decode.
_WIRE_FIELDS = {
    "id": "id",
    "sync_id": "syncId",
    "prompt": "prompt",
    "command": "command",
    "tags": "tags",
    "shell": "shell",
    "is_favorite": "isFavorite",
    "source": "source",
    "usage_count": "usageCount",
    "skip_destructive_warning": "skipDestructiveWarning",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "last_used_at": "lastUsedAt",
    "last_synced_at": "lastSyncedAt",
    "deleted_at": "deletedAt",
}

_DATETIME_FIELDS = frozenset(
    {"created_at", "updated_at", "last_used_at", "last_synced_at", "deleted_at"}
)


@dataclass
class CommandRecord:
    """A saved shell command, the unit being synchronized.

    ``sync_id`` is the cross-replica matching key. It is assigned from ``id``
    the first time a record is synced and never changes afterwards.
    """

    id: str
    prompt: str  # What the user asked for; the human-visible label
    command: str  # The shell command itself
    tags: List[str] = field(default_factory=list)
    shell: Optional[str] = None
    is_favorite: bool = False
    source: str = CommandSource.MANUAL.value
    usage_count: int = 0
    skip_destructive_warning: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    last_used_at: Optional[datetime] = None
    # Sync metadata
    sync_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        """Cross-replica matching key (``sync_id``, or ``id`` before first sync)."""
        return self.sync_id or self.id

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def content_hash(self) -> str:
        """Digest of the user-visible content, recomputed on every access."""
        return content_hash(self)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase wire format."""
        data: Dict[str, Any] = {}
        for attr, wire in _WIRE_FIELDS.items():
            value = getattr(self, attr)
            if attr in _DATETIME_FIELDS:
                value = format_datetime(value)
            elif attr == "tags":
                value = list(value)
            if value is None:
                continue
            data[wire] = value
        data["syncHash"] = self.content_hash
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommandRecord":
        """Build a record from the wire format.

        Raises:
            ValueError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise ValueError(f"command must be an object, got {type(data).__name__}")
        if not data.get("id"):
            raise ValueError("command is missing an id")

        kwargs: Dict[str, Any] = {}
        for attr, wire in _WIRE_FIELDS.items():
            if wire not in data or data[wire] is None:
                continue
            value = data[wire]
            if attr in _DATETIME_FIELDS:
                try:
                    value = parse_datetime(value)
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"invalid {wire} timestamp: {value!r}") from exc
            kwargs[attr] = value

        kwargs.setdefault("prompt", "")
        kwargs.setdefault("command", "")
        kwargs["tags"] = [str(t) for t in kwargs.get("tags") or []]
        if "updated_at" not in kwargs:
            kwargs["updated_at"] = kwargs.get("created_at") or EPOCH
        return cls(**kwargs)


def content_hash(record: CommandRecord) -> str:
    """SHA-256 over the fields a user edits.

    Tag order does not matter; sync metadata and usage counters are ignored.
    """
    content = "|".join(
        [
            record.prompt,
            record.command,
            ",".join(sorted(record.tags)),
            record.shell or "",
            str(bool(record.is_favorite)).lower(),
        ]
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def stamp_synced(record: CommandRecord, now: datetime, sync_id: Optional[str] = None) -> CommandRecord:
    """Return a copy carrying a ``sync_id`` and a refreshed ``last_synced_at``.

    ``last_synced_at`` never moves backwards for a lineage, even with clock skew.
    """
    synced_at = now
    if record.last_synced_at and record.last_synced_at > now:
        synced_at = record.last_synced_at
    return replace(record, sync_id=sync_id or record.key, last_synced_at=synced_at)


# === Sync Types ===


@dataclass
class SyncConflict:
    """A record that changed on both replicas in incompatible ways."""

    sync_id: str
    local: CommandRecord
    remote: CommandRecord
    kind: ConflictKind

    @property
    def label(self) -> str:
        return {
            ConflictKind.MODIFIED: "Modified on both sides",
            ConflictKind.DELETED_LOCAL: "Deleted locally, still present remotely",
            ConflictKind.DELETED_REMOTE: "Deleted remotely, still present locally",
        }[self.kind]


@dataclass
class ConflictRecord:
    """A resolved conflict kept in local history for user visibility."""

    id: str
    sync_id: str
    kind: str
    resolution: str
    resolved_at: datetime
    local_version: Dict[str, Any]
    remote_version: Dict[str, Any]
    local_summary: Optional[str] = None
    remote_summary: Optional[str] = None
    diff_hash: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of a push, pull or sync operation."""

    operation: str
    success: bool = False
    pushed: int = 0  # Records transmitted to the remote blob
    pulled: int = 0  # Records received from the remote blob
    conflicts: List[SyncConflict] = field(default_factory=list)
    sync_version: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # SyncError.kind of the failure

    @property
    def conflict_count(self) -> int:
        return len(self.conflicts)
