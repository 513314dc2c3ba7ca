"""Conflict detection between two replica snapshots."""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from cmdvault.types import EPOCH, CommandRecord, ConflictKind, SyncConflict

logger = logging.getLogger(__name__)


def index_by_key(records: Iterable[CommandRecord]) -> Dict[str, CommandRecord]:
    """Map each record's sync key to the record, keeping snapshot order.

    Raises:
        ValueError: If two records in one snapshot share a key.
    """
    indexed: Dict[str, CommandRecord] = {}
    for record in records:
        if record.key in indexed:
            raise ValueError(f"Duplicate sync id in snapshot: {record.key}")
        indexed[record.key] = record
    return indexed


def changed_since_sync(record: CommandRecord, baseline: Optional[datetime] = None) -> bool:
    """True when the record was edited after ``baseline`` (epoch if absent)."""
    return record.updated_at > (baseline or EPOCH)


def classify(local: CommandRecord, remote: CommandRecord):
    """Return the ConflictKind for a pair sharing a key, or None if they merge cleanly.

    Both sides are measured against the local record's ``last_synced_at``.
    The remote copy's own stamp belongs to whichever replica published it.
    """
    if local.is_deleted and remote.is_deleted:
        # Unanimous deletion; the record is simply dropped.
        return None
    if local.is_deleted:
        return ConflictKind.DELETED_LOCAL
    if remote.is_deleted:
        return ConflictKind.DELETED_REMOTE
    if local.content_hash == remote.content_hash:
        return None
    baseline = local.last_synced_at
    if changed_since_sync(local, baseline) and changed_since_sync(remote, baseline):
        return ConflictKind.MODIFIED
    # Only one side moved: a directional update for the merge engine.
    return None


def detect_conflicts(
    local: Iterable[CommandRecord], remote: Iterable[CommandRecord]
) -> List[SyncConflict]:
    """Compare two snapshots and list the records needing a human decision.

    Records present on one side only are additions, never conflicts. The
    result follows local snapshot order and names each key at most once.
    """
    local_index = index_by_key(local)
    remote_index = index_by_key(remote)

    conflicts: List[SyncConflict] = []
    for key, local_record in local_index.items():
        remote_record = remote_index.get(key)
        if remote_record is None:
            continue
        kind = classify(local_record, remote_record)
        if kind is not None:
            conflicts.append(
                SyncConflict(sync_id=key, local=local_record, remote=remote_record, kind=kind)
            )

    if conflicts:
        logger.debug(
            "Detected %d conflicts: %s",
            len(conflicts),
            ", ".join(f"{c.sync_id}:{c.kind.value}" for c in conflicts),
        )
    return conflicts
