"""Merge engine: combine two snapshots into one unified snapshot.

Both entry points build a dict keyed by sync id, then drop tombstones in a
final pass. Every surviving record carries a ``sync_id`` and a fresh
``last_synced_at``.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Set

from cmdvault.protocols import ResolutionCancelled
from cmdvault.types import CommandRecord, ConflictKind, Resolution, SyncConflict, stamp_synced, utc_now

from .detector import index_by_key

logger = logging.getLogger(__name__)

KEEP_BOTH_LABEL_SUFFIX = " (from sync)"


def pick_newer(local: CommandRecord, remote: CommandRecord) -> CommandRecord:
    """Last-write-wins for a pair sharing a key. Ties favour local."""
    if local.content_hash == remote.content_hash:
        return local
    if remote.updated_at > local.updated_at:
        return remote
    return local


def _live(merged: Dict[str, CommandRecord]) -> List[CommandRecord]:
    return [record for record in merged.values() if not record.is_deleted]


def _union(
    local_index: Dict[str, CommandRecord],
    remote_index: Dict[str, CommandRecord],
    now: datetime,
    skip: Set[str] = frozenset(),
) -> Dict[str, CommandRecord]:
    merged: Dict[str, CommandRecord] = {}
    for key, record in local_index.items():
        if key in skip:
            continue
        other = remote_index.get(key)
        chosen = pick_newer(record, other) if other is not None else record
        merged[key] = stamp_synced(chosen, now, sync_id=key)
    for key, record in remote_index.items():
        if key in skip or key in merged:
            continue
        merged[key] = stamp_synced(record, now, sync_id=key)
    return merged


def merge_no_conflict(
    local: Iterable[CommandRecord],
    remote: Iterable[CommandRecord],
    now: Optional[datetime] = None,
) -> List[CommandRecord]:
    """Union two conflict-free snapshots with last-write-wins per key.

    Only valid when ``detect_conflicts(local, remote)`` is empty.
    """
    now = now or utc_now()
    merged = _union(index_by_key(local), index_by_key(remote), now)
    return _live(merged)


def keep_both_key(conflict: SyncConflict) -> str:
    """Deterministic key for the duplicated remote copy of a keep-both resolution."""
    return f"{conflict.sync_id}_remote_{conflict.remote.content_hash[:8]}"


def apply_resolutions(
    conflicts: List[SyncConflict],
    resolutions: Mapping[str, Resolution],
    local: Iterable[CommandRecord],
    remote: Iterable[CommandRecord],
    now: Optional[datetime] = None,
) -> List[CommandRecord]:
    """Build the unified snapshot from human-chosen resolutions.

    Args:
        conflicts: Output of ``detect_conflicts`` for the same snapshots.
        resolutions: One choice per conflict, keyed by sync id.
        local: Local snapshot.
        remote: Remote snapshot.
        now: Sync timestamp (defaults to the current time).

    Raises:
        ResolutionCancelled: If any conflict has no resolution.
    """
    missing = [c.sync_id for c in conflicts if c.sync_id not in resolutions]
    if missing:
        raise ResolutionCancelled(
            f"Sync cancelled: {len(missing)} conflict(s) left unresolved ({', '.join(missing[:5])})"
        )

    now = now or utc_now()
    conflict_keys = {c.sync_id for c in conflicts}
    merged = _union(index_by_key(local), index_by_key(remote), now, skip=conflict_keys)

    for conflict in conflicts:
        choice = Resolution(resolutions[conflict.sync_id])
        key = conflict.sync_id

        if choice == Resolution.KEEP_LOCAL:
            merged[key] = stamp_synced(conflict.local, now, sync_id=key)
        elif choice == Resolution.KEEP_REMOTE:
            merged[key] = stamp_synced(conflict.remote, now, sync_id=key)
        elif conflict.kind != ConflictKind.MODIFIED:
            # Nothing to duplicate when one side is a tombstone: keep the live side.
            live = conflict.remote if conflict.local.is_deleted else conflict.local
            merged[key] = stamp_synced(live, now, sync_id=key)
        else:
            merged[key] = stamp_synced(conflict.local, now, sync_id=key)
            copy_key = keep_both_key(conflict)
            if copy_key in merged:
                logger.warning("Keep-both copy %s already present, overwriting", copy_key)
            copy = replace(
                conflict.remote,
                id=copy_key,
                prompt=f"{conflict.remote.prompt}{KEEP_BOTH_LABEL_SUFFIX}",
            )
            merged[copy_key] = stamp_synced(copy, now, sync_id=copy_key)

        logger.debug("Resolved %s (%s) with %s", key, conflict.kind.value, choice.value)

    return _live(merged)
