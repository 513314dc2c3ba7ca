"""Sync orchestrator for the command library.

SyncEngine drives push, pull and full two-way sync between the local
record store and the remote blob. It owns the remote handle and the
monotonic sync version; both are loaded from the injected MetaStore at
construction and written back after each change.

Flow of ``sync()``::

    IDLE -> AUTHENTICATING -> FETCHING_REMOTE
         -> NO_CONFLICT | RESOLVING_CONFLICTS -> MERGING -> PUSHING -> IDLE

Any failure moves the engine to FAILED and is reported in the SyncResult.
"""

import hashlib
import logging
import uuid
from typing import Callable, Dict, List, Mapping, Optional, Union

from cmdvault.logging_config import log_sync
from cmdvault.protocols import (
    AuthenticationFailed,
    ConflictResolver,
    HandleNotFound,
    MetaStore,
    RecordStore,
    RemoteBlobClient,
    StorageError,
    SyncError,
    SyncInProgressError,
    TransportError,
)
from cmdvault.types import (
    CommandRecord,
    ConflictRecord,
    Resolution,
    SyncConflict,
    SyncResult,
    SyncState,
    format_datetime,
    stamp_synced,
    utc_now,
)

from .detector import detect_conflicts
from .merge import apply_resolutions, merge_no_conflict
from .payload import SyncPayload
from .resolution import coerce_resolution, resolve_conflicts

logger = logging.getLogger(__name__)

META_REMOTE_HANDLE = "remote_handle"
META_SYNC_VERSION = "sync_version"
META_LAST_SYNC_TIME = "last_sync_time"

SUMMARY_LENGTH = 80


class SyncEngine:
    """Push/pull/sync orchestration with conflict detection and resolution.

    Args:
        store: The local replica.
        meta: Persistent key/value store for the handle and version counter.
        client: Remote blob client.
        resolver: Default conflict resolver used by ``sync()``.
        profile: Name used in the sync events log.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        store: RecordStore,
        meta: MetaStore,
        client: RemoteBlobClient,
        resolver: Optional[ConflictResolver] = None,
        profile: str = "default",
        clock: Callable = utc_now,
    ):
        self.store = store
        self.meta = meta
        self.client = client
        self.resolver = resolver
        self.profile = profile
        self._clock = clock
        self.state = SyncState.IDLE

        self.sync_version = self._load_version()
        self.remote_handle = meta.get_meta(META_REMOTE_HANDLE) or None
        if self.remote_handle:
            client.adopt_handle(self.remote_handle)

    # === Persistent counters ===

    def _load_version(self) -> int:
        raw = self.meta.get_meta(META_SYNC_VERSION)
        if not raw:
            return 0
        try:
            return int(raw)
        except ValueError:
            logger.warning("Ignoring corrupt sync_version %r", raw)
            return 0

    def _set_version(self, version: int) -> None:
        self.sync_version = version
        self.meta.set_meta(META_SYNC_VERSION, str(version))

    def _set_handle(self, handle: Optional[str]) -> None:
        self.remote_handle = handle or None
        if self.remote_handle:
            self.meta.set_meta(META_REMOTE_HANDLE, self.remote_handle)
        else:
            self.meta.delete_meta(META_REMOTE_HANDLE)

    def _clear_handle(self) -> None:
        self.client.clear_handle()
        self._set_handle(None)

    # === State machine ===

    def _transition(self, state: SyncState) -> None:
        logger.debug("Sync state %s -> %s", self.state.value, state.value)
        self.state = state

    def _run(self, operation: str, body: Callable[[SyncResult], None]) -> SyncResult:
        if self.state not in (SyncState.IDLE, SyncState.FAILED):
            raise SyncInProgressError(f"Cannot {operation}: sync already in progress ({self.state.value})")

        result = SyncResult(operation=operation)
        try:
            body(result)
        except SyncError as e:
            self._fail(result, str(e), e.kind)
        except StorageError as e:
            self._fail(result, str(e), "storage_error")
        except Exception:
            self._transition(SyncState.FAILED)
            raise
        else:
            result.success = True
            self._transition(SyncState.IDLE)
        result.sync_version = self.sync_version
        return result

    def _fail(self, result: SyncResult, message: str, kind: str) -> None:
        logger.warning("%s failed in state %s: %s", result.operation, self.state.value, message)
        self._transition(SyncState.FAILED)
        result.error = message
        result.error_kind = kind

    # === Shared steps ===

    def _authenticate(self) -> str:
        self._transition(SyncState.AUTHENTICATING)
        credential = self.client.authenticate()
        if not credential:
            raise AuthenticationFailed(
                "No GitHub token configured. Set CMDVAULT_GITHUB_TOKEN or add it to credentials.json"
            )
        return credential

    def _resolve_handle(self, credential: str) -> bool:
        """Make sure the client has a handle, searching by marker if needed."""
        if self.client.has_handle():
            return True
        if self.client.find_existing(credential):
            self._set_handle(self.client.handle)
            return True
        return False

    def _transmit(self, credential: str, payload: SyncPayload) -> None:
        if not self.client.has_handle():
            self.client.create(credential, payload)
            return
        try:
            self.client.update(credential, payload)
        except HandleNotFound:
            logger.warning("Remote gist %s is gone, recreating", self.client.handle)
            self._clear_handle()
            try:
                self.client.create(credential, payload)
            except HandleNotFound as e:
                raise TransportError(f"Recreating remote library failed: {e}", e.status_code) from e

    def _publish(
        self,
        result: SyncResult,
        credential: str,
        records: List[CommandRecord],
        remote_version: Optional[int] = None,
    ) -> None:
        """Transmit ``records`` with a bumped version, then persist locally.

        The new version is one past the larger of the local counter and
        ``remote_version``. Nothing local changes unless the remote confirmed
        the write.
        """
        self._transition(SyncState.PUSHING)
        now = self._clock()
        records = [stamp_synced(r, now) for r in records if not r.is_deleted]
        version = max(self.sync_version, remote_version or 0) + 1
        payload = SyncPayload(commands=records, exported_at=now, sync_version=version)

        self._transmit(credential, payload)

        self._set_handle(self.client.handle)
        self._set_version(version)
        self.store.replace_all(records)
        self.meta.set_meta(META_LAST_SYNC_TIME, format_datetime(now))
        result.pushed = len(records)
        logger.info("Pushed %d commands (version %d)", len(records), version)

    def _adopt_remote_version(self, payload: SyncPayload) -> None:
        if payload.sync_version is not None and payload.sync_version > self.sync_version:
            self._set_version(payload.sync_version)

    def _record_sync(self, direction: str, count: int, errors: int = 0) -> None:
        try:
            log_sync(self.profile, direction, count, errors=errors, version=self.sync_version)
        except OSError as e:
            logger.debug("Could not write sync event log: %s", e)

    # === Operations ===

    def push(self) -> SyncResult:
        """Overwrite the remote library with the local one."""

        def body(result: SyncResult) -> None:
            credential = self._authenticate()
            self._publish(result, credential, self.store.read_all())
            self._record_sync("push", result.pushed)

        return self._run("push", body)

    def pull(self) -> SyncResult:
        """Merge the remote library into the local one; newer ``updated_at`` wins."""

        def body(result: SyncResult) -> None:
            credential = self._authenticate()
            self._transition(SyncState.FETCHING_REMOTE)
            if not self._resolve_handle(credential):
                raise HandleNotFound("No remote command library found. Push first to create one.")
            try:
                payload = self.client.fetch(credential)
            except HandleNotFound:
                self._clear_handle()
                raise
            if payload is None:
                raise HandleNotFound("Remote library has no command file. Push first to create one.")

            self._transition(SyncState.MERGING)
            now = self._clock()
            incoming = [stamp_synced(r, now) for r in payload.commands]
            written = self.store.merge_write(incoming)
            self._adopt_remote_version(payload)
            self.meta.set_meta(META_LAST_SYNC_TIME, format_datetime(now))
            result.pulled = len(incoming)
            logger.info("Pulled %d commands, %d written", len(incoming), written)
            self._record_sync("pull", result.pulled)

        return self._run("pull", body)

    def sync(
        self,
        resolver: Optional[ConflictResolver] = None,
        resolutions: Optional[Mapping[str, Union[str, Resolution]]] = None,
    ) -> SyncResult:
        """Two-way sync: fetch, detect, resolve or merge, then publish.

        Args:
            resolver: Asked for conflicts not covered by ``resolutions``.
                Falls back to the engine's resolver.
            resolutions: Pre-chosen answers keyed by sync id.

        Cancelling resolution leaves both replicas untouched.
        """

        def body(result: SyncResult) -> None:
            credential = self._authenticate()
            self._transition(SyncState.FETCHING_REMOTE)
            payload = None
            if self._resolve_handle(credential):
                try:
                    payload = self.client.fetch(credential)
                except HandleNotFound:
                    logger.warning("Remote gist %s is gone, publishing a new one", self.client.handle)
                    self._clear_handle()

            local = self.store.read_all()
            if payload is None:
                logger.info("No remote library yet, pushing local commands")
                self._publish(result, credential, local)
                self._record_sync("push", result.pushed)
                return

            result.pulled = len(payload.commands)
            conflicts = detect_conflicts(local, payload.commands)
            result.conflicts = conflicts

            if conflicts:
                self._transition(SyncState.RESOLVING_CONFLICTS)
                chosen = self._gather_resolutions(conflicts, resolver or self.resolver, resolutions)
                self._transition(SyncState.MERGING)
                unified = apply_resolutions(conflicts, chosen, local, payload.commands, now=self._clock())
            else:
                self._transition(SyncState.NO_CONFLICT)
                self._transition(SyncState.MERGING)
                unified = merge_no_conflict(local, payload.commands, now=self._clock())
                chosen = {}

            self._publish(result, credential, unified, remote_version=payload.sync_version)
            self._save_history(conflicts, chosen)
            self._record_sync("sync", result.pushed, errors=0)

        return self._run("sync", body)

    # === Conflicts ===

    def _gather_resolutions(
        self,
        conflicts: List[SyncConflict],
        resolver: Optional[ConflictResolver],
        resolutions: Optional[Mapping[str, Union[str, Resolution]]],
    ) -> Dict[str, Resolution]:
        wanted = {c.sync_id for c in conflicts}
        chosen = {
            key: coerce_resolution(value) for key, value in (resolutions or {}).items() if key in wanted
        }
        pending = [c for c in conflicts if c.sync_id not in chosen]
        chosen.update(resolve_conflicts(pending, resolver))
        return chosen

    def _save_history(self, conflicts: List[SyncConflict], chosen: Mapping[str, Resolution]) -> None:
        saver = getattr(self.store, "save_sync_conflict", None)
        if saver is None or not conflicts:
            return
        now = self._clock()
        for conflict in conflicts:
            resolution = chosen[conflict.sync_id]
            record = ConflictRecord(
                id=f"conflict_{uuid.uuid4().hex[:12]}",
                sync_id=conflict.sync_id,
                kind=conflict.kind.value,
                resolution=resolution.value,
                resolved_at=now,
                local_version=conflict.local.to_dict(),
                remote_version=conflict.remote.to_dict(),
                local_summary=_summary(conflict.local),
                remote_summary=_summary(conflict.remote),
                diff_hash=_diff_hash(conflict, resolution),
            )
            try:
                saver(record)
            except StorageError as e:
                logger.warning("Could not save conflict history for %s: %s", conflict.sync_id, e)


def _summary(record: CommandRecord) -> str:
    text = f"{record.prompt}: {record.command}"
    if record.is_deleted:
        text = f"[deleted] {text}"
    if len(text) > SUMMARY_LENGTH:
        text = text[: SUMMARY_LENGTH - 3] + "..."
    return text


def _diff_hash(conflict: SyncConflict, resolution: Resolution) -> str:
    parts = [
        conflict.sync_id,
        conflict.kind.value,
        conflict.local.content_hash,
        conflict.remote.content_hash,
        resolution.value,
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]
