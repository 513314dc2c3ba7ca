"""
cmdvault Protocol Definitions
=============================

Interface contracts between the sync engine and its collaborators.

Components:
- RecordStore:      The local replica. Read-all, write-all, merge-write.
- MetaStore:        Small persistent key/value store for the remote handle
                    and the monotonic sync version.
- RemoteBlobClient: Create/fetch/update/find a single remote JSON document.
- ConflictResolver: Turns one conflict into a choice (or None to cancel).

Error handling philosophy:
- Everything the engine can fail with derives from SyncError and carries a
  ``kind`` string the caller can branch on.
- The engine catches SyncError at its public boundary and reports it in a
  SyncResult. Nothing in the sync path is allowed to crash the host process.
- Invalid arguments raise ValueError.
- Storage failures raise StorageError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Optional, Protocol, runtime_checkable

from cmdvault.types import CommandRecord, Resolution, SyncConflict

if TYPE_CHECKING:
    from cmdvault.sync.payload import SyncPayload


# =============================================================================
# ERRORS
# =============================================================================


class CmdvaultError(Exception):
    """Base for all cmdvault errors."""

    pass


class StorageError(CmdvaultError):
    """Raised by record stores on storage failures."""

    pass


class SyncError(CmdvaultError):
    """Base for sync failures. ``kind`` names the failure category."""

    kind = "sync_error"


class AuthenticationFailed(SyncError):
    """No credential could be obtained. Nothing was read or written."""

    kind = "authentication_failed"


class TransportError(SyncError):
    """The remote answered with a non-2xx status or could not be reached."""

    kind = "transport_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class HandleNotFound(TransportError):
    """The remote blob behind the stored handle no longer exists (404)."""

    kind = "handle_not_found"

    def __init__(self, message: str = "Remote blob not found", status_code: Optional[int] = 404):
        super().__init__(message, status_code)


class InvalidPayload(SyncError):
    """The remote or imported document is not a valid command payload."""

    kind = "invalid_payload"


class ResolutionCancelled(SyncError):
    """Conflict resolution was aborted. Neither replica was touched."""

    kind = "resolution_cancelled"


class SyncInProgressError(CmdvaultError):
    """Raised when a sync operation starts while another is in flight."""

    pass


# =============================================================================
# COLLABORATOR PROTOCOLS
# =============================================================================


@runtime_checkable
class RecordStore(Protocol):
    """The authoritative local replica."""

    def read_all(self) -> List[CommandRecord]:
        """Every record, tombstones included."""
        ...

    def replace_all(self, records: Iterable[CommandRecord]) -> int:
        """Atomically replace the whole collection."""
        ...

    def merge_write(self, records: Iterable[CommandRecord]) -> int:
        """Upsert records; per record the newer ``updated_at`` wins."""
        ...


@runtime_checkable
class MetaStore(Protocol):
    """Persistent key/value pairs that survive restarts."""

    def get_meta(self, key: str) -> Optional[str]: ...

    def set_meta(self, key: str, value: str) -> None: ...

    def delete_meta(self, key: str) -> None: ...


@runtime_checkable
class RemoteBlobClient(Protocol):
    """A single remote JSON document identified by an opaque handle."""

    handle: Optional[str]

    def authenticate(self) -> Optional[str]:
        """Return a credential, or None when none is available."""
        ...

    def has_handle(self) -> bool: ...

    def adopt_handle(self, handle: Optional[str]) -> None: ...

    def clear_handle(self) -> None: ...

    def find_existing(self, credential: str) -> bool:
        """Locate a pre-existing blob by its marker and adopt its handle."""
        ...

    def create(self, credential: str, payload: "SyncPayload") -> str:
        """Create a new blob, adopt and return its handle."""
        ...

    def update(self, credential: str, payload: "SyncPayload") -> None:
        """Overwrite the blob. Raises HandleNotFound when it is gone."""
        ...

    def fetch(self, credential: str) -> Optional["SyncPayload"]:
        """Return the stored payload, or None when there is nothing to fetch."""
        ...


class ConflictResolver(Protocol):
    """Answers one conflict. Returning None cancels the whole sync."""

    def __call__(self, conflict: SyncConflict) -> Optional[Resolution]: ...
