"""In-memory collaborators for exercising the sync engine without a network.

``InMemoryRemote`` implements the RemoteBlobClient protocol. Blobs are kept
as JSON text and decoded on fetch, so everything pushed and fetched goes
through the real payload codec.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from cmdvault.protocols import HandleNotFound
from cmdvault.sync.payload import SyncPayload, parse_payload
from cmdvault.types import CommandRecord, utc_now


class InMemoryRemote:
    """A remote blob store held in a dict.

    Set ``update_error``/``create_error``/``fetch_error`` to make the next
    calls raise. ``calls`` records every operation in order.
    """

    def __init__(self, credential: Optional[str] = "test-token"):
        self.credential = credential
        self.handle: Optional[str] = None
        self.blobs: Dict[str, str] = {}
        self.calls: List[str] = []
        self.existing: Optional[str] = None  # handle find_existing discovers
        self.update_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.fetch_error: Optional[Exception] = None

    def authenticate(self) -> Optional[str]:
        self.calls.append("authenticate")
        return self.credential

    def has_handle(self) -> bool:
        return bool(self.handle)

    def adopt_handle(self, handle: Optional[str]) -> None:
        self.handle = handle or None

    def clear_handle(self) -> None:
        self.handle = None

    def find_existing(self, credential: str) -> bool:
        self.calls.append("find_existing")
        if self.existing and self.existing in self.blobs:
            self.handle = self.existing
            return True
        return False

    def create(self, credential: str, payload: SyncPayload) -> str:
        self.calls.append("create")
        if self.create_error is not None:
            raise self.create_error
        handle = f"blob-{len(self.blobs) + 1}"
        self.blobs[handle] = payload.to_json()
        self.handle = handle
        return handle

    def update(self, credential: str, payload: SyncPayload) -> None:
        self.calls.append("update")
        if self.update_error is not None:
            raise self.update_error
        if self.handle not in self.blobs:
            raise HandleNotFound()
        self.blobs[self.handle] = payload.to_json()

    def fetch(self, credential: str) -> Optional[SyncPayload]:
        self.calls.append("fetch")
        if self.fetch_error is not None:
            raise self.fetch_error
        if not self.handle:
            return None
        if self.handle not in self.blobs:
            raise HandleNotFound()
        return parse_payload(self.blobs[self.handle])

    def close(self) -> None:
        pass

    # === Helpers ===

    def seed(
        self,
        records: Iterable[CommandRecord],
        sync_version: int = 1,
        handle: str = "blob-seeded",
        exported_at: Optional[datetime] = None,
    ) -> str:
        """Store a blob that ``find_existing`` will discover."""
        payload = SyncPayload(
            commands=list(records),
            exported_at=exported_at or utc_now(),
            sync_version=sync_version,
        )
        self.blobs[handle] = payload.to_json()
        self.existing = handle
        return handle

    def stored(self, handle: Optional[str] = None) -> SyncPayload:
        """Decode the blob behind ``handle`` (default: the current handle)."""
        return parse_payload(self.blobs[handle or self.handle])

    def connect(self, credential: Optional[str] = "test-token") -> InMemoryRemote:
        """A second client on the same blob store, as another machine would see it.

        The new client discovers this client's current blob via ``find_existing``.
        """
        other = InMemoryRemote(credential)
        other.blobs = self.blobs
        other.existing = self.handle
        return other
