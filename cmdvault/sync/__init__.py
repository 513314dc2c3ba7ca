"""Two-way sync between the local command library and a remote gist."""

from cmdvault.sync.detector import detect_conflicts
from cmdvault.sync.engine import SyncEngine
from cmdvault.sync.gist import GistClient
from cmdvault.sync.merge import apply_resolutions, merge_no_conflict
from cmdvault.sync.payload import SyncPayload, parse_payload
from cmdvault.sync.resolution import DefaultChoiceResolver, MappingResolver, resolve_conflicts

__all__ = [
    "DefaultChoiceResolver",
    "GistClient",
    "MappingResolver",
    "SyncEngine",
    "SyncPayload",
    "apply_resolutions",
    "detect_conflicts",
    "merge_no_conflict",
    "parse_payload",
    "resolve_conflicts",
]
