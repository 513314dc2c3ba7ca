"""Conflict resolution protocol.

The engine never decides a conflict itself. It hands each conflict to a
resolver, a plain callable returning a ``Resolution`` or ``None`` (cancel).
"""

import logging
from typing import Dict, List, Mapping, Optional, Union

from cmdvault.protocols import ConflictResolver, ResolutionCancelled
from cmdvault.types import Resolution, SyncConflict

logger = logging.getLogger(__name__)


def coerce_resolution(value: Union[str, Resolution]) -> Resolution:
    """Turn a string like ``"keep_local"`` into a Resolution.

    Raises:
        ValueError: If the value names no resolution.
    """
    if isinstance(value, Resolution):
        return value
    try:
        return Resolution(value)
    except ValueError:
        valid = ", ".join(r.value for r in Resolution)
        raise ValueError(f"Invalid resolution '{value}'. Must be one of: {valid}") from None


class DefaultChoiceResolver:
    """Answers every conflict with the same configured choice."""

    def __init__(self, choice: Union[str, Resolution]):
        self.choice = coerce_resolution(choice)

    def __call__(self, conflict: SyncConflict) -> Optional[Resolution]:
        return self.choice


class MappingResolver:
    """Scripted answers keyed by sync id.

    Conflicts not in the mapping get ``default``; with no default they cancel.
    """

    def __init__(
        self,
        mapping: Mapping[str, Union[str, Resolution]],
        default: Optional[Union[str, Resolution]] = None,
    ):
        self.mapping = {key: coerce_resolution(value) for key, value in mapping.items()}
        self.default = coerce_resolution(default) if default is not None else None

    def __call__(self, conflict: SyncConflict) -> Optional[Resolution]:
        return self.mapping.get(conflict.sync_id, self.default)


def resolve_conflicts(
    conflicts: List[SyncConflict], resolver: Optional[ConflictResolver]
) -> Dict[str, Resolution]:
    """Ask the resolver about each conflict, in order.

    Raises:
        ResolutionCancelled: No resolver was given, or it returned None for
            any conflict. Nothing has been written at this point.
    """
    if not conflicts:
        return {}
    if resolver is None:
        raise ResolutionCancelled(
            f"{len(conflicts)} conflict(s) need resolution but no resolver was given"
        )

    resolutions: Dict[str, Resolution] = {}
    for index, conflict in enumerate(conflicts, start=1):
        answer = resolver(conflict)
        if answer is None:
            logger.info("Resolution cancelled at conflict %d/%d (%s)", index, len(conflicts), conflict.sync_id)
            raise ResolutionCancelled(
                f"Sync cancelled while resolving conflict {index} of {len(conflicts)}"
            )
        resolutions[conflict.sync_id] = coerce_resolution(answer)
    return resolutions
