"""List sync state machine table.

States:
    NONE -> PENDING -> SYNCED <-> PENDING
                    -> CONFLICT -> PENDING | SYNCED
    any  -> NONE (disable)

All state transitions are validated against VALID_TRANSITIONS.
"""

from __future__ import annotations

from enum import Enum

from listsync.core.errors import InvalidTransitionError
from listsync.core.types import SyncState


class SyncEvent(str, Enum):
    """Event applied to a list's SyncState."""

    ENABLE = "enable"
    RUN_SYNC = "run_sync"
    CLEAN_SYNC = "clean_sync"
    CONFLICTS_RAISED = "conflicts_raised"
    LOCAL_CHANGE = "local_change"
    REMOTE_REFRESH = "remote_refresh"
    REMOTE_CONFLICT = "remote_conflict"
    RESOLVE_PARTIAL = "resolve_partial"
    RESOLVE_FULL = "resolve_full"
    DISABLE = "disable"


# (state, event) -> next state
VALID_TRANSITIONS: dict[tuple[SyncState, SyncEvent], SyncState] = {
    (SyncState.NONE, SyncEvent.ENABLE): SyncState.PENDING,
    (SyncState.PENDING, SyncEvent.CLEAN_SYNC): SyncState.SYNCED,
    (SyncState.PENDING, SyncEvent.CONFLICTS_RAISED): SyncState.CONFLICT,
    (SyncState.SYNCED, SyncEvent.LOCAL_CHANGE): SyncState.PENDING,
    (SyncState.SYNCED, SyncEvent.REMOTE_REFRESH): SyncState.SYNCED,
    (SyncState.SYNCED, SyncEvent.REMOTE_CONFLICT): SyncState.CONFLICT,
    (SyncState.CONFLICT, SyncEvent.RESOLVE_PARTIAL): SyncState.PENDING,
    (SyncState.CONFLICT, SyncEvent.RESOLVE_FULL): SyncState.SYNCED,
    (SyncState.NONE, SyncEvent.DISABLE): SyncState.NONE,
    (SyncState.PENDING, SyncEvent.DISABLE): SyncState.NONE,
    (SyncState.SYNCED, SyncEvent.DISABLE): SyncState.NONE,
    (SyncState.CONFLICT, SyncEvent.DISABLE): SyncState.NONE,
}

# States a reconciliation pass may start from (lease only, state unchanged)
SYNCABLE_STATES = frozenset({SyncState.PENDING, SyncState.SYNCED})


def next_state(state: SyncState, event: SyncEvent, list_id: str | None = None) -> SyncState:
    """Return the state reached by applying ``event`` in ``state``.

    Raises:
        InvalidTransitionError: If the (state, event) pair is not in the table.
    """
    try:
        return VALID_TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(state, event, list_id) from None


def can_apply(state: SyncState, event: SyncEvent) -> bool:
    return (state, event) in VALID_TRANSITIONS
