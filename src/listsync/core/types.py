"""Shared types for listsync.

This module defines the enums used by the state machine, the reconciler
and the conflict resolver.
"""

from __future__ import annotations

from enum import Enum


class SyncState(str, Enum):
    """Sync state of a list.

    Exactly one value per list. It is the only field other components
    consult to decide whether reconciliation may run.
    """

    NONE = "none"
    PENDING = "pending"
    SYNCED = "synced"
    CONFLICT = "conflict"


class SyncSource(str, Enum):
    """External source a list can be synchronized with."""

    NONE = "none"
    GOOGLE_MAPS = "google_maps"
    MANUAL = "manual"
    IMPORTED = "imported"


class SyncOutcome(str, Enum):
    """Result of a reconciliation pass."""

    CLEAN_SYNC = "clean_sync"
    CONFLICTS_RAISED = "conflicts_raised"


class ConflictType(str, Enum):
    """Conflict taxonomy."""

    ITEM_UPDATE = "item_update"
    STRUCTURE_CHANGE = "structure_change"
    SETTINGS_CHANGE = "settings_change"


class ResolutionStrategy(str, Enum):
    """How a conflict was (or should be) resolved.

    The first three are manual decisions, the rest automatic policies.
    """

    USE_LOCAL = "use_local"
    USE_REMOTE = "use_remote"
    MERGED = "merged"
    LAST_WRITE_WINS = "last_write_wins"
    SOURCE_PRIORITY = "source_priority"
    LOCAL_PRIORITY = "local_priority"
    MERGE_FIELDS = "merge_fields"

    @property
    def is_automatic(self) -> bool:
        return self in AUTO_STRATEGIES


AUTO_STRATEGIES = frozenset(
    {
        ResolutionStrategy.LAST_WRITE_WINS,
        ResolutionStrategy.SOURCE_PRIORITY,
        ResolutionStrategy.LOCAL_PRIORITY,
        ResolutionStrategy.MERGE_FIELDS,
    }
)
