"""Domain modules for list sync business rules.

This package centralizes the pure logic of the engine:
- snapshots: immutable item captures and the edits applied to them
- changes: three-way ChangeSet computation
- sync_config: per-list SyncConfig and its invariant
- transitions: SyncState transition table
- conflicts: Conflict record and payload variants
- resolutions: decisions and automatic resolution strategies

Architecture:
    domain/ has no I/O. Repository and source access stay in the
    state machine, reconciler and resolver.
"""

from listsync.sync.domain.changes import (
    ChangeKind,
    ChangeSet,
    ItemChange,
    SettingChange,
    classify,
    compute_changeset,
)
from listsync.sync.domain.conflicts import (
    Conflict,
    ConflictPayload,
    ItemUpdatePayload,
    SettingsChangePayload,
    StructureChangePayload,
    payload_for_change,
)
from listsync.sync.domain.resolutions import (
    Decision,
    Merged,
    UseLocal,
    UseRemote,
    decide,
    last_write_wins,
    merge_fields,
    remote_is_newer,
)
from listsync.sync.domain.snapshots import (
    ItemRecord,
    PutSetting,
    RemoveItem,
    Snapshot,
    SnapshotChange,
    UpsertItem,
)
from listsync.sync.domain.sync_config import DISABLED, SyncConfig
from listsync.sync.domain.transitions import (
    SYNCABLE_STATES,
    VALID_TRANSITIONS,
    SyncEvent,
    can_apply,
    next_state,
)

__all__ = [
    # snapshots
    "ItemRecord",
    "PutSetting",
    "RemoveItem",
    "Snapshot",
    "SnapshotChange",
    "UpsertItem",
    # changes
    "ChangeKind",
    "ChangeSet",
    "ItemChange",
    "SettingChange",
    "classify",
    "compute_changeset",
    # sync_config
    "DISABLED",
    "SyncConfig",
    # transitions
    "SYNCABLE_STATES",
    "VALID_TRANSITIONS",
    "SyncEvent",
    "can_apply",
    "next_state",
    # conflicts
    "Conflict",
    "ConflictPayload",
    "ItemUpdatePayload",
    "SettingsChangePayload",
    "StructureChangePayload",
    "payload_for_change",
    # resolutions
    "Decision",
    "Merged",
    "UseLocal",
    "UseRemote",
    "decide",
    "last_write_wins",
    "merge_fields",
    "remote_is_newer",
]
