"""List synchronization.

Architecture:
    SyncScheduler → Reconciler → SyncStateMachine
                               → Repository / ExternalSource
    User or policy → ConflictResolver → SyncStateMachine

Components:
- **SyncStateMachine**: sole writer of SyncState, single-flight pass lease
- **Reconciler**: fetch, three-way diff, apply or raise conflicts
- **ConflictResolver**: manual and automatic conflict resolution
- **BackoffTracker**: per-list retry delay after source failures
- **domain**: snapshots, change sets, conflicts, transition table
"""

from listsync.sync.domain import (
    ChangeKind,
    ChangeSet,
    Conflict,
    ItemRecord,
    ItemUpdatePayload,
    Merged,
    SettingsChangePayload,
    Snapshot,
    StructureChangePayload,
    SyncConfig,
    SyncEvent,
    UseLocal,
    UseRemote,
    compute_changeset,
)
from listsync.sync.protocols import ExternalSource, Repository
from listsync.sync.reconciler import Reconciler, SyncResult
from listsync.sync.resolver import ConflictResolver
from listsync.sync.retry import BackoffTracker, compute_backoff
from listsync.sync.schemas import ConflictRecord
from listsync.sync.state_machine import SyncPass, SyncStateMachine

__all__ = [
    # Components
    "ConflictResolver",
    "Reconciler",
    "SyncStateMachine",
    "SyncPass",
    "SyncResult",
    # Collaborators
    "ExternalSource",
    "Repository",
    # Retry
    "BackoffTracker",
    "compute_backoff",
    # Domain
    "ChangeKind",
    "ChangeSet",
    "Conflict",
    "ConflictRecord",
    "ItemRecord",
    "ItemUpdatePayload",
    "Merged",
    "SettingsChangePayload",
    "Snapshot",
    "StructureChangePayload",
    "SyncConfig",
    "SyncEvent",
    "UseLocal",
    "UseRemote",
    "compute_changeset",
]
