"""Collaborator contracts consumed by the engine.

Storage and the external source API live outside this package; any
implementation satisfying these protocols can be plugged in.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from listsync.core.types import ResolutionStrategy
    from listsync.sync.domain import Conflict, Snapshot, SnapshotChange, SyncConfig


class Repository(Protocol):
    """Persistence of sync configs, snapshots and conflicts.

    ``set_sync_config`` is a compare-and-set: it must raise
    ConcurrentModificationError when the stored revision is not
    ``expected_revision``, and store ``config`` with the revision bumped
    otherwise.
    """

    def get_sync_config(self, list_id: str) -> SyncConfig:
        """Return the list's config (raises KeyError for unknown lists)."""
        ...

    def set_sync_config(
        self, list_id: str, config: SyncConfig, expected_revision: int
    ) -> SyncConfig:
        """Store ``config`` if the revision still matches; return what was stored."""
        ...

    def get_sync_enabled_lists(self) -> list[str]:
        """IDs of all lists whose state is not NONE."""
        ...

    def get_local_snapshot(self, list_id: str) -> Snapshot:
        ...

    def apply_snapshot_changes(self, list_id: str, changes: Sequence[SnapshotChange]) -> None:
        """Apply edits to the local list, atomically."""
        ...

    def get_base_snapshot(self, list_id: str) -> Snapshot | None:
        """Snapshot both sides agreed on at the last clean sync."""
        ...

    def save_base_snapshot(self, list_id: str, snapshot: Snapshot | None) -> None:
        ...

    def apply_base_changes(self, list_id: str, changes: Sequence[SnapshotChange]) -> None:
        """Apply edits to the base snapshot, atomically."""
        ...

    def create_conflict(self, conflict: Conflict) -> None:
        ...

    def get_conflict(self, conflict_id: str) -> Conflict | None:
        ...

    def get_open_conflicts(self, list_id: str) -> list[Conflict]:
        """Active, unresolved conflicts of the list, oldest first."""
        ...

    def get_conflicts_for_pass(self, list_id: str, pass_id: str) -> list[Conflict]:
        """Active conflicts (resolved or not) raised by one pass."""
        ...

    def resolve_conflict(
        self, conflict_id: str, payload: Any, strategy: ResolutionStrategy
    ) -> Conflict:
        """Stamp ``resolved_at`` atomically.

        Raises:
            ConflictNotFoundError: Unknown conflict.
            AlreadyResolvedError: ``resolved_at`` is already set.
        """
        ...

    def deactivate_conflicts(self, list_id: str, pass_id: str | None = None) -> int:
        """Mark open conflicts of the list inactive; return the count.

        With ``pass_id``, only the conflicts raised by that pass.
        """
        ...

    def delete_resolved_conflicts_older_than(self, cutoff: datetime) -> int:
        """Delete conflicts resolved before ``cutoff``; return the count."""
        ...


class ExternalSource(Protocol):
    """Client of the external list provider.

    Failures should surface as TimeoutError, ConnectionError/OSError,
    ValueError (malformed response) or ExternalSourceError.
    """

    def fetch_snapshot(self, external_id: str, timeout: float) -> Snapshot:
        ...

    def push_snapshot(self, external_id: str, snapshot: Snapshot, timeout: float) -> None:
        ...
