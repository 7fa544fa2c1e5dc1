"""Per-list sync configuration."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from listsync.core.errors import InvalidSyncConfigError
from listsync.core.types import SyncSource, SyncState


@dataclass(frozen=True)
class SyncConfig:
    """Sync configuration attached 1:1 to a list.

    Attributes:
        source: External source the list follows.
        external_id: Opaque identifier of the list in the source.
        state: Current SyncState; written only by the state machine.
        last_synced_at: When the last clean sync finished.
        last_error: Message of the last failed pass, if any.
        revision: Bumped on every write, used for compare-and-set.
        pass_id: ID of the reconciliation pass holding the lease, if any.
        pass_started_at: When that pass acquired the lease.
        local_ahead: Local edits exist that the source has not received.
    """

    source: SyncSource = SyncSource.NONE
    external_id: str = ""
    state: SyncState = SyncState.NONE
    last_synced_at: datetime | None = None
    last_error: str | None = None
    revision: int = 0
    pass_id: str | None = None
    pass_started_at: datetime | None = None
    local_ahead: bool = False

    def validate(self) -> None:
        """Check the none-state invariant.

        ``state == NONE`` if and only if ``source == NONE`` and the
        external ID is empty; any other state needs an external ID.

        Raises:
            InvalidSyncConfigError: If the invariant does not hold.
        """
        if self.state == SyncState.NONE:
            if self.source != SyncSource.NONE:
                raise InvalidSyncConfigError("sync source must be none when sync is disabled")
            if self.external_id:
                raise InvalidSyncConfigError("external ID must be empty when sync is disabled")
            if self.pass_id is not None:
                raise InvalidSyncConfigError("disabled list cannot hold a pass lease")
            return

        if self.source == SyncSource.NONE:
            raise InvalidSyncConfigError(f"state {self.state.value} requires a sync source")
        if not self.external_id:
            raise InvalidSyncConfigError(f"state {self.state.value} requires an external ID")

    @property
    def enabled(self) -> bool:
        return self.state != SyncState.NONE

    @property
    def in_flight(self) -> bool:
        return self.pass_id is not None

    def lease_expired(self, now: datetime, timeout: float) -> bool:
        """Check whether the pass lease is older than ``timeout`` seconds."""
        if self.pass_started_at is None:
            return self.in_flight
        return now - self.pass_started_at > timedelta(seconds=timeout)

    def evolve(self, **changes: Any) -> SyncConfig:
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)


DISABLED = SyncConfig()
