"""Exception hierarchy for the sync engine.

Families:
- ConfigurationError: caller-facing, never retried automatically
- StateError: logic or race condition, surfaced to the caller
- ExternalSourceError: transient, retried by the scheduler with backoff
- PartialResolutionError: carries which conflicts succeeded or failed
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class SyncError(Exception):
    """Base exception for all sync engine errors."""


# === Configuration errors ===


class ConfigurationError(SyncError):
    """Invalid sync configuration supplied by the caller."""


class InvalidSourceError(ConfigurationError):
    """Sync source is not a recognized value."""

    def __init__(self, source: Any) -> None:
        super().__init__(f"Invalid sync source: {source!r}")
        self.source = source


class MissingExternalIDError(ConfigurationError):
    """External ID is required but empty."""

    def __init__(self, message: str = "External ID is required to enable sync") -> None:
        super().__init__(message)


class SyncDisabledError(ConfigurationError):
    """Sync is not enabled for the list."""

    def __init__(self, list_id: str) -> None:
        super().__init__(f"Sync is disabled for list {list_id}")
        self.list_id = list_id


class InvalidSyncConfigError(ConfigurationError):
    """A SyncConfig or EngineConfig violates its invariants."""


# === State errors ===


class StateError(SyncError):
    """Operation is not legal in the current state."""


class InvalidTransitionError(StateError):
    """Raised when attempting an invalid state transition."""

    def __init__(self, state: Any, event: Any, list_id: str | None = None) -> None:
        state_name = getattr(state, "value", state)
        event_name = getattr(event, "value", event)
        target = f" for list {list_id}" if list_id else ""
        super().__init__(f"Cannot apply '{event_name}' in state '{state_name}'{target}")
        self.state = state
        self.event = event
        self.list_id = list_id


class AlreadyInProgressError(StateError):
    """Another reconciliation pass is in flight for the list."""

    def __init__(self, list_id: str) -> None:
        super().__init__(f"A reconciliation pass is already in progress for list {list_id}")
        self.list_id = list_id


class LeaseLostError(StateError):
    """A pass finished after its lease was released or taken over."""

    def __init__(self, list_id: str, pass_id: str) -> None:
        super().__init__(f"Pass {pass_id} on list {list_id} no longer holds the lease")
        self.list_id = list_id
        self.pass_id = pass_id


class ConflictNotFoundError(StateError):
    """Conflict ID is unknown (or was discarded by disabling sync)."""

    def __init__(self, conflict_id: str) -> None:
        super().__init__(f"Conflict not found: {conflict_id}")
        self.conflict_id = conflict_id


class AlreadyResolvedError(StateError):
    """Conflict already carries a resolution."""

    def __init__(self, conflict_id: str) -> None:
        super().__init__(f"Conflict already resolved: {conflict_id}")
        self.conflict_id = conflict_id


class ConcurrentModificationError(StateError):
    """Stored revision changed between read and compare-and-set write."""

    def __init__(
        self,
        list_id: str,
        expected_revision: int | None = None,
        actual_revision: int | None = None,
    ) -> None:
        super().__init__(
            f"Concurrent modification of list {list_id} "
            f"(expected revision {expected_revision}, found {actual_revision})"
        )
        self.list_id = list_id
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision


# === External errors ===


class ExternalFailure(str, Enum):
    """Sub-cause of an ExternalSourceError."""

    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"
    REJECTED = "rejected"


class ExternalSourceError(SyncError):
    """Fetching from or pushing to the external source failed."""

    def __init__(
        self,
        cause: ExternalFailure,
        external_id: str,
        message: str = "",
    ) -> None:
        detail = f": {message}" if message else ""
        super().__init__(f"External source {cause.value} for {external_id!r}{detail}")
        self.cause = cause
        self.external_id = external_id


# === Resolution errors ===


class InvalidResolutionError(SyncError):
    """A merged payload does not fit the conflict it resolves."""


class PartialResolutionError(SyncError):
    """Some conflicts of an automatic resolution failed.

    Attributes:
        list_id: List being resolved.
        succeeded: IDs of conflicts resolved by this call.
        failed: Mapping of conflict ID to the exception it raised.
    """

    def __init__(
        self,
        list_id: str,
        succeeded: list[str],
        failed: dict[str, Exception],
    ) -> None:
        super().__init__(
            f"Resolved {len(succeeded)} of {len(succeeded) + len(failed)} conflicts "
            f"for list {list_id}; failed: {', '.join(failed)}"
        )
        self.list_id = list_id
        self.succeeded = list(succeeded)
        self.failed = dict(failed)


def is_transient(exc: BaseException) -> bool:
    """Check whether an error should be retried by the scheduler."""
    return isinstance(exc, ExternalSourceError)
