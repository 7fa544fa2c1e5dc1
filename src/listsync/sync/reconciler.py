"""One reconciliation pass for a single list.

Pass:
    begin_pass (lease) -> fetch remote -> read local + base
        -> three-way ChangeSet
        -> apply remote-only changes locally
        -> no conflicts: push local-only changes, save new base, CLEAN_SYNC
        -> conflicts:    persist conflicts, CONFLICTS_RAISED

Failures after the lease is taken discard the conflicts the pass raised,
release the lease (``abort_pass``) and are re-raised unchanged; source
failures are never retried here.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from listsync.core.errors import ExternalFailure, ExternalSourceError
from listsync.core.types import SyncOutcome, SyncState
from listsync.sync.domain.changes import ChangeSet, compute_changeset
from listsync.sync.domain.conflicts import Conflict, payload_for_change
from listsync.sync.domain.snapshots import Snapshot
from listsync.sync.retry import NETWORK_EXCEPTIONS

if TYPE_CHECKING:
    from listsync.sync.domain.sync_config import SyncConfig
    from listsync.sync.protocols import ExternalSource, Repository
    from listsync.sync.state_machine import SyncPass, SyncStateMachine

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FETCH_TIMEOUT = 30.0  # seconds

# Errors a source client raises for unparseable responses
MALFORMED_EXCEPTIONS: tuple[type[Exception], ...] = (ValueError, KeyError, TypeError)


@dataclass
class SyncResult:
    """Result of one reconciliation pass.

    Attributes:
        list_id: Reconciled list.
        outcome: CLEAN_SYNC or CONFLICTS_RAISED.
        state: State the list ended in.
        pass_id: ID of the pass (stamped on its conflicts).
        applied: Remote changes written to the local list.
        pushed: Local changes sent to the source.
        conflicts: Conflicts raised by this pass.
        elapsed_time: Time taken in seconds.
    """

    list_id: str
    outcome: SyncOutcome
    state: SyncState
    pass_id: str
    applied: int = 0
    pushed: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    elapsed_time: float = 0.0


def call_source(func: Callable[[], T], external_id: str, operation: str) -> T:
    """Run a source call, mapping failures to ExternalSourceError."""
    try:
        return func()
    except ExternalSourceError:
        raise
    except TimeoutError as e:
        raise ExternalSourceError(ExternalFailure.TIMEOUT, external_id, f"{operation}: {e}") from e
    except NETWORK_EXCEPTIONS as e:
        raise ExternalSourceError(
            ExternalFailure.UNAVAILABLE, external_id, f"{operation}: {e}"
        ) from e
    except MALFORMED_EXCEPTIONS as e:
        raise ExternalSourceError(ExternalFailure.MALFORMED, external_id, f"{operation}: {e}") from e


class Reconciler:
    """Runs reconciliation passes; holds no per-list data between calls."""

    def __init__(
        self,
        state_machine: SyncStateMachine,
        repository: Repository,
        source: ExternalSource,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
    ) -> None:
        self._state_machine = state_machine
        self._repository = repository
        self._source = source
        self._fetch_timeout = fetch_timeout

    def run_sync(self, list_id: str) -> SyncResult:
        """Reconcile one list with its external source.

        Raises:
            SyncDisabledError: Sync is not enabled for the list.
            AlreadyInProgressError: Another pass is in flight.
            InvalidTransitionError: List is in CONFLICT, or sync was
                disabled during the pass.
            LeaseLostError: The lease was lost during the pass (sync
                re-enabled, or the pass was taken over).
            ExternalSourceError: Fetch or push failed (list keeps its state).
        """
        start = time.monotonic()
        sync_pass = self._state_machine.begin_pass(list_id)
        try:
            result = self._reconcile(sync_pass)
        except Exception as e:
            try:
                self._discard_conflicts(sync_pass)
            finally:
                self._state_machine.abort_pass(list_id, sync_pass.pass_id, e)
            raise

        result.elapsed_time = time.monotonic() - start
        logger.info(
            "Sync of list %s finished: %s (%d applied, %d pushed, %d conflicts, %.2fs)",
            list_id,
            result.outcome.value,
            result.applied,
            result.pushed,
            len(result.conflicts),
            result.elapsed_time,
        )
        return result

    def _discard_conflicts(self, sync_pass: SyncPass) -> None:
        discarded = self._repository.deactivate_conflicts(
            sync_pass.list_id, pass_id=sync_pass.pass_id
        )
        if discarded:
            logger.info(
                "Discarded %d conflict(s) of failed pass %s on list %s",
                discarded,
                sync_pass.pass_id,
                sync_pass.list_id,
            )

    def _fetch_remote(self, external_id: str) -> Snapshot:
        snapshot = call_source(
            lambda: self._source.fetch_snapshot(external_id, timeout=self._fetch_timeout),
            external_id,
            "fetch",
        )
        if not isinstance(snapshot, Snapshot):
            raise ExternalSourceError(
                ExternalFailure.MALFORMED,
                external_id,
                f"fetch returned {type(snapshot).__name__}",
            )
        return snapshot

    def _reconcile(self, sync_pass: SyncPass) -> SyncResult:
        list_id = sync_pass.list_id
        external_id = sync_pass.config.external_id

        remote = self._fetch_remote(external_id)
        local = self._repository.get_local_snapshot(list_id)
        base = self._repository.get_base_snapshot(list_id)

        changeset = compute_changeset(base, local, remote)
        logger.debug("List %s changeset: %s", list_id, changeset.summary())

        edits = changeset.local_edits()
        if edits:
            self._repository.apply_snapshot_changes(list_id, edits)

        if changeset.conflicts:
            return self._raise_conflicts(sync_pass, changeset, local, remote, applied=len(edits))

        merged = local.apply(edits)
        pushed = len(changeset.local_changes)
        self._state_machine.check_lease(sync_pass)
        if pushed:
            call_source(
                lambda: self._source.push_snapshot(
                    external_id, merged, timeout=self._fetch_timeout
                ),
                external_id,
                "push",
            )
        self._repository.save_base_snapshot(list_id, merged)

        config = self._finish(sync_pass, SyncOutcome.CLEAN_SYNC, local_ahead=False)
        return SyncResult(
            list_id=list_id,
            outcome=SyncOutcome.CLEAN_SYNC,
            state=config.state,
            pass_id=sync_pass.pass_id,
            applied=len(edits),
            pushed=pushed,
        )

    def _raise_conflicts(
        self,
        sync_pass: SyncPass,
        changeset: ChangeSet,
        local: Snapshot,
        remote: Snapshot,
        applied: int,
    ) -> SyncResult:
        conflicts: list[Conflict] = []
        for change in changeset.conflicts:
            conflict = Conflict(
                list_id=sync_pass.list_id,
                payload=payload_for_change(change, local, remote),
                pass_id=sync_pass.pass_id,
            )
            self._repository.create_conflict(conflict)
            conflicts.append(conflict)
            logger.info(
                "Conflict %s on list %s: %s %s",
                conflict.id,
                sync_pass.list_id,
                conflict.type.value,
                change.key,
            )

        config = self._finish(
            sync_pass,
            SyncOutcome.CONFLICTS_RAISED,
            local_ahead=bool(changeset.local_changes),
        )
        return SyncResult(
            list_id=sync_pass.list_id,
            outcome=SyncOutcome.CONFLICTS_RAISED,
            state=config.state,
            pass_id=sync_pass.pass_id,
            applied=applied,
            conflicts=conflicts,
        )

    def _finish(
        self, sync_pass: SyncPass, outcome: SyncOutcome, local_ahead: bool
    ) -> SyncConfig:
        if sync_pass.started_state == SyncState.SYNCED:
            return self._state_machine.apply_refresh_result(
                sync_pass.list_id, outcome, sync_pass.pass_id, local_ahead=local_ahead
            )
        return self._state_machine.apply_reconciliation_result(
            sync_pass.list_id, outcome, sync_pass.pass_id, local_ahead=local_ahead
        )
