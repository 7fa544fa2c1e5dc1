"""Sync state machine: the only writer of ``SyncConfig.state``.

Every write is a compare-and-set on the config revision that was read.
A write that loses the race is re-read and re-validated once before the
ConcurrentModificationError is surfaced.

The single-flight guard of a reconciliation pass is a lease stored in
the config (``pass_id``/``pass_started_at``), acquired with the same
compare-and-set, so two concurrent passes for one list cannot both start.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from listsync.core.errors import (
    AlreadyInProgressError,
    ConcurrentModificationError,
    InvalidSourceError,
    InvalidTransitionError,
    LeaseLostError,
    MissingExternalIDError,
    SyncDisabledError,
)
from listsync.core.types import SyncOutcome, SyncSource, SyncState
from listsync.sync.domain.sync_config import DISABLED, SyncConfig
from listsync.sync.domain.transitions import SYNCABLE_STATES, SyncEvent, next_state

if TYPE_CHECKING:
    from listsync.sync.protocols import Repository

logger = logging.getLogger(__name__)

# Attempts of one compare-and-set write (first try + one retry)
MAX_WRITE_ATTEMPTS = 2

DEFAULT_PASS_LEASE_TIMEOUT = 600.0  # seconds


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class SyncPass:
    """Lease on one reconciliation pass.

    Attributes:
        list_id: List being reconciled.
        pass_id: Unique ID of the pass; stamped on conflicts it raises.
        started_state: State the list was in when the lease was taken.
        config: Config as stored when the lease was taken.
    """

    list_id: str
    pass_id: str
    started_state: SyncState
    config: SyncConfig


def parse_source(source: SyncSource | str) -> SyncSource:
    """Convert ``source`` to a SyncSource usable for enabling sync.

    Raises:
        InvalidSourceError: Unknown value, or ``none``.
    """
    try:
        parsed = SyncSource(source)
    except ValueError:
        raise InvalidSourceError(source) from None
    if parsed == SyncSource.NONE:
        raise InvalidSourceError(source)
    return parsed


class SyncStateMachine:
    """Gatekeeper for all SyncState transitions of all lists."""

    def __init__(
        self,
        repository: Repository,
        on_enabled: Callable[[str], Any] | None = None,
        pass_lease_timeout: float = DEFAULT_PASS_LEASE_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the state machine.

        Args:
            repository: Persistence of sync configs.
            on_enabled: Called with the list ID after sync is enabled, to
                queue the first reconciliation. Errors are logged only.
            pass_lease_timeout: Seconds after which a pass lease is
                considered abandoned.
            clock: Source of the current time.
        """
        self._repository = repository
        self._on_enabled = on_enabled
        self._pass_lease_timeout = pass_lease_timeout
        self._clock = clock

    @property
    def repository(self) -> Repository:
        return self._repository

    def set_on_enabled(self, callback: Callable[[str], Any] | None) -> None:
        """Replace the hook fired after ``enable``."""
        self._on_enabled = callback

    def get_config(self, list_id: str) -> SyncConfig:
        return self._repository.get_sync_config(list_id)

    # === Compare-and-set ===

    def _write(
        self,
        list_id: str,
        update: Callable[[SyncConfig], SyncConfig | None],
    ) -> SyncConfig:
        """Read, update and compare-and-set the config of a list.

        ``update`` may raise to reject the change, or return None when
        nothing needs to be written.
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            current = self._repository.get_sync_config(list_id)
            updated = update(current)
            if updated is None:
                return current
            updated.validate()
            try:
                return self._repository.set_sync_config(list_id, updated, current.revision)
            except ConcurrentModificationError:
                if attempt == MAX_WRITE_ATTEMPTS:
                    raise
                logger.debug("Concurrent write on list %s, retrying", list_id)
        raise RuntimeError("Unexpected write loop exit")

    def _transition(
        self,
        list_id: str,
        event: SyncEvent,
        extra: Callable[[SyncConfig], dict[str, Any]] | None = None,
        lease: str | None = None,
    ) -> SyncConfig:
        """Apply ``event`` through the transition table.

        Args:
            list_id: List to update.
            event: Event to apply.
            extra: Returns additional field updates for the new config.
            lease: Pass ID whose lease must be held, and is released.
        """

        def update(config: SyncConfig) -> SyncConfig:
            if lease is not None and config.pass_id != lease:
                self._raise_lost_lease(list_id, config, event, lease)
            state = next_state(config.state, event, list_id)
            changes: dict[str, Any] = {"state": state}
            if lease is not None:
                changes.update(pass_id=None, pass_started_at=None)
            if extra is not None:
                changes.update(extra(config))
            return config.evolve(**changes)

        previous = self._repository.get_sync_config(list_id).state
        config = self._write(list_id, update)
        if previous != config.state:
            logger.info(
                "List %s: %s -> %s (%s)",
                list_id,
                previous.value,
                config.state.value,
                event.value,
            )
        return config

    def _raise_lost_lease(
        self, list_id: str, config: SyncConfig, event: SyncEvent, lease: str
    ) -> None:
        if config.state == SyncState.NONE:
            raise InvalidTransitionError(config.state, event, list_id)
        raise LeaseLostError(list_id, lease)

    # === Configuration ===

    def enable(self, list_id: str, source: SyncSource | str, external_id: str) -> SyncConfig:
        """Enable sync for a list: NONE -> PENDING.

        Queues an immediate reconciliation through ``on_enabled``
        (fire-and-forget).

        Raises:
            InvalidTransitionError: Sync is already enabled.
            InvalidSourceError: ``source`` is not a recognized source.
            MissingExternalIDError: ``external_id`` is empty.
        """
        external_id = (external_id or "").strip()

        def update(config: SyncConfig) -> SyncConfig:
            if config.state != SyncState.NONE:
                raise InvalidTransitionError(config.state, SyncEvent.ENABLE, list_id)
            parsed = parse_source(source)
            if not external_id:
                raise MissingExternalIDError()
            return DISABLED.evolve(
                source=parsed,
                external_id=external_id,
                state=next_state(config.state, SyncEvent.ENABLE, list_id),
            )

        config = self._write(list_id, update)
        self._repository.save_base_snapshot(list_id, None)
        logger.info(
            "Sync enabled for list %s (source=%s, external_id=%s)",
            list_id,
            config.source.value,
            config.external_id,
        )
        self._notify_enabled(list_id)
        return config

    def _notify_enabled(self, list_id: str) -> None:
        if self._on_enabled is None:
            return
        try:
            self._on_enabled(list_id)
        except Exception:
            logger.exception("Failed to queue initial sync for list %s", list_id)

    def disable(self, list_id: str) -> SyncConfig:
        """Disable sync from any state: -> NONE.

        Clears source and external ID, releases any pass lease, marks open
        conflicts inactive and forgets the base snapshot.
        """

        def update(config: SyncConfig) -> SyncConfig | None:
            if config == DISABLED.evolve(revision=config.revision):
                return None
            next_state(config.state, SyncEvent.DISABLE, list_id)
            return DISABLED

        previous = self._repository.get_sync_config(list_id).state
        config = self._write(list_id, update)
        discarded = self._repository.deactivate_conflicts(list_id)
        self._repository.save_base_snapshot(list_id, None)
        logger.info(
            "Sync disabled for list %s (was %s, %d open conflicts discarded)",
            list_id,
            previous.value,
            discarded,
        )
        return config

    # === Local edits ===

    def mark_local_change(self, list_id: str) -> SyncConfig:
        """Record a local edit: SYNCED -> PENDING (no-op when PENDING).

        Raises:
            InvalidTransitionError: List is in CONFLICT or sync is disabled.
        """

        def update(config: SyncConfig) -> SyncConfig | None:
            if config.state == SyncState.PENDING:
                return None if config.local_ahead else config.evolve(local_ahead=True)
            state = next_state(config.state, SyncEvent.LOCAL_CHANGE, list_id)
            return config.evolve(state=state, local_ahead=True)

        previous = self._repository.get_sync_config(list_id).state
        config = self._write(list_id, update)
        if previous != config.state:
            logger.info("List %s: %s -> %s (local change)", list_id, previous.value, config.state.value)
        return config

    # === Reconciliation passes ===

    def begin_pass(self, list_id: str) -> SyncPass:
        """Acquire the single-flight lease for a reconciliation pass.

        Raises:
            SyncDisabledError: Sync is not enabled.
            AlreadyInProgressError: Another pass holds the lease.
            InvalidTransitionError: List is in CONFLICT.
        """
        pass_id = str(uuid.uuid4())
        now = self._clock()

        def update(config: SyncConfig) -> SyncConfig:
            if config.state == SyncState.NONE:
                raise SyncDisabledError(list_id)
            if config.in_flight:
                if not config.lease_expired(now, self._pass_lease_timeout):
                    raise AlreadyInProgressError(list_id)
                logger.warning(
                    "Taking over abandoned pass %s on list %s (started %s)",
                    config.pass_id,
                    list_id,
                    config.pass_started_at,
                )
            if config.state not in SYNCABLE_STATES:
                raise InvalidTransitionError(config.state, SyncEvent.RUN_SYNC, list_id)
            return config.evolve(pass_id=pass_id, pass_started_at=now)

        try:
            config = self._write(list_id, update)
        except ConcurrentModificationError as e:
            raise AlreadyInProgressError(list_id) from e

        logger.debug("Pass %s started on list %s (%s)", pass_id, list_id, config.state.value)
        return SyncPass(
            list_id=list_id,
            pass_id=pass_id,
            started_state=config.state,
            config=config,
        )

    def apply_reconciliation_result(
        self,
        list_id: str,
        outcome: SyncOutcome,
        pass_id: str | None = None,
        local_ahead: bool = False,
    ) -> SyncConfig:
        """Record the outcome of a pass: PENDING -> SYNCED | CONFLICT.

        Args:
            list_id: Reconciled list.
            outcome: CLEAN_SYNC or CONFLICTS_RAISED.
            pass_id: Lease to check and release (None leaves the lease alone).
            local_ahead: For CONFLICTS_RAISED, whether local edits were
                left unpushed.

        Raises:
            InvalidTransitionError: List is not PENDING.
            LeaseLostError: ``pass_id`` no longer holds the lease.
        """
        now = self._clock()
        if outcome == SyncOutcome.CLEAN_SYNC:
            return self._transition(
                list_id,
                SyncEvent.CLEAN_SYNC,
                lambda _: {"last_synced_at": now, "last_error": None, "local_ahead": False},
                lease=pass_id,
            )
        return self._transition(
            list_id,
            SyncEvent.CONFLICTS_RAISED,
            lambda _: {"last_error": None, "local_ahead": local_ahead},
            lease=pass_id,
        )

    def apply_refresh_result(
        self,
        list_id: str,
        outcome: SyncOutcome,
        pass_id: str,
        local_ahead: bool = False,
    ) -> SyncConfig:
        """Record the outcome of a pass that started from SYNCED.

        SYNCED: CLEAN_SYNC -> SYNCED, CONFLICTS_RAISED -> CONFLICT.
        When a local change moved the list to PENDING during the pass, a
        clean result keeps it PENDING (the new edit still needs a push).
        """
        now = self._clock()
        current = self._repository.get_sync_config(list_id)
        if current.pass_id != pass_id:
            event = (
                SyncEvent.REMOTE_REFRESH
                if outcome == SyncOutcome.CLEAN_SYNC
                else SyncEvent.REMOTE_CONFLICT
            )
            self._raise_lost_lease(list_id, current, event, pass_id)

        if current.state == SyncState.PENDING:
            if outcome == SyncOutcome.CONFLICTS_RAISED:
                return self.apply_reconciliation_result(list_id, outcome, pass_id, local_ahead=True)
            return self.release_pass(list_id, pass_id, last_synced_at=now)

        if outcome == SyncOutcome.CLEAN_SYNC:
            return self._transition(
                list_id,
                SyncEvent.REMOTE_REFRESH,
                lambda _: {"last_synced_at": now, "last_error": None, "local_ahead": False},
                lease=pass_id,
            )
        return self._transition(
            list_id,
            SyncEvent.REMOTE_CONFLICT,
            lambda _: {"last_error": None, "local_ahead": local_ahead},
            lease=pass_id,
        )

    def check_lease(self, sync_pass: SyncPass) -> None:
        """Check that ``sync_pass`` still holds its lease.

        Raises:
            InvalidTransitionError: Sync was disabled during the pass.
            LeaseLostError: The lease was released or taken over.
        """
        config = self._repository.get_sync_config(sync_pass.list_id)
        if config.pass_id != sync_pass.pass_id:
            self._raise_lost_lease(
                sync_pass.list_id, config, SyncEvent.RUN_SYNC, sync_pass.pass_id
            )

    def release_pass(self, list_id: str, pass_id: str, **changes: Any) -> SyncConfig:
        """Release a pass lease without changing the state."""

        def update(config: SyncConfig) -> SyncConfig | None:
            if config.pass_id != pass_id:
                return None
            return config.evolve(pass_id=None, pass_started_at=None, **changes)

        return self._write(list_id, update)

    def abort_pass(self, list_id: str, pass_id: str, error: BaseException) -> SyncConfig:
        """Release the lease of a failed pass and record ``last_error``.

        The state is kept, so the list stays eligible for the next pass.
        A lease that was already lost (sync disabled, lease taken over) is
        left alone.
        """
        message = str(error) or type(error).__name__
        config = self.release_pass(list_id, pass_id, last_error=message)
        logger.warning("Pass %s on list %s aborted: %s", pass_id, list_id, message)
        return config

    # === Conflicts ===

    def resolve_all_conflicts(self, list_id: str, in_sync: bool = False) -> SyncConfig:
        """Leave CONFLICT once every conflict is resolved.

        Args:
            list_id: List whose conflicts are all resolved.
            in_sync: Local now equals what the source has: -> SYNCED.
                Otherwise the resolutions are pending local edits: -> PENDING.

        Raises:
            InvalidTransitionError: List is not in CONFLICT.
        """
        if in_sync:
            now = self._clock()
            return self._transition(
                list_id,
                SyncEvent.RESOLVE_FULL,
                lambda _: {"last_synced_at": now, "local_ahead": False},
            )
        return self._transition(
            list_id,
            SyncEvent.RESOLVE_PARTIAL,
            lambda _: {"local_ahead": True},
        )
