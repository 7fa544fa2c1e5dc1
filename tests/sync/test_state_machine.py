"""Tests for the sync state machine."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import pytest

from listsync.core.errors import (
    AlreadyInProgressError,
    ConcurrentModificationError,
    InvalidSourceError,
    InvalidSyncConfigError,
    InvalidTransitionError,
    LeaseLostError,
    MissingExternalIDError,
    SyncDisabledError,
)
from listsync.core.types import SyncOutcome, SyncSource, SyncState
from listsync.sync.domain import (
    VALID_TRANSITIONS,
    Conflict,
    SettingsChangePayload,
    SyncConfig,
    SyncEvent,
    can_apply,
    next_state,
)
from listsync.sync.state_machine import SyncStateMachine, parse_source
from tests.fakes import EXTERNAL_ID, LIST_ID, InMemoryRepository, item, snapshot


def _conflict(list_id: str = LIST_ID) -> Conflict:
    return Conflict(list_id, SettingsChangePayload("title", "A", "B", "C"))


class TestTransitionTable:
    """Tests for the transition table."""

    def test_listed_transitions(self) -> None:
        """Should follow the documented lifecycle."""
        assert next_state(SyncState.NONE, SyncEvent.ENABLE) == SyncState.PENDING
        assert next_state(SyncState.PENDING, SyncEvent.CLEAN_SYNC) == SyncState.SYNCED
        assert next_state(SyncState.PENDING, SyncEvent.CONFLICTS_RAISED) == SyncState.CONFLICT
        assert next_state(SyncState.SYNCED, SyncEvent.LOCAL_CHANGE) == SyncState.PENDING
        assert next_state(SyncState.SYNCED, SyncEvent.REMOTE_CONFLICT) == SyncState.CONFLICT
        assert next_state(SyncState.CONFLICT, SyncEvent.RESOLVE_PARTIAL) == SyncState.PENDING
        assert next_state(SyncState.CONFLICT, SyncEvent.RESOLVE_FULL) == SyncState.SYNCED

    @pytest.mark.parametrize("state", list(SyncState))
    def test_disable_from_anywhere(self, state: SyncState) -> None:
        """Should allow disabling from every state."""
        assert next_state(state, SyncEvent.DISABLE) == SyncState.NONE

    def test_unlisted_pair_rejected(self) -> None:
        """Should raise InvalidTransitionError naming the pair."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            next_state(SyncState.CONFLICT, SyncEvent.CLEAN_SYNC, "L9")
        assert exc_info.value.state == SyncState.CONFLICT
        assert exc_info.value.event == SyncEvent.CLEAN_SYNC
        assert not can_apply(SyncState.CONFLICT, SyncEvent.CLEAN_SYNC)

    def test_no_transition_out_of_none_but_enable(self) -> None:
        """Should only leave NONE through ENABLE."""
        leaving = [
            event
            for (state, event), target in VALID_TRANSITIONS.items()
            if state == SyncState.NONE and target != SyncState.NONE
        ]
        assert leaving == [SyncEvent.ENABLE]


class TestSyncConfig:
    """Tests for the SyncConfig invariant."""

    def test_disabled_is_valid(self) -> None:
        """Should accept the default config."""
        SyncConfig().validate()

    def test_none_state_requires_no_source(self) -> None:
        """Should reject a source on a disabled config."""
        with pytest.raises(InvalidSyncConfigError):
            SyncConfig(source=SyncSource.MANUAL).validate()
        with pytest.raises(InvalidSyncConfigError):
            SyncConfig(external_id="abc").validate()

    def test_enabled_requires_external_id(self) -> None:
        """Should reject an enabled config without external ID."""
        with pytest.raises(InvalidSyncConfigError):
            SyncConfig(source=SyncSource.MANUAL, state=SyncState.PENDING).validate()
        with pytest.raises(InvalidSyncConfigError):
            SyncConfig(external_id="abc", state=SyncState.SYNCED).validate()

    def test_lease_expiry(self) -> None:
        """Should expire a lease older than the timeout."""
        now = datetime(2024, 1, 1, tzinfo=UTC)
        config = SyncConfig(pass_id="p", pass_started_at=now)
        assert not config.lease_expired(now + timedelta(seconds=10), 60)
        assert config.lease_expired(now + timedelta(seconds=61), 60)


class TestParseSource:
    """Tests for parse_source."""

    def test_accepts_values(self) -> None:
        """Should accept enum members and their string values."""
        assert parse_source("google_maps") == SyncSource.GOOGLE_MAPS
        assert parse_source(SyncSource.MANUAL) == SyncSource.MANUAL

    @pytest.mark.parametrize("value", ["none", "bogus", "", SyncSource.NONE])
    def test_rejects(self, value: object) -> None:
        """Should reject none and unknown sources."""
        with pytest.raises(InvalidSourceError):
            parse_source(value)  # type: ignore[arg-type]


class TestEnable:
    """Tests for SyncStateMachine.enable."""

    def test_enable_moves_to_pending(self, machine: SyncStateMachine) -> None:
        """Should store source and external ID and go to PENDING."""
        config = machine.enable(LIST_ID, "google_maps", "  abc ")
        assert config.state == SyncState.PENDING
        assert config.source == SyncSource.GOOGLE_MAPS
        assert config.external_id == "abc"
        config.validate()

    def test_enable_fires_hook(self, repo: InMemoryRepository) -> None:
        """Should queue an initial sync through on_enabled."""
        queued: list[str] = []
        machine = SyncStateMachine(repo, on_enabled=queued.append)
        machine.enable(LIST_ID, SyncSource.MANUAL, EXTERNAL_ID)
        assert queued == [LIST_ID]

    def test_hook_failure_does_not_fail_enable(
        self, repo: InMemoryRepository, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Should log and ignore on_enabled errors."""

        def broken(list_id: str) -> None:
            raise RuntimeError("queue down")

        machine = SyncStateMachine(repo, on_enabled=broken)
        with caplog.at_level(logging.ERROR, logger="listsync"):
            config = machine.enable(LIST_ID, SyncSource.MANUAL, EXTERNAL_ID)
        assert config.state == SyncState.PENDING
        assert "Failed to queue initial sync" in caplog.text

    def test_enable_twice(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should reject enabling an enabled list."""
        with pytest.raises(InvalidTransitionError):
            machine.enable(enabled, SyncSource.MANUAL, "other")

    def test_state_checked_before_arguments(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should report the state error first."""
        with pytest.raises(InvalidTransitionError):
            machine.enable(enabled, "bogus", "")

    def test_invalid_source(self, machine: SyncStateMachine, repo: InMemoryRepository) -> None:
        """Should reject unknown sources and leave the list disabled."""
        with pytest.raises(InvalidSourceError):
            machine.enable(LIST_ID, "bogus", EXTERNAL_ID)
        assert repo.get_sync_config(LIST_ID).state == SyncState.NONE

    @pytest.mark.parametrize("external_id", ["", "   "])
    def test_missing_external_id(self, machine: SyncStateMachine, external_id: str) -> None:
        """Should reject an empty external ID."""
        with pytest.raises(MissingExternalIDError):
            machine.enable(LIST_ID, SyncSource.MANUAL, external_id)

    def test_resets_base(self, machine: SyncStateMachine, repo: InMemoryRepository) -> None:
        """Should start from an empty base snapshot."""
        repo.save_base_snapshot(LIST_ID, snapshot(item("a", "A")))
        machine.enable(LIST_ID, SyncSource.MANUAL, EXTERNAL_ID)
        assert repo.get_base_snapshot(LIST_ID) is None


class TestDisable:
    """Tests for SyncStateMachine.disable."""

    @pytest.mark.parametrize("state", [SyncState.PENDING, SyncState.SYNCED, SyncState.CONFLICT])
    def test_disable_from_state(
        self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str, state: SyncState
    ) -> None:
        """Should clear source and external ID from any state."""
        repo.force_config(enabled, state=state)
        config = machine.disable(enabled)
        assert config == SyncConfig(revision=config.revision)
        config.validate()

    def test_disable_disabled_is_noop(self, machine: SyncStateMachine, repo: InMemoryRepository) -> None:
        """Should not write when already disabled."""
        machine.disable(LIST_ID)
        assert repo.write_count == 0
        assert repo.get_sync_config(LIST_ID).state == SyncState.NONE

    def test_discards_open_conflicts(
        self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str
    ) -> None:
        """Should mark open conflicts inactive, not delete them."""
        repo.create_conflict(_conflict())
        repo.force_config(enabled, state=SyncState.CONFLICT)

        machine.disable(enabled)

        assert repo.get_open_conflicts(enabled) == []
        [stored] = repo.all_conflicts(enabled)
        assert stored.active is False

    def test_releases_lease(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should drop an in-flight lease."""
        machine.begin_pass(enabled)
        assert machine.disable(enabled).pass_id is None


class TestMarkLocalChange:
    """Tests for SyncStateMachine.mark_local_change."""

    def test_synced_to_pending(
        self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str
    ) -> None:
        """Should move SYNCED to PENDING."""
        repo.force_config(enabled, state=SyncState.SYNCED)
        config = machine.mark_local_change(enabled)
        assert config.state == SyncState.PENDING
        assert config.local_ahead

    def test_pending_is_noop(self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str) -> None:
        """Should keep PENDING and only write once."""
        machine.mark_local_change(enabled)
        writes = repo.write_count
        assert machine.mark_local_change(enabled).state == SyncState.PENDING
        assert repo.write_count == writes

    def test_conflict_rejected(
        self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str
    ) -> None:
        """Should reject local changes while conflicted."""
        repo.force_config(enabled, state=SyncState.CONFLICT)
        with pytest.raises(InvalidTransitionError):
            machine.mark_local_change(enabled)

    def test_disabled_rejected(self, machine: SyncStateMachine) -> None:
        """Should reject local changes when sync is disabled."""
        with pytest.raises(InvalidTransitionError):
            machine.mark_local_change(LIST_ID)


class TestPasses:
    """Tests for the single-flight pass lease."""

    def test_begin_pass(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should take the lease without changing the state."""
        sync_pass = machine.begin_pass(enabled)
        config = machine.get_config(enabled)
        assert config.pass_id == sync_pass.pass_id
        assert config.state == SyncState.PENDING
        assert sync_pass.started_state == SyncState.PENDING

    def test_disabled_list(self, machine: SyncStateMachine) -> None:
        """Should raise SyncDisabledError."""
        with pytest.raises(SyncDisabledError):
            machine.begin_pass(LIST_ID)

    def test_second_pass_rejected(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should reject a pass while another holds the lease."""
        machine.begin_pass(enabled)
        with pytest.raises(AlreadyInProgressError):
            machine.begin_pass(enabled)

    def test_conflict_rejected(
        self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str
    ) -> None:
        """Should not start a pass on a conflicted list."""
        repo.force_config(enabled, state=SyncState.CONFLICT)
        with pytest.raises(InvalidTransitionError):
            machine.begin_pass(enabled)

    def test_expired_lease_taken_over(self, repo: InMemoryRepository) -> None:
        """Should take over a lease older than the timeout."""
        now = [datetime(2024, 1, 1, tzinfo=UTC)]
        machine = SyncStateMachine(repo, pass_lease_timeout=60, clock=lambda: now[0])
        machine.enable(LIST_ID, SyncSource.MANUAL, EXTERNAL_ID)
        first = machine.begin_pass(LIST_ID)

        now[0] += timedelta(seconds=61)
        second = machine.begin_pass(LIST_ID)

        assert second.pass_id != first.pass_id
        assert machine.get_config(LIST_ID).pass_id == second.pass_id

    def test_lost_race_is_in_progress(
        self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str
    ) -> None:
        """Should turn a lost compare-and-set into AlreadyInProgressError."""
        repo.before_write = lambda list_id: repo.force_config(list_id)
        with pytest.raises(AlreadyInProgressError):
            machine.begin_pass(enabled)


class TestReconciliationResult:
    """Tests for recording pass outcomes."""

    def test_clean_sync(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should move PENDING to SYNCED and release the lease."""
        sync_pass = machine.begin_pass(enabled)
        config = machine.apply_reconciliation_result(
            enabled, SyncOutcome.CLEAN_SYNC, sync_pass.pass_id
        )
        assert config.state == SyncState.SYNCED
        assert config.last_synced_at is not None
        assert config.pass_id is None

    def test_conflicts_raised(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should move PENDING to CONFLICT."""
        config = machine.apply_reconciliation_result(
            enabled, SyncOutcome.CONFLICTS_RAISED, local_ahead=True
        )
        assert config.state == SyncState.CONFLICT
        assert config.local_ahead
        assert config.last_synced_at is None

    @pytest.mark.parametrize("state", [SyncState.SYNCED, SyncState.CONFLICT])
    def test_requires_pending(
        self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str, state: SyncState
    ) -> None:
        """Should reject results outside PENDING."""
        repo.force_config(enabled, state=state)
        with pytest.raises(InvalidTransitionError):
            machine.apply_reconciliation_result(enabled, SyncOutcome.CLEAN_SYNC)

    def test_lost_lease(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should refuse a result from a pass that no longer holds the lease."""
        machine.begin_pass(enabled)
        with pytest.raises(LeaseLostError) as exc_info:
            machine.apply_reconciliation_result(enabled, SyncOutcome.CLEAN_SYNC, "stale")
        assert exc_info.value.pass_id == "stale"

    def test_reenabled_mid_pass(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should raise LeaseLostError when sync was disabled and enabled again."""
        sync_pass = machine.begin_pass(enabled)
        machine.disable(enabled)
        machine.enable(enabled, SyncSource.MANUAL, "new-id")

        with pytest.raises(LeaseLostError):
            machine.apply_reconciliation_result(
                enabled, SyncOutcome.CLEAN_SYNC, sync_pass.pass_id
            )
        config = machine.get_config(enabled)
        assert config.state == SyncState.PENDING
        assert config.external_id == "new-id"

    def test_disabled_mid_pass(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should raise InvalidTransitionError when sync was disabled."""
        sync_pass = machine.begin_pass(enabled)
        machine.disable(enabled)
        with pytest.raises(InvalidTransitionError):
            machine.apply_reconciliation_result(
                enabled, SyncOutcome.CLEAN_SYNC, sync_pass.pass_id
            )

    def test_logs_transition(
        self, machine: SyncStateMachine, enabled: str, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Should log state changes at INFO."""
        with caplog.at_level(logging.INFO, logger="listsync"):
            machine.apply_reconciliation_result(enabled, SyncOutcome.CLEAN_SYNC)
        assert "pending -> synced" in caplog.text


class TestRefreshResult:
    """Tests for passes that started from SYNCED."""

    @pytest.fixture
    def synced(self, machine: SyncStateMachine, enabled: str) -> str:
        machine.apply_reconciliation_result(enabled, SyncOutcome.CLEAN_SYNC)
        return enabled

    def test_clean_refresh(self, machine: SyncStateMachine, synced: str) -> None:
        """Should stay SYNCED."""
        sync_pass = machine.begin_pass(synced)
        assert sync_pass.started_state == SyncState.SYNCED
        config = machine.apply_refresh_result(synced, SyncOutcome.CLEAN_SYNC, sync_pass.pass_id)
        assert config.state == SyncState.SYNCED
        assert config.pass_id is None

    def test_remote_conflict(self, machine: SyncStateMachine, synced: str) -> None:
        """Should move SYNCED to CONFLICT."""
        sync_pass = machine.begin_pass(synced)
        config = machine.apply_refresh_result(
            synced, SyncOutcome.CONFLICTS_RAISED, sync_pass.pass_id
        )
        assert config.state == SyncState.CONFLICT

    def test_local_change_during_pass(self, machine: SyncStateMachine, synced: str) -> None:
        """Should keep PENDING when a local edit arrived mid-pass."""
        sync_pass = machine.begin_pass(synced)
        machine.mark_local_change(synced)

        config = machine.apply_refresh_result(synced, SyncOutcome.CLEAN_SYNC, sync_pass.pass_id)

        assert config.state == SyncState.PENDING
        assert config.local_ahead
        assert config.pass_id is None

    def test_local_change_then_conflict(self, machine: SyncStateMachine, synced: str) -> None:
        """Should go to CONFLICT with local edits marked unpushed."""
        sync_pass = machine.begin_pass(synced)
        machine.mark_local_change(synced)

        config = machine.apply_refresh_result(
            synced, SyncOutcome.CONFLICTS_RAISED, sync_pass.pass_id
        )

        assert config.state == SyncState.CONFLICT
        assert config.local_ahead

    def test_reenabled_during_refresh(self, machine: SyncStateMachine, synced: str) -> None:
        """Should refuse a clean refresh whose list was re-enabled meanwhile."""
        sync_pass = machine.begin_pass(synced)
        machine.disable(synced)
        machine.enable(synced, SyncSource.MANUAL, "new-id")

        with pytest.raises(LeaseLostError):
            machine.apply_refresh_result(synced, SyncOutcome.CLEAN_SYNC, sync_pass.pass_id)

        with pytest.raises(LeaseLostError):
            machine.check_lease(sync_pass)


class TestAbortPass:
    """Tests for SyncStateMachine.abort_pass."""

    def test_keeps_state_and_records_error(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should release the lease and set last_error."""
        sync_pass = machine.begin_pass(enabled)
        config = machine.abort_pass(enabled, sync_pass.pass_id, RuntimeError("source down"))
        assert config.state == SyncState.PENDING
        assert config.last_error == "source down"
        assert config.pass_id is None

    def test_lost_lease_left_alone(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should not touch a lease owned by another pass."""
        current = machine.begin_pass(enabled)
        machine.abort_pass(enabled, "stale", RuntimeError("x"))
        config = machine.get_config(enabled)
        assert config.pass_id == current.pass_id
        assert config.last_error is None


class TestResolveAllConflicts:
    """Tests for SyncStateMachine.resolve_all_conflicts."""

    def test_partial(self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str) -> None:
        """Should move CONFLICT to PENDING."""
        repo.force_config(enabled, state=SyncState.CONFLICT)
        config = machine.resolve_all_conflicts(enabled)
        assert config.state == SyncState.PENDING
        assert config.local_ahead

    def test_full(self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str) -> None:
        """Should move CONFLICT to SYNCED."""
        repo.force_config(enabled, state=SyncState.CONFLICT)
        config = machine.resolve_all_conflicts(enabled, in_sync=True)
        assert config.state == SyncState.SYNCED
        assert config.last_synced_at is not None

    def test_requires_conflict(self, machine: SyncStateMachine, enabled: str) -> None:
        """Should reject outside CONFLICT."""
        with pytest.raises(InvalidTransitionError):
            machine.resolve_all_conflicts(enabled)


class TestCompareAndSet:
    """Tests for optimistic concurrency on config writes."""

    def test_retries_once(self, machine: SyncStateMachine, repo: InMemoryRepository) -> None:
        """Should re-read and succeed after one lost race."""
        calls: list[str] = []

        def interfere(list_id: str) -> None:
            calls.append(list_id)
            if len(calls) == 1:
                repo.force_config(list_id)

        repo.before_write = interfere
        config = machine.enable(LIST_ID, SyncSource.MANUAL, EXTERNAL_ID)
        assert config.state == SyncState.PENDING
        assert config.revision == 2
        assert len(calls) == 2

    def test_gives_up_after_retry(self, machine: SyncStateMachine, repo: InMemoryRepository) -> None:
        """Should surface ConcurrentModificationError when the retry loses too."""
        repo.before_write = lambda list_id: repo.force_config(list_id)
        with pytest.raises(ConcurrentModificationError):
            machine.enable(LIST_ID, SyncSource.MANUAL, EXTERNAL_ID)
        assert repo.get_sync_config(LIST_ID).state == SyncState.NONE

    def test_revalidates_on_retry(
        self, machine: SyncStateMachine, repo: InMemoryRepository, enabled: str
    ) -> None:
        """Should apply the transition to the re-read state."""

        def conflict_meanwhile(list_id: str) -> None:
            repo.before_write = None
            repo.force_config(list_id, state=SyncState.CONFLICT)

        repo.force_config(enabled, state=SyncState.SYNCED)
        repo.before_write = conflict_meanwhile
        with pytest.raises(InvalidTransitionError):
            machine.mark_local_change(enabled)
