"""Tests for conflict resolution."""

from __future__ import annotations

import pytest

from listsync.core.errors import (
    AlreadyResolvedError,
    ConflictNotFoundError,
    InvalidResolutionError,
    PartialResolutionError,
)
from listsync.core.types import ResolutionStrategy, SyncSource, SyncState
from listsync.sync.domain import Merged, UseLocal, UseRemote
from listsync.sync.reconciler import Reconciler
from listsync.sync.resolver import ConflictResolver
from listsync.sync.state_machine import SyncStateMachine
from tests.fakes import EXTERNAL_ID, FakeSource, InMemoryRepository, item, snapshot


@pytest.fixture
def two_conflicts(
    reconciler: Reconciler,
    repo: InMemoryRepository,
    source: FakeSource,
    machine: SyncStateMachine,
    synced: str,
) -> str:
    """Rename both items differently on both sides."""
    repo.set_local(
        synced, snapshot(item("item1", "Cafe L"), item("item2", "Museum L"), title="Trip")
    )
    machine.mark_local_change(synced)
    source.snapshots[EXTERNAL_ID] = snapshot(
        item("item1", "Cafe R"), item("item2", "Museum R"), title="Trip"
    )
    reconciler.run_sync(synced)
    return synced


class TestResolve:
    """Tests for ConflictResolver.resolve."""

    def test_use_local(
        self, resolver: ConflictResolver, repo: InMemoryRepository, conflicted: str
    ) -> None:
        """Should keep the local value and move to PENDING for re-sync."""
        [conflict] = resolver.get_open_conflicts(conflicted)

        resolved = resolver.resolve(conflict.id, UseLocal())

        assert resolved.is_resolved
        assert resolved.resolution_strategy == ResolutionStrategy.USE_LOCAL
        assert resolved.resolved_data == {"name": "Cafe Local"}
        assert repo.get_local_snapshot(conflicted).get("item1").name == "Cafe Local"
        assert repo.get_sync_config(conflicted).state == SyncState.PENDING

    def test_use_remote(
        self,
        reconciler: Reconciler,
        resolver: ConflictResolver,
        repo: InMemoryRepository,
        source: FakeSource,
        conflicted: str,
    ) -> None:
        """Should write the remote value and wait for a re-sync."""
        [conflict] = resolver.get_open_conflicts(conflicted)

        resolver.resolve(conflict.id, UseRemote())

        assert repo.get_local_snapshot(conflicted).get("item1").name == "Cafe Remote"
        assert repo.get_sync_config(conflicted).state == SyncState.PENDING

        result = reconciler.run_sync(conflicted)

        assert result.state == SyncState.SYNCED
        assert result.pushed == 0
        assert source.pushed == []

    def test_merged(
        self, resolver: ConflictResolver, repo: InMemoryRepository, conflicted: str
    ) -> None:
        """Should write the merged payload."""
        [conflict] = resolver.get_open_conflicts(conflicted)

        resolved = resolver.resolve(conflict.id, Merged({"name": "Cafe Both", "rating": 5}))

        assert resolved.resolution_strategy == ResolutionStrategy.MERGED
        local = repo.get_local_snapshot(conflicted).get("item1")
        assert local.values() == {"name": "Cafe Both", "rating": 5}
        assert repo.get_sync_config(conflicted).state == SyncState.PENDING

    def test_invalid_merge(
        self, resolver: ConflictResolver, repo: InMemoryRepository, conflicted: str
    ) -> None:
        """Should reject a malformed payload and leave the conflict open."""
        [conflict] = resolver.get_open_conflicts(conflicted)

        with pytest.raises(InvalidResolutionError):
            resolver.resolve(conflict.id, Merged({"rating": 5}))

        assert resolver.get_open_conflicts(conflicted)
        assert repo.get_local_snapshot(conflicted).get("item1").name == "Cafe Local"
        assert repo.get_sync_config(conflicted).state == SyncState.CONFLICT

    def test_unknown_conflict(self, resolver: ConflictResolver) -> None:
        """Should raise ConflictNotFoundError."""
        with pytest.raises(ConflictNotFoundError):
            resolver.resolve("missing", UseLocal())

    def test_already_resolved(
        self, resolver: ConflictResolver, repo: InMemoryRepository, conflicted: str
    ) -> None:
        """Should raise AlreadyResolvedError and keep the first stamp."""
        [conflict] = resolver.get_open_conflicts(conflicted)
        first = resolver.resolve(conflict.id, UseLocal())

        with pytest.raises(AlreadyResolvedError):
            resolver.resolve(conflict.id, UseRemote())

        stored = repo.get_conflict(conflict.id)
        assert stored.resolved_at == first.resolved_at
        assert stored.resolution_strategy == ResolutionStrategy.USE_LOCAL

    def test_discarded_conflict(
        self,
        resolver: ConflictResolver,
        machine: SyncStateMachine,
        conflicted: str,
    ) -> None:
        """Should treat conflicts discarded by disabling sync as not found."""
        [conflict] = resolver.get_open_conflicts(conflicted)
        machine.disable(conflicted)

        with pytest.raises(ConflictNotFoundError):
            resolver.resolve(conflict.id, UseLocal())

    def test_last_conflict_closes_list(
        self, resolver: ConflictResolver, repo: InMemoryRepository, two_conflicts: str
    ) -> None:
        """Should stay in CONFLICT until every conflict is resolved."""
        first, second = resolver.get_open_conflicts(two_conflicts)

        resolver.resolve(first.id, UseRemote())
        assert repo.get_sync_config(two_conflicts).state == SyncState.CONFLICT

        resolver.resolve(second.id, UseRemote())
        assert repo.get_sync_config(two_conflicts).state == SyncState.PENDING

    def test_mixed_decisions_need_resync(
        self, resolver: ConflictResolver, repo: InMemoryRepository, two_conflicts: str
    ) -> None:
        """Should go to PENDING when any resolution differs from remote."""
        first, second = resolver.get_open_conflicts(two_conflicts)
        resolver.resolve(first.id, UseRemote())
        resolver.resolve(second.id, UseLocal())
        assert repo.get_sync_config(two_conflicts).state == SyncState.PENDING

    def test_unpushed_local_edits_need_resync(
        self,
        reconciler: Reconciler,
        resolver: ConflictResolver,
        repo: InMemoryRepository,
        source: FakeSource,
        synced: str,
    ) -> None:
        """Should go to PENDING when the pass left local edits unpushed."""
        repo.set_local(
            synced,
            snapshot(
                item("item1", "Cafe L"), item("item2", "Museum"), item("item9", "New"),
                title="Trip",
            ),
        )
        source.snapshots[EXTERNAL_ID] = snapshot(
            item("item1", "Cafe R"), item("item2", "Museum"), title="Trip"
        )
        reconciler.run_sync(synced)
        resolver.auto_resolve(synced, ResolutionStrategy.SOURCE_PRIORITY)

        assert repo.get_sync_config(synced).state == SyncState.PENDING

    def test_resync_after_use_local(
        self,
        reconciler: Reconciler,
        resolver: ConflictResolver,
        repo: InMemoryRepository,
        source: FakeSource,
        conflicted: str,
    ) -> None:
        """Should push the kept local value on the next pass without a new conflict."""
        [conflict] = resolver.get_open_conflicts(conflicted)
        resolver.resolve(conflict.id, UseLocal())

        result = reconciler.run_sync(conflicted)

        assert result.conflicts == []
        assert result.state == SyncState.SYNCED
        assert source.snapshots[EXTERNAL_ID].get("item1").name == "Cafe Local"


class TestAutoResolve:
    """Tests for ConflictResolver.auto_resolve."""

    def test_source_priority(
        self, resolver: ConflictResolver, repo: InMemoryRepository, two_conflicts: str
    ) -> None:
        """Should take every remote value and leave no open conflicts."""
        resolved = resolver.auto_resolve(two_conflicts, ResolutionStrategy.SOURCE_PRIORITY)

        assert len(resolved) == 2
        assert all(c.resolution_strategy == ResolutionStrategy.SOURCE_PRIORITY for c in resolved)
        assert resolver.get_open_conflicts(two_conflicts) == []
        local = repo.get_local_snapshot(two_conflicts)
        assert [i.name for i in local] == ["Cafe R", "Museum R"]
        assert repo.get_sync_config(two_conflicts).state == SyncState.SYNCED

    def test_last_write_wins_waits_for_resync(
        self, resolver: ConflictResolver, repo: InMemoryRepository, two_conflicts: str
    ) -> None:
        """Should go to PENDING even when every pick is the remote value."""
        resolved = resolver.auto_resolve(two_conflicts, ResolutionStrategy.LAST_WRITE_WINS)

        assert all(c.matches_remote for c in resolved)
        assert repo.get_sync_config(two_conflicts).state == SyncState.PENDING

    def test_local_priority(
        self, resolver: ConflictResolver, repo: InMemoryRepository, two_conflicts: str
    ) -> None:
        """Should keep every local value and wait for a re-sync."""
        resolver.auto_resolve(two_conflicts, "local_priority")

        local = repo.get_local_snapshot(two_conflicts)
        assert [i.name for i in local] == ["Cafe L", "Museum L"]
        assert repo.get_sync_config(two_conflicts).state == SyncState.PENDING

    def test_merge_fields(
        self,
        reconciler: Reconciler,
        resolver: ConflictResolver,
        repo: InMemoryRepository,
        source: FakeSource,
        synced: str,
    ) -> None:
        """Should combine fields edited on different sides."""
        repo.set_local(
            synced, snapshot(item("item1", "Cafe", rating=5), item("item2", "Museum"), title="Trip")
        )
        source.snapshots[EXTERNAL_ID] = snapshot(
            item("item1", "Cafe", notes="closed mondays"), item("item2", "Museum"), title="Trip"
        )
        reconciler.run_sync(synced)

        [resolved] = resolver.auto_resolve(synced, ResolutionStrategy.MERGE_FIELDS)

        expected = {"name": "Cafe", "rating": 5, "notes": "closed mondays"}
        assert resolved.resolved_data == expected
        assert repo.get_local_snapshot(synced).get("item1").values() == expected
        assert repo.get_sync_config(synced).state == SyncState.PENDING

    @pytest.mark.parametrize("strategy", ["use_local", "merged", "bogus"])
    def test_rejects_non_automatic(
        self, resolver: ConflictResolver, conflicted: str, strategy: str
    ) -> None:
        """Should reject manual and unknown strategies."""
        with pytest.raises(InvalidResolutionError):
            resolver.auto_resolve(conflicted, strategy)

    def test_partial_failure(
        self, resolver: ConflictResolver, repo: InMemoryRepository, two_conflicts: str
    ) -> None:
        """Should report which conflicts succeeded and stay in CONFLICT."""
        first, second = resolver.get_open_conflicts(two_conflicts)
        repo.fail_resolve = {second.id}

        with pytest.raises(PartialResolutionError) as exc_info:
            resolver.auto_resolve(two_conflicts, ResolutionStrategy.SOURCE_PRIORITY)

        assert exc_info.value.succeeded == [first.id]
        assert list(exc_info.value.failed) == [second.id]
        assert repo.get_conflict(first.id).is_resolved
        assert repo.get_sync_config(two_conflicts).state == SyncState.CONFLICT

        repo.fail_resolve = set()
        [retried] = resolver.auto_resolve(two_conflicts, ResolutionStrategy.SOURCE_PRIORITY)

        assert retried.id == second.id
        assert repo.get_conflict(first.id).resolved_at is not None
        assert repo.get_sync_config(two_conflicts).state == SyncState.SYNCED

    def test_no_open_conflicts(
        self, resolver: ConflictResolver, repo: InMemoryRepository, enabled: str
    ) -> None:
        """Should leave CONFLICT even when nothing is left to resolve."""
        repo.force_config(enabled, state=SyncState.CONFLICT)
        assert resolver.auto_resolve(enabled, ResolutionStrategy.LAST_WRITE_WINS) == []
        assert repo.get_sync_config(enabled).state == SyncState.PENDING


class TestReenable:
    """Tests for disabling and re-enabling sync."""

    def test_stale_conflicts_stay_inactive(
        self,
        resolver: ConflictResolver,
        machine: SyncStateMachine,
        repo: InMemoryRepository,
        conflicted: str,
    ) -> None:
        """Should not surface conflicts from the previous source."""
        machine.disable(conflicted)
        config = machine.enable(conflicted, SyncSource.MANUAL, "new-id")

        assert config.state == SyncState.PENDING
        assert resolver.get_open_conflicts(conflicted) == []
        assert all(not c.active for c in repo.all_conflicts(conflicted))
