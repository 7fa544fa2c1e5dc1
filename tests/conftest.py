"""Shared fixtures for listsync tests."""

from __future__ import annotations

import pytest

from listsync.core.types import SyncSource
from listsync.sync.reconciler import Reconciler
from listsync.sync.resolver import ConflictResolver
from listsync.sync.state_machine import SyncStateMachine
from tests.fakes import (
    EXTERNAL_ID,
    LIST_ID,
    FakeSource,
    InMemoryRepository,
    item,
    snapshot,
)


@pytest.fixture
def repo() -> InMemoryRepository:
    """Create a repository holding one empty, sync-disabled list."""
    repository = InMemoryRepository()
    repository.add_list(LIST_ID)
    return repository


@pytest.fixture
def source() -> FakeSource:
    """Create an external source."""
    return FakeSource()


@pytest.fixture
def machine(repo: InMemoryRepository) -> SyncStateMachine:
    """Create a state machine without an on_enabled hook."""
    return SyncStateMachine(repo)


@pytest.fixture
def reconciler(
    machine: SyncStateMachine, repo: InMemoryRepository, source: FakeSource
) -> Reconciler:
    """Create a reconciler."""
    return Reconciler(machine, repo, source, fetch_timeout=5.0)


@pytest.fixture
def resolver(machine: SyncStateMachine, repo: InMemoryRepository) -> ConflictResolver:
    """Create a conflict resolver."""
    return ConflictResolver(machine, repo)


@pytest.fixture
def enabled(machine: SyncStateMachine) -> str:
    """Enable sync on the list and return its ID."""
    machine.enable(LIST_ID, SyncSource.GOOGLE_MAPS, EXTERNAL_ID)
    return LIST_ID


@pytest.fixture
def synced(
    reconciler: Reconciler, repo: InMemoryRepository, source: FakeSource, enabled: str
) -> str:
    """Run a first clean sync on identical snapshots and return the list ID."""
    initial = snapshot(item("item1", "Cafe"), item("item2", "Museum"), title="Trip")
    repo.set_local(enabled, initial)
    source.snapshots[EXTERNAL_ID] = initial
    reconciler.run_sync(enabled)
    return enabled


@pytest.fixture
def conflicted(
    reconciler: Reconciler,
    repo: InMemoryRepository,
    source: FakeSource,
    machine: SyncStateMachine,
    synced: str,
) -> str:
    """Rename item1 differently on both sides and sync, leaving one open conflict."""
    repo.set_local(
        synced, snapshot(item("item1", "Cafe Local"), item("item2", "Museum"), title="Trip")
    )
    machine.mark_local_change(synced)
    source.snapshots[EXTERNAL_ID] = snapshot(
        item("item1", "Cafe Remote"), item("item2", "Museum"), title="Trip"
    )
    reconciler.run_sync(synced)
    return synced
