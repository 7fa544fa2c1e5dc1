"""Assembly of the sync engine for a host process.

Usage:
    engine = SyncEngine.create(repository, source, EngineConfig.from_env())
    engine.start()
    engine.state_machine.enable(list_id, SyncSource.GOOGLE_MAPS, "abc")
    ...
    engine.stop()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from listsync.core.config import EngineConfig
from listsync.sync.reconciler import Reconciler
from listsync.sync.resolver import ConflictResolver
from listsync.sync.state_machine import SyncStateMachine
from listsync.worker.scheduler import SyncScheduler

if TYPE_CHECKING:
    from listsync.sync.protocols import ExternalSource, Repository

logger = logging.getLogger(__name__)


@dataclass
class SyncEngine:
    """State machine, reconciler, resolver and scheduler sharing one repository."""

    config: EngineConfig
    state_machine: SyncStateMachine
    reconciler: Reconciler
    resolver: ConflictResolver
    scheduler: SyncScheduler

    @classmethod
    def create(
        cls,
        repository: Repository,
        source: ExternalSource,
        config: EngineConfig | None = None,
    ) -> SyncEngine:
        """Build an engine; enabling sync queues a sync on the scheduler."""
        config = config or EngineConfig()
        state_machine = SyncStateMachine(
            repository, pass_lease_timeout=config.pass_lease_timeout
        )
        reconciler = Reconciler(
            state_machine, repository, source, fetch_timeout=config.fetch_timeout
        )
        resolver = ConflictResolver(state_machine, repository)
        scheduler = SyncScheduler(reconciler, repository, config)
        state_machine.set_on_enabled(scheduler.trigger)
        return cls(
            config=config,
            state_machine=state_machine,
            reconciler=reconciler,
            resolver=resolver,
            scheduler=scheduler,
        )

    def start(self) -> None:
        self.scheduler.start()

    def stop(self, wait: bool = False) -> None:
        self.scheduler.stop(wait=wait)
