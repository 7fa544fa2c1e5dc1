"""Scheduler for automatic sync and maintenance tasks.

This module provides:
- Periodic reconciliation of every sync-enabled list
- Periodic purge of resolved conflicts past the retention window
- On-demand one-off syncs (``trigger``), e.g. right after sync is enabled
- Manual run functions for host/CLI usage
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler

from listsync.core.config import EngineConfig
from listsync.sync.retry import BackoffTracker
from listsync.worker.jobs import (
    BatchResult,
    purge_resolved_conflicts,
    sync_enabled_lists,
    sync_one,
)
from listsync.worker.periodic import PeriodicWorker

if TYPE_CHECKING:
    from listsync.sync.protocols import Repository
    from listsync.sync.reconciler import Reconciler

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "list_sync"
PURGE_JOB_ID = "conflict_purge"


class SyncScheduler:
    """Runs reconciliation batches and conflict purges in the background."""

    def __init__(
        self,
        reconciler: Reconciler,
        repository: Repository,
        config: EngineConfig | None = None,
        backoff: BackoffTracker | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            reconciler: Reconciler running the passes.
            repository: Repository for list IDs and conflict purges.
            config: Engine configuration (intervals, retention, backoff).
            backoff: Backoff tracker (built from ``config`` when omitted).
        """
        self._reconciler = reconciler
        self._repository = repository
        self._config = config or EngineConfig()
        self._backoff = backoff or BackoffTracker(
            initial_backoff=self._config.backoff_initial,
            max_backoff=self._config.backoff_max,
            backoff_multiplier=self._config.backoff_multiplier,
        )
        self._scheduler: BackgroundScheduler | None = None
        self._workers: list[PeriodicWorker] = []

    @property
    def backoff(self) -> BackoffTracker:
        return self._backoff

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def _sync_job(self) -> BatchResult:
        """Job function for scheduled reconciliation."""
        return sync_enabled_lists(
            self._reconciler,
            self._repository,
            backoff=self._backoff,
            should_stop=lambda: self._scheduler is None,
        )

    def _purge_job(self) -> int:
        """Job function for scheduled conflict purge."""
        logger.info(
            "Starting scheduled conflict purge (retention: %d days)",
            self._config.conflict_retention_days,
        )
        return purge_resolved_conflicts(self._repository, self._config.conflict_retention_days)

    def start(self) -> None:
        """Start the scheduler; both jobs run once immediately."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler(timezone=UTC)
        self._workers = [
            PeriodicWorker(
                SYNC_JOB_ID, self._config.sync_interval, self._sync_job, self._scheduler
            ),
            PeriodicWorker(
                PURGE_JOB_ID, self._config.purge_interval, self._purge_job, self._scheduler
            ),
        ]
        for worker in self._workers:
            worker.start()
        self._scheduler.start()
        logger.info(
            "Sync scheduler started (sync every %.0fs, purge every %.0fs, retention: %d days)",
            self._config.sync_interval,
            self._config.purge_interval,
            self._config.conflict_retention_days,
        )

    def stop(self, wait: bool = False) -> None:
        """Stop the scheduler.

        No new pass starts after this call; passes in progress finish.

        Args:
            wait: Block until running jobs have finished.
        """
        scheduler = self._scheduler
        if scheduler is None:
            return
        self._scheduler = None
        for worker in self._workers:
            worker.stop()
        scheduler.shutdown(wait=wait)
        self._workers = []
        logger.info("Sync scheduler stopped")

    def trigger(self, list_id: str) -> bool:
        """Queue an immediate one-off sync of a list.

        Returns:
            False when the scheduler is not running (the next batch after
            ``start`` picks the list up).
        """
        scheduler = self._scheduler
        if scheduler is None:
            logger.debug("Scheduler not running, sync of list %s left to next batch", list_id)
            return False

        scheduler.add_job(
            self._sync_list_job,
            trigger="date",
            run_date=datetime.now(UTC),
            args=[list_id],
            id=f"sync:{list_id}",
            name=f"Sync list {list_id}",
            replace_existing=True,
        )
        logger.debug("Queued sync of list %s", list_id)
        return True

    def _sync_list_job(self, list_id: str) -> None:
        """Job function for a one-off sync."""
        try:
            sync_one(self._reconciler, list_id, self._backoff)
        except Exception:
            logger.exception("Error during on-demand sync of list %s", list_id)

    def run_now(self) -> BatchResult:
        """Run a reconciliation batch immediately (manual trigger)."""
        return sync_enabled_lists(self._reconciler, self._repository, backoff=self._backoff)

    def purge_now(self) -> int:
        """Run the conflict purge immediately (manual trigger).

        Returns:
            Number of conflicts deleted.
        """
        return purge_resolved_conflicts(self._repository, self._config.conflict_retention_days)
