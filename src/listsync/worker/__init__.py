"""Background workers: periodic reconciliation and conflict expiry."""

from listsync.worker.jobs import (
    BatchResult,
    purge_resolved_conflicts,
    sync_enabled_lists,
    sync_one,
)
from listsync.worker.periodic import PeriodicWorker
from listsync.worker.scheduler import PURGE_JOB_ID, SYNC_JOB_ID, SyncScheduler

__all__ = [
    "BatchResult",
    "PURGE_JOB_ID",
    "PeriodicWorker",
    "SYNC_JOB_ID",
    "SyncScheduler",
    "purge_resolved_conflicts",
    "sync_enabled_lists",
    "sync_one",
]
