"""Units of work run by the sync scheduler.

This module provides:
- sync_enabled_lists: reconcile every sync-enabled list, one failure
  never aborting the batch
- purge_resolved_conflicts: drop conflicts resolved before the retention
  window
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from listsync.core.errors import AlreadyInProgressError, LeaseLostError, is_transient
from listsync.core.types import SyncOutcome, SyncState

if TYPE_CHECKING:
    from listsync.sync.protocols import Repository
    from listsync.sync.reconciler import Reconciler, SyncResult
    from listsync.sync.retry import BackoffTracker

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of one reconciliation batch.

    Attributes:
        synced: Lists that ended the pass without conflicts.
        conflicted: Lists whose pass raised conflicts.
        skipped: Lists not attempted (conflict, backoff, pass in flight).
        failed: List ID -> error message.
        elapsed_time: Time taken in seconds.
    """

    synced: list[str] = field(default_factory=list)
    conflicted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    elapsed_time: float = 0.0

    @property
    def total(self) -> int:
        return len(self.synced) + len(self.conflicted) + len(self.skipped) + len(self.failed)


def sync_one(
    reconciler: Reconciler,
    list_id: str,
    backoff: BackoffTracker | None = None,
) -> SyncResult:
    """Run one pass and feed the outcome into the backoff tracker.

    Errors are re-raised after being recorded.
    """
    try:
        result = reconciler.run_sync(list_id)
    except Exception as e:
        if backoff is not None and is_transient(e):
            backoff.record_failure(list_id, e)
        raise
    if backoff is not None:
        backoff.record_success(list_id)
    return result


def sync_enabled_lists(
    reconciler: Reconciler,
    repository: Repository,
    backoff: BackoffTracker | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> BatchResult:
    """Reconcile every sync-enabled list.

    Lists in CONFLICT wait for resolution; lists in backoff wait for their
    window. Per-list errors are logged and collected.

    Args:
        reconciler: Reconciler running the passes.
        repository: Source of the sync-enabled list IDs and configs.
        backoff: Optional per-list backoff after source failures.
        should_stop: Checked before each list; True ends the batch early.

    Returns:
        BatchResult of the batch.
    """
    start = time.monotonic()
    result = BatchResult()
    list_ids = repository.get_sync_enabled_lists()
    if backoff is not None:
        dropped = backoff.retain(list_ids)
        if dropped:
            logger.debug("Dropped backoff of %d list(s) no longer enabled", dropped)
    logger.info("Starting sync batch for %d list(s)", len(list_ids))

    for list_id in list_ids:
        if should_stop is not None and should_stop():
            logger.info("Sync batch interrupted by stop request")
            break

        if backoff is not None and not backoff.should_attempt(list_id):
            logger.debug("List %s in backoff, skipping", list_id)
            result.skipped.append(list_id)
            continue

        try:
            config = repository.get_sync_config(list_id)
            if config.state == SyncState.CONFLICT:
                logger.debug("List %s has unresolved conflicts, skipping", list_id)
                result.skipped.append(list_id)
                continue
            if config.state == SyncState.NONE:
                if backoff is not None:
                    backoff.forget(list_id)
                result.skipped.append(list_id)
                continue
            outcome = sync_one(reconciler, list_id, backoff).outcome
        except AlreadyInProgressError:
            logger.debug("List %s already syncing, skipping", list_id)
            result.skipped.append(list_id)
        except LeaseLostError as e:
            logger.warning("Sync of list %s superseded: %s", list_id, e)
            result.skipped.append(list_id)
        except Exception as e:
            if is_transient(e):
                logger.warning("Sync of list %s failed: %s", list_id, e)
            else:
                logger.exception("Sync of list %s failed", list_id)
            result.failed[list_id] = str(e) or type(e).__name__
        else:
            if outcome == SyncOutcome.CLEAN_SYNC:
                result.synced.append(list_id)
            else:
                result.conflicted.append(list_id)

    result.elapsed_time = time.monotonic() - start
    logger.info(
        "Sync batch completed: %d synced, %d conflicted, %d skipped, %d failed (%.2fs)",
        len(result.synced),
        len(result.conflicted),
        len(result.skipped),
        len(result.failed),
        result.elapsed_time,
    )
    return result


def purge_resolved_conflicts(
    repository: Repository,
    retention_days: int = 30,
    now: datetime | None = None,
) -> int:
    """Delete conflicts resolved more than ``retention_days`` ago.

    Returns:
        Number of conflicts deleted.
    """
    cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
    deleted = repository.delete_resolved_conflicts_older_than(cutoff)

    if deleted > 0:
        logger.info("Conflict purge completed: %d resolved conflicts deleted", deleted)
    else:
        logger.debug("Conflict purge: no conflicts resolved before %s", cutoff.isoformat())
    return deleted
