"""Conflict resolution, manual or automatic.

Resolving one conflict:
1. Validate the decision against the payload shape
2. Write the chosen value into the local snapshot
3. Move the base snapshot to the remote side for that key, so the next
   pass sees the resolution as a local edit (or as no change at all)
4. Stamp ``resolved_at``/``resolution_strategy`` (atomic in the repository)
5. If no open conflicts are left, leave CONFLICT through the state machine:
   straight to SYNCED only when every conflict of the pass was settled on
   the remote value by source_priority or merge_fields, otherwise to
   PENDING for a re-sync

Steps 2-3 are idempotent, so a conflict whose stamp failed can simply be
resolved again.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from listsync.core.errors import (
    AlreadyResolvedError,
    ConflictNotFoundError,
    InvalidResolutionError,
    InvalidTransitionError,
    PartialResolutionError,
)
from listsync.core.types import ResolutionStrategy, SyncState
from listsync.sync.domain.resolutions import Decision, decide

if TYPE_CHECKING:
    from listsync.sync.domain.conflicts import Conflict
    from listsync.sync.domain.sync_config import SyncConfig
    from listsync.sync.protocols import Repository
    from listsync.sync.state_machine import SyncStateMachine

logger = logging.getLogger(__name__)

# Automatic strategies that may close a list without a re-sync
IN_SYNC_STRATEGIES = frozenset(
    {ResolutionStrategy.SOURCE_PRIORITY, ResolutionStrategy.MERGE_FIELDS}
)


class ConflictResolver:
    """Applies resolutions to the conflicts of a list."""

    def __init__(self, state_machine: SyncStateMachine, repository: Repository) -> None:
        self._state_machine = state_machine
        self._repository = repository

    def get_open_conflicts(self, list_id: str) -> list[Conflict]:
        return self._repository.get_open_conflicts(list_id)

    def resolve(self, conflict_id: str, decision: Decision) -> Conflict:
        """Resolve one conflict with a manual decision.

        Args:
            conflict_id: Conflict to resolve.
            decision: UseLocal(), UseRemote() or Merged(value).

        Returns:
            The resolved conflict.

        Raises:
            ConflictNotFoundError: Unknown or discarded conflict.
            AlreadyResolvedError: Conflict already has a resolution.
            InvalidResolutionError: Merged value does not fit the conflict.
        """
        conflict = self._load(conflict_id)
        resolved = self._apply(conflict, decision, decision.strategy)
        self._finish_if_clear(conflict)
        return resolved

    def auto_resolve(
        self, list_id: str, strategy: ResolutionStrategy | str
    ) -> list[Conflict]:
        """Resolve every open conflict of a list with an automatic strategy.

        Conflicts are resolved one by one; the ones that succeed stay
        resolved even when others fail.

        Returns:
            Conflicts resolved by this call.

        Raises:
            InvalidResolutionError: ``strategy`` is not an automatic strategy.
            PartialResolutionError: At least one conflict failed; the list
                stays in CONFLICT.
        """
        try:
            strategy = ResolutionStrategy(strategy)
        except ValueError:
            raise InvalidResolutionError(f"Unknown strategy: {strategy!r}") from None
        if not strategy.is_automatic:
            raise InvalidResolutionError(f"Not an automatic strategy: {strategy.value}")

        open_conflicts = self._repository.get_open_conflicts(list_id)
        logger.info(
            "Auto-resolving %d conflict(s) on list %s with %s",
            len(open_conflicts),
            list_id,
            strategy.value,
        )

        resolved: list[Conflict] = []
        failed: dict[str, Exception] = {}
        for conflict in open_conflicts:
            try:
                decision = decide(conflict.payload, strategy)
                resolved.append(self._apply(conflict, decision, strategy))
            except AlreadyResolvedError:
                logger.debug("Conflict %s was resolved concurrently", conflict.id)
            except Exception as e:
                logger.warning("Failed to resolve conflict %s: %s", conflict.id, e)
                failed[conflict.id] = e

        if failed:
            raise PartialResolutionError(
                list_id, [c.id for c in resolved], failed
            ) from next(iter(failed.values()))

        if open_conflicts:
            self._finish_if_clear(open_conflicts[-1])
        else:
            self._finish_list(list_id, pass_id=None)
        return resolved

    def _load(self, conflict_id: str) -> Conflict:
        conflict = self._repository.get_conflict(conflict_id)
        if conflict is None or not conflict.active:
            raise ConflictNotFoundError(conflict_id)
        if conflict.is_resolved:
            raise AlreadyResolvedError(conflict_id)
        return conflict

    def _apply(
        self,
        conflict: Conflict,
        decision: Decision,
        strategy: ResolutionStrategy,
    ) -> Conflict:
        value = decision.value_for(conflict.payload)
        self._repository.apply_snapshot_changes(
            conflict.list_id, conflict.payload.local_edits(value)
        )
        self._repository.apply_base_changes(conflict.list_id, conflict.payload.base_edits())
        resolved = self._repository.resolve_conflict(conflict.id, value, strategy)
        logger.info(
            "Conflict %s on list %s resolved (%s)",
            conflict.id,
            conflict.list_id,
            strategy.value,
        )
        return resolved

    def _finish_if_clear(self, conflict: Conflict) -> SyncConfig | None:
        return self._finish_list(conflict.list_id, conflict.pass_id)

    def _finish_list(self, list_id: str, pass_id: str | None) -> SyncConfig | None:
        """Leave CONFLICT when the list has no open conflicts left.

        The list goes straight to SYNCED only when every conflict of the
        pass ended on the remote value through source_priority or
        merge_fields, and no local edit was left unpushed.
        """
        if self._repository.get_open_conflicts(list_id):
            return None

        config = self._state_machine.get_config(list_id)
        if config.state != SyncState.CONFLICT:
            return None

        in_sync = False
        if pass_id is not None and not config.local_ahead:
            batch = self._repository.get_conflicts_for_pass(list_id, pass_id)
            in_sync = bool(batch) and all(
                c.matches_remote and c.resolution_strategy in IN_SYNC_STRATEGIES
                for c in batch
            )

        try:
            return self._state_machine.resolve_all_conflicts(list_id, in_sync=in_sync)
        except InvalidTransitionError:
            # Another resolver closed the last conflict at the same time.
            if self._state_machine.get_config(list_id).state == SyncState.CONFLICT:
                raise
            return None
