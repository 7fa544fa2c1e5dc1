"""Resolution decisions and automatic resolution strategies.

Manual decisions:
| Decision      | Value written           | Recorded strategy |
|---------------|-------------------------|-------------------|
| UseLocal      | local side              | use_local         |
| UseRemote     | remote side             | use_remote        |
| Merged(value) | caller supplied value   | merged            |

Automatic strategies map each conflict to one of those decisions:
| Strategy         | Decision                                          |
|------------------|---------------------------------------------------|
| last_write_wins  | side with the later timestamp (ties: remote)      |
| source_priority  | UseRemote                                         |
| local_priority   | UseLocal                                          |
| merge_fields     | per-field merge, last_write_wins on double edits  |
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from listsync.core.types import ResolutionStrategy
from listsync.sync.domain.conflicts import ConflictPayload, ItemUpdatePayload


@dataclass(frozen=True)
class UseLocal:
    """Keep the local side."""

    strategy = ResolutionStrategy.USE_LOCAL

    def value_for(self, payload: ConflictPayload) -> Any:
        return payload.local_value()


@dataclass(frozen=True)
class UseRemote:
    """Take the remote side."""

    strategy = ResolutionStrategy.USE_REMOTE

    def value_for(self, payload: ConflictPayload) -> Any:
        return payload.remote_value()


@dataclass(frozen=True)
class Merged:
    """Write a caller supplied value (validated against the payload shape)."""

    payload: Any

    strategy = ResolutionStrategy.MERGED

    def value_for(self, payload: ConflictPayload) -> Any:
        payload.check(self.payload)
        return self.payload


Decision = UseLocal | UseRemote | Merged


def remote_is_newer(local_at: datetime | None, remote_at: datetime | None) -> bool:
    """Last-write-wins comparison.

    Unknown timestamps lose against known ones; ties and two unknown
    timestamps go to the remote side.
    """
    if remote_at is None:
        return local_at is None
    if local_at is None:
        return True
    return remote_at >= local_at


def last_write_wins(payload: ConflictPayload) -> Decision:
    if remote_is_newer(payload.local_updated_at, payload.remote_updated_at):
        return UseRemote()
    return UseLocal()


def merge_fields(payload: ConflictPayload) -> Decision:
    """Merge an item update field by field.

    Fields only one side touched take that side's value; fields both
    sides touched follow last_write_wins. Non-item conflicts have no
    fields and fall back to last_write_wins as a whole.
    """
    if not isinstance(payload, ItemUpdatePayload):
        return last_write_wins(payload)

    local_touched = payload.touched_fields(payload.local_values)
    remote_touched = payload.touched_fields(payload.remote_values)
    remote_wins_ties = remote_is_newer(payload.local_updated_at, payload.remote_updated_at)

    merged: dict[str, Any] = dict(payload.base_values)
    for name in local_touched | remote_touched:
        if name in remote_touched and (name not in local_touched or remote_wins_ties):
            source = payload.remote_values
        else:
            source = payload.local_values
        if name in source:
            merged[name] = source[name]
        else:
            merged.pop(name, None)

    if merged == payload.remote_value():
        return UseRemote()
    if merged == payload.local_value():
        return UseLocal()
    return Merged(merged)


def decide(payload: ConflictPayload, strategy: ResolutionStrategy) -> Decision:
    """Map an automatic strategy to a decision for one conflict.

    Raises:
        ValueError: If ``strategy`` is a manual decision.
    """
    if strategy == ResolutionStrategy.SOURCE_PRIORITY:
        return UseRemote()
    if strategy == ResolutionStrategy.LOCAL_PRIORITY:
        return UseLocal()
    if strategy == ResolutionStrategy.LAST_WRITE_WINS:
        return last_write_wins(payload)
    if strategy == ResolutionStrategy.MERGE_FIELDS:
        return merge_fields(payload)
    raise ValueError(f"Not an automatic strategy: {strategy.value}")
