"""Three-way change detection between base, local and remote snapshots.

The base is the snapshot both sides agreed on at the last clean sync
(empty before the first one). Every key present in any of the three is
classified by which side moved away from the base:

| Base | Local      | Remote     | Kind            | Conflicting            |
|------|------------|------------|-----------------|------------------------|
| -    | present    | -          | ADDED_LOCAL     | no                     |
| -    | -          | present    | ADDED_REMOTE    | no                     |
| -    | present    | present    | ADDED_BOTH      | if values differ       |
| yes  | changed    | same       | UPDATED_LOCAL   | no                     |
| yes  | same       | changed    | UPDATED_REMOTE  | no                     |
| yes  | changed    | changed    | UPDATED_BOTH    | if values differ       |
| yes  | -          | same       | REMOVED_LOCAL   | no                     |
| yes  | -          | changed    | REMOVED_LOCAL   | yes (edit vs delete)   |
| yes  | same       | -          | REMOVED_REMOTE  | no                     |
| yes  | changed    | -          | REMOVED_REMOTE  | yes (edit vs delete)   |

Changes where both sides ended up equal are dropped.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from listsync.core.types import ConflictType
from listsync.sync.domain.snapshots import (
    ItemRecord,
    PutSetting,
    RemoveItem,
    Snapshot,
    SnapshotChange,
    UpsertItem,
)


class ChangeKind(str, Enum):
    """Classification of one key in a ChangeSet."""

    ADDED_REMOTE = "added_remote"
    ADDED_LOCAL = "added_local"
    ADDED_BOTH = "added_both"
    REMOVED_REMOTE = "removed_remote"
    REMOVED_LOCAL = "removed_local"
    UPDATED_REMOTE = "updated_remote"
    UPDATED_LOCAL = "updated_local"
    UPDATED_BOTH = "updated_both"


LOCAL_KINDS = frozenset({ChangeKind.ADDED_LOCAL, ChangeKind.REMOVED_LOCAL, ChangeKind.UPDATED_LOCAL})
REMOTE_KINDS = frozenset(
    {ChangeKind.ADDED_REMOTE, ChangeKind.REMOVED_REMOTE, ChangeKind.UPDATED_REMOTE}
)


def classify(
    base: Any,
    local: Any,
    remote: Any,
    same: Callable[[Any, Any], bool],
) -> tuple[ChangeKind | None, bool]:
    """Classify one key. ``None`` means absent on that side.

    Returns:
        (kind, conflicting) tuple; kind is None when nothing changed or
        both sides converged on the same value.
    """
    local_changed = not _equal(base, local, same)
    remote_changed = not _equal(base, remote, same)

    if not local_changed and not remote_changed:
        return None, False
    if local_changed and remote_changed and _equal(local, remote, same):
        return None, False

    if base is None:
        if local is not None and remote is not None:
            return ChangeKind.ADDED_BOTH, True
        if local is not None:
            return ChangeKind.ADDED_LOCAL, False
        return ChangeKind.ADDED_REMOTE, False

    if local is None:
        return ChangeKind.REMOVED_LOCAL, remote_changed
    if remote is None:
        return ChangeKind.REMOVED_REMOTE, local_changed
    if local_changed and remote_changed:
        return ChangeKind.UPDATED_BOTH, True
    if local_changed:
        return ChangeKind.UPDATED_LOCAL, False
    return ChangeKind.UPDATED_REMOTE, False


def _equal(a: Any, b: Any, same: Callable[[Any, Any], bool]) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return same(a, b)


def _same_item(a: ItemRecord, b: ItemRecord) -> bool:
    return a.same_content(b)


def _same_value(a: Any, b: Any) -> bool:
    return bool(a == b)


@dataclass(frozen=True)
class ItemChange:
    """Change of one item key."""

    key: str
    kind: ChangeKind
    base: ItemRecord | None
    local: ItemRecord | None
    remote: ItemRecord | None
    conflicting: bool = False

    @property
    def conflict_type(self) -> ConflictType | None:
        if not self.conflicting:
            return None
        if self.kind == ChangeKind.UPDATED_BOTH:
            return ConflictType.ITEM_UPDATE
        return ConflictType.STRUCTURE_CHANGE


@dataclass(frozen=True)
class SettingChange:
    """Change of one list-level setting."""

    key: str
    kind: ChangeKind
    base: Any
    local: Any
    remote: Any
    conflicting: bool = False

    @property
    def conflict_type(self) -> ConflictType | None:
        return ConflictType.SETTINGS_CHANGE if self.conflicting else None


@dataclass
class ChangeSet:
    """Diff between the local and remote snapshot of one pass.

    Lives only for the duration of the pass that computed it.
    """

    items: list[ItemChange] = field(default_factory=list)
    settings: list[SettingChange] = field(default_factory=list)

    @property
    def conflicts(self) -> list[ItemChange | SettingChange]:
        return [c for c in (*self.items, *self.settings) if c.conflicting]

    @property
    def remote_changes(self) -> list[ItemChange | SettingChange]:
        """Non-conflicting changes made on the remote side."""
        return [
            c
            for c in (*self.items, *self.settings)
            if not c.conflicting and c.kind in REMOTE_KINDS
        ]

    @property
    def local_changes(self) -> list[ItemChange | SettingChange]:
        """Non-conflicting changes made on the local side."""
        return [
            c
            for c in (*self.items, *self.settings)
            if not c.conflicting and c.kind in LOCAL_KINDS
        ]

    @property
    def is_empty(self) -> bool:
        return not self.items and not self.settings

    def local_edits(self) -> list[SnapshotChange]:
        """Edits that bring the remote-only changes into the local snapshot."""
        edits: list[SnapshotChange] = []
        for change in self.remote_changes:
            if isinstance(change, SettingChange):
                edits.append(PutSetting(change.key, change.remote))
            elif change.remote is None:
                edits.append(RemoveItem(change.key))
            else:
                edits.append(UpsertItem(change.remote))
        return edits

    def summary(self) -> dict[str, int]:
        """Count changes per kind (conflicts counted separately)."""
        counts: dict[str, int] = {}
        for change in (*self.items, *self.settings):
            name = "conflict" if change.conflicting else change.kind.value
            counts[name] = counts.get(name, 0) + 1
        return counts


def compute_changeset(base: Snapshot | None, local: Snapshot, remote: Snapshot) -> ChangeSet:
    """Compute the three-way ChangeSet of a reconciliation pass.

    Args:
        base: Snapshot agreed on at the last clean sync, or None.
        local: Current local snapshot.
        remote: Freshly fetched remote snapshot.

    Returns:
        ChangeSet with items in local order, then remote-only keys, then
        keys present only in the base.
    """
    if base is None:
        base = Snapshot()
    changeset = ChangeSet()

    keys: list[str] = []
    seen: set[str] = set()
    for snapshot in (local, remote, base):
        for key in snapshot.keys():
            if key not in seen:
                seen.add(key)
                keys.append(key)

    for key in keys:
        b, loc, rem = base.get(key), local.get(key), remote.get(key)
        kind, conflicting = classify(b, loc, rem, _same_item)
        if kind is not None:
            changeset.items.append(ItemChange(key, kind, b, loc, rem, conflicting))

    setting_keys = list(dict.fromkeys([*local.settings, *remote.settings, *base.settings]))
    for key in setting_keys:
        b, loc, rem = base.settings.get(key), local.settings.get(key), remote.settings.get(key)
        kind, conflicting = classify(b, loc, rem, _same_value)
        if kind is not None:
            changeset.settings.append(SettingChange(key, kind, b, loc, rem, conflicting))

    return changeset
