"""Conflict records and their payload variants.

A conflict is raised for every change both sides made differently. The
payload is a sum type, one variant per ConflictType:

- ItemUpdatePayload: both sides edited the same item (field maps)
- StructureChangePayload: one side removed or both added the same key
- SettingsChangePayload: both sides changed the same list setting

Every variant exposes the same small surface: the local and remote
value, the edits that write a chosen value into the local snapshot, and
the edits that move the base snapshot to the remote side.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar

from listsync.core.errors import InvalidResolutionError
from listsync.core.types import ConflictType, ResolutionStrategy
from listsync.sync.domain.changes import ChangeKind, ItemChange, SettingChange
from listsync.sync.domain.snapshots import (
    NAME_FIELD,
    ItemRecord,
    PutSetting,
    RemoveItem,
    Snapshot,
    SnapshotChange,
    UpsertItem,
)


def _item_edit(key: str, value: Mapping[str, Any] | None) -> SnapshotChange:
    if value is None:
        return RemoveItem(key)
    return UpsertItem(ItemRecord.from_values(key, value, updated_at=datetime.now(UTC)))


def _require_item_values(value: Any) -> None:
    if not isinstance(value, Mapping):
        raise InvalidResolutionError(f"Expected a mapping of item fields, got {type(value).__name__}")
    if not value.get(NAME_FIELD):
        raise InvalidResolutionError(f"Merged item must keep a non-empty '{NAME_FIELD}'")


@dataclass(frozen=True)
class ItemUpdatePayload:
    """Both sides edited the same item.

    Field maps are ``ItemRecord.values()`` of the base, local and remote
    version of the item.
    """

    conflict_type: ClassVar[ConflictType] = ConflictType.ITEM_UPDATE

    item_key: str
    base_values: Mapping[str, Any]
    local_values: Mapping[str, Any]
    remote_values: Mapping[str, Any]
    local_updated_at: datetime | None = None
    remote_updated_at: datetime | None = None

    @property
    def item_id(self) -> str | None:
        return self.item_key

    def local_value(self) -> dict[str, Any]:
        return dict(self.local_values)

    def remote_value(self) -> dict[str, Any]:
        return dict(self.remote_values)

    def touched_fields(self, values: Mapping[str, Any]) -> set[str]:
        """Fields of ``values`` that differ from the base."""
        names = set(self.base_values) | set(values)
        return {n for n in names if self.base_values.get(n) != values.get(n)}

    def check(self, value: Any) -> None:
        _require_item_values(value)

    def local_edits(self, value: Any) -> list[SnapshotChange]:
        return [_item_edit(self.item_key, value)]

    def base_edits(self) -> list[SnapshotChange]:
        return [_item_edit(self.item_key, self.remote_values)]


@dataclass(frozen=True)
class StructureChangePayload:
    """Item presence diverged: edited on one side and removed on the
    other, or added on both sides with different values."""

    conflict_type: ClassVar[ConflictType] = ConflictType.STRUCTURE_CHANGE

    item_key: str
    local_item: ItemRecord | None
    remote_item: ItemRecord | None
    base_item: ItemRecord | None = None

    @property
    def item_id(self) -> str | None:
        return self.item_key

    @property
    def item_keys(self) -> list[str]:
        return [self.item_key]

    @property
    def local_updated_at(self) -> datetime | None:
        return self.local_item.updated_at if self.local_item else None

    @property
    def remote_updated_at(self) -> datetime | None:
        return self.remote_item.updated_at if self.remote_item else None

    def local_value(self) -> dict[str, Any] | None:
        return self.local_item.values() if self.local_item else None

    def remote_value(self) -> dict[str, Any] | None:
        return self.remote_item.values() if self.remote_item else None

    def check(self, value: Any) -> None:
        if value is not None:
            _require_item_values(value)

    def local_edits(self, value: Any) -> list[SnapshotChange]:
        return [_item_edit(self.item_key, value)]

    def base_edits(self) -> list[SnapshotChange]:
        if self.remote_item is None:
            return [RemoveItem(self.item_key)]
        return [UpsertItem(self.remote_item)]


@dataclass(frozen=True)
class SettingsChangePayload:
    """Both sides changed the same list setting. ``None`` means unset."""

    conflict_type: ClassVar[ConflictType] = ConflictType.SETTINGS_CHANGE

    setting_key: str
    base_setting: Any
    local_setting: Any
    remote_setting: Any
    local_updated_at: datetime | None = None
    remote_updated_at: datetime | None = None

    @property
    def item_id(self) -> str | None:
        return None

    def local_value(self) -> Any:
        return self.local_setting

    def remote_value(self) -> Any:
        return self.remote_setting

    def check(self, value: Any) -> None:
        if isinstance(value, (ItemRecord, Snapshot)):
            raise InvalidResolutionError("Setting value cannot be an item or snapshot")

    def local_edits(self, value: Any) -> list[SnapshotChange]:
        return [PutSetting(self.setting_key, value)]

    def base_edits(self) -> list[SnapshotChange]:
        return [PutSetting(self.setting_key, self.remote_setting)]


ConflictPayload = ItemUpdatePayload | StructureChangePayload | SettingsChangePayload


def _side_data(payload: ConflictPayload, value: Any, updated_at: datetime | None) -> dict[str, Any]:
    data: dict[str, Any] = {"type": payload.conflict_type.value}
    if isinstance(payload, SettingsChangePayload):
        data["setting_key"] = payload.setting_key
    elif isinstance(payload, StructureChangePayload):
        data["item_keys"] = payload.item_keys
    else:
        data["item_key"] = payload.item_key
    data["value"] = value
    data["updated_at"] = updated_at.isoformat() if updated_at else None
    return data


@dataclass
class Conflict:
    """Persisted record of a change that could not be merged.

    Created by the reconciler, mutated only by the conflict resolver,
    kept after resolution until the worker purges it.
    """

    list_id: str
    payload: ConflictPayload
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    pass_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    resolved_at: datetime | None = None
    resolution_strategy: ResolutionStrategy | None = None
    resolved_data: Any = None
    active: bool = True

    @property
    def type(self) -> ConflictType:
        return self.payload.conflict_type

    @property
    def item_id(self) -> str | None:
        return self.payload.item_id

    @property
    def local_data(self) -> dict[str, Any]:
        return _side_data(self.payload, self.payload.local_value(), self.payload.local_updated_at)

    @property
    def remote_data(self) -> dict[str, Any]:
        return _side_data(self.payload, self.payload.remote_value(), self.payload.remote_updated_at)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    @property
    def is_open(self) -> bool:
        return self.active and self.resolved_at is None

    @property
    def matches_remote(self) -> bool:
        """Resolved with exactly the remote value."""
        return self.is_resolved and self.resolved_data == self.payload.remote_value()


def payload_for_change(
    change: ItemChange | SettingChange,
    local: Snapshot,
    remote: Snapshot,
) -> ConflictPayload:
    """Build the payload variant for a conflicting change."""
    if not change.conflicting:
        raise ValueError(f"Change for {change.key!r} is not conflicting")

    if isinstance(change, SettingChange):
        return SettingsChangePayload(
            setting_key=change.key,
            base_setting=change.base,
            local_setting=change.local,
            remote_setting=change.remote,
            local_updated_at=local.settings_updated_at,
            remote_updated_at=remote.settings_updated_at,
        )

    if change.kind == ChangeKind.UPDATED_BOTH:
        if change.base is None or change.local is None or change.remote is None:
            raise ValueError(f"Update of {change.key!r} is missing a side")
        return ItemUpdatePayload(
            item_key=change.key,
            base_values=change.base.values(),
            local_values=change.local.values(),
            remote_values=change.remote.values(),
            local_updated_at=change.local.updated_at,
            remote_updated_at=change.remote.updated_at,
        )

    return StructureChangePayload(
        item_key=change.key,
        local_item=change.local,
        remote_item=change.remote,
        base_item=change.base,
    )
