"""Snapshots of a list's items and the edits that can be applied to them.

A Snapshot is captured once (from the repository or the external source)
and never mutated; ``Snapshot.apply`` returns a new snapshot.

``None`` is treated as absence: item fields and list settings whose value
is ``None`` are dropped on construction.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

NAME_FIELD = "name"


def _compact(values: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


@dataclass(frozen=True)
class ItemRecord:
    """One item of a list.

    Attributes:
        key: Stable item key shared by the local and remote side.
        name: Display name.
        fields: Remaining item fields (address, notes, ...).
        revision: Opaque revision marker of the side it was read from.
        updated_at: Last modification time on that side, if known.
    """

    key: str
    name: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    revision: str = ""
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("Item key cannot be empty")
        object.__setattr__(self, "fields", _compact(self.fields))

    def values(self) -> dict[str, Any]:
        """All comparable values, the name included."""
        return {NAME_FIELD: self.name, **self.fields}

    def same_content(self, other: ItemRecord | None) -> bool:
        """Compare values only; revision and timestamps are ignored."""
        return other is not None and self.values() == other.values()

    def with_values(
        self,
        values: Mapping[str, Any],
        updated_at: datetime | None = None,
    ) -> ItemRecord:
        """Return a copy carrying ``values`` (as produced by ``values()``)."""
        rest = {k: v for k, v in values.items() if k != NAME_FIELD}
        return ItemRecord(
            key=self.key,
            name=values.get(NAME_FIELD, self.name),
            fields=rest,
            revision=self.revision,
            updated_at=updated_at or self.updated_at,
        )

    @classmethod
    def from_values(
        cls,
        key: str,
        values: Mapping[str, Any],
        revision: str = "",
        updated_at: datetime | None = None,
    ) -> ItemRecord:
        rest = {k: v for k, v in values.items() if k != NAME_FIELD}
        return cls(
            key=key,
            name=values.get(NAME_FIELD, ""),
            fields=rest,
            revision=revision,
            updated_at=updated_at,
        )


# === Snapshot edits ===


@dataclass(frozen=True)
class UpsertItem:
    """Insert an item or replace the item with the same key."""

    item: ItemRecord

    @property
    def key(self) -> str:
        return self.item.key


@dataclass(frozen=True)
class RemoveItem:
    """Remove the item with ``key`` (no-op when absent)."""

    key: str


@dataclass(frozen=True)
class PutSetting:
    """Set a list-level setting; a ``None`` value removes it."""

    key: str
    value: Any


SnapshotChange = UpsertItem | RemoveItem | PutSetting


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time capture of a list, local or remote.

    Attributes:
        items: Items in list order; keys are unique.
        settings: List-level settings (title, description, ...).
        settings_updated_at: Last modification time of the settings.
        captured_at: When the snapshot was taken.
    """

    items: tuple[ItemRecord, ...] = ()
    settings: Mapping[str, Any] = field(default_factory=dict)
    settings_updated_at: datetime | None = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    _index: dict[str, ItemRecord] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        items = tuple(self.items)
        index: dict[str, ItemRecord] = {}
        for item in items:
            if item.key in index:
                raise ValueError(f"Duplicate item key in snapshot: {item.key}")
            index[item.key] = item
        object.__setattr__(self, "items", items)
        object.__setattr__(self, "settings", _compact(self.settings))
        object.__setattr__(self, "_index", index)

    def get(self, key: str) -> ItemRecord | None:
        return self._index.get(key)

    def keys(self) -> list[str]:
        return [item.key for item in self.items]

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __iter__(self) -> Iterator[ItemRecord]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def same_content(self, other: Snapshot) -> bool:
        """Check that both snapshots hold the same item values and settings."""
        if set(self._index) != set(other._index):
            return False
        if dict(self.settings) != dict(other.settings):
            return False
        return all(item.same_content(other.get(item.key)) for item in self.items)

    def apply(self, changes: Iterable[SnapshotChange]) -> Snapshot:
        """Return a new snapshot with ``changes`` applied in order.

        Replaced items keep their position; new items are appended.
        """
        items: dict[str, ItemRecord] = dict(self._index)
        order = self.keys()
        settings = dict(self.settings)
        settings_touched = False

        for change in changes:
            if isinstance(change, UpsertItem):
                if change.key not in items:
                    order.append(change.key)
                items[change.key] = change.item
            elif isinstance(change, RemoveItem):
                if items.pop(change.key, None) is not None:
                    order.remove(change.key)
            elif isinstance(change, PutSetting):
                settings_touched = True
                if change.value is None:
                    settings.pop(change.key, None)
                else:
                    settings[change.key] = change.value
            else:
                raise TypeError(f"Unknown snapshot change: {change!r}")

        return Snapshot(
            items=tuple(items[key] for key in order),
            settings=settings,
            settings_updated_at=(
                datetime.now(UTC) if settings_touched else self.settings_updated_at
            ),
        )
