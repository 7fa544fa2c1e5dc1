"""Pydantic schemas for persisting conflicts.

Repository implementations store a ConflictRecord (for example as a
JSON column) and rebuild the Conflict with ``to_conflict()``. The
payload is a discriminated union on ``type``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from listsync.core.types import ConflictType, ResolutionStrategy
from listsync.sync.domain.conflicts import (
    Conflict,
    ConflictPayload,
    ItemUpdatePayload,
    SettingsChangePayload,
    StructureChangePayload,
)
from listsync.sync.domain.snapshots import ItemRecord

# === Payload schemas ===


class ItemRecordSchema(BaseModel):
    """Item as stored inside a structure-change payload."""

    key: str
    name: str
    item_fields: dict[str, Any] = Field(default_factory=dict)
    revision: str = ""
    updated_at: datetime | None = None

    @classmethod
    def from_item(cls, item: ItemRecord | None) -> ItemRecordSchema | None:
        if item is None:
            return None
        return cls(
            key=item.key,
            name=item.name,
            item_fields=dict(item.fields),
            revision=item.revision,
            updated_at=item.updated_at,
        )

    def to_item(self) -> ItemRecord:
        return ItemRecord(
            key=self.key,
            name=self.name,
            fields=self.item_fields,
            revision=self.revision,
            updated_at=self.updated_at,
        )


class ItemUpdateSchema(BaseModel):
    type: Literal["item_update"] = "item_update"
    item_key: str
    base_values: dict[str, Any]
    local_values: dict[str, Any]
    remote_values: dict[str, Any]
    local_updated_at: datetime | None = None
    remote_updated_at: datetime | None = None

    def to_payload(self) -> ItemUpdatePayload:
        return ItemUpdatePayload(
            item_key=self.item_key,
            base_values=self.base_values,
            local_values=self.local_values,
            remote_values=self.remote_values,
            local_updated_at=self.local_updated_at,
            remote_updated_at=self.remote_updated_at,
        )


class StructureChangeSchema(BaseModel):
    type: Literal["structure_change"] = "structure_change"
    item_key: str
    local_item: ItemRecordSchema | None = None
    remote_item: ItemRecordSchema | None = None
    base_item: ItemRecordSchema | None = None

    def to_payload(self) -> StructureChangePayload:
        return StructureChangePayload(
            item_key=self.item_key,
            local_item=self.local_item.to_item() if self.local_item else None,
            remote_item=self.remote_item.to_item() if self.remote_item else None,
            base_item=self.base_item.to_item() if self.base_item else None,
        )


class SettingsChangeSchema(BaseModel):
    type: Literal["settings_change"] = "settings_change"
    setting_key: str
    base_setting: Any = None
    local_setting: Any = None
    remote_setting: Any = None
    local_updated_at: datetime | None = None
    remote_updated_at: datetime | None = None

    def to_payload(self) -> SettingsChangePayload:
        return SettingsChangePayload(
            setting_key=self.setting_key,
            base_setting=self.base_setting,
            local_setting=self.local_setting,
            remote_setting=self.remote_setting,
            local_updated_at=self.local_updated_at,
            remote_updated_at=self.remote_updated_at,
        )


PayloadSchema = Annotated[
    ItemUpdateSchema | StructureChangeSchema | SettingsChangeSchema,
    Field(discriminator="type"),
]


def payload_schema(payload: ConflictPayload) -> ItemUpdateSchema | StructureChangeSchema | SettingsChangeSchema:
    """Convert a payload variant to its schema."""
    if isinstance(payload, ItemUpdatePayload):
        return ItemUpdateSchema(
            item_key=payload.item_key,
            base_values=dict(payload.base_values),
            local_values=dict(payload.local_values),
            remote_values=dict(payload.remote_values),
            local_updated_at=payload.local_updated_at,
            remote_updated_at=payload.remote_updated_at,
        )
    if isinstance(payload, StructureChangePayload):
        return StructureChangeSchema(
            item_key=payload.item_key,
            local_item=ItemRecordSchema.from_item(payload.local_item),
            remote_item=ItemRecordSchema.from_item(payload.remote_item),
            base_item=ItemRecordSchema.from_item(payload.base_item),
        )
    if isinstance(payload, SettingsChangePayload):
        return SettingsChangeSchema(
            setting_key=payload.setting_key,
            base_setting=payload.base_setting,
            local_setting=payload.local_setting,
            remote_setting=payload.remote_setting,
            local_updated_at=payload.local_updated_at,
            remote_updated_at=payload.remote_updated_at,
        )
    raise TypeError(f"Unknown conflict payload: {payload!r}")


# === Conflict record ===


class ConflictRecord(BaseModel):
    """Conflict as stored by a repository.

    ``local_data``/``remote_data`` are denormalized views for readers that
    do not want to parse the payload union.
    """

    id: str
    list_id: str
    item_id: str | None = None
    type: ConflictType
    payload: PayloadSchema
    local_data: dict[str, Any]
    remote_data: dict[str, Any]
    pass_id: str | None = None
    created_at: datetime
    resolved_at: datetime | None = None
    resolution_strategy: ResolutionStrategy | None = None
    resolved_data: Any = None
    active: bool = True

    @classmethod
    def from_conflict(cls, conflict: Conflict) -> ConflictRecord:
        return cls(
            id=conflict.id,
            list_id=conflict.list_id,
            item_id=conflict.item_id,
            type=conflict.type,
            payload=payload_schema(conflict.payload),
            local_data=conflict.local_data,
            remote_data=conflict.remote_data,
            pass_id=conflict.pass_id,
            created_at=conflict.created_at,
            resolved_at=conflict.resolved_at,
            resolution_strategy=conflict.resolution_strategy,
            resolved_data=conflict.resolved_data,
            active=conflict.active,
        )

    def to_conflict(self) -> Conflict:
        return Conflict(
            list_id=self.list_id,
            payload=self.payload.to_payload(),
            id=self.id,
            pass_id=self.pass_id,
            created_at=self.created_at,
            resolved_at=self.resolved_at,
            resolution_strategy=self.resolution_strategy,
            resolved_data=self.resolved_data,
            active=self.active,
        )
