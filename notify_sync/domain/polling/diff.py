"""Snapshot diff: synthesize created/changed events for collections without push support."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Mapping, Sequence, Tuple

EntityId = Hashable
EntityRecord = Mapping[str, Any]
EntitySnapshot = Dict[EntityId, EntityRecord]


@dataclass(frozen=True)
class EntityChange:
    entity_id: EntityId
    previous: EntityRecord
    current: EntityRecord
    changed_fields: Tuple[str, ...]

    def changed(self, field_name: str) -> bool:
        return field_name in self.changed_fields


@dataclass(frozen=True)
class SnapshotDiff:
    collection: str
    new_entries: Tuple[EntityRecord, ...] = field(default_factory=tuple)
    changed_entries: Tuple[EntityChange, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.new_entries and not self.changed_entries


def diff_snapshots(
    collection: str,
    previous: Mapping[EntityId, EntityRecord],
    current: Mapping[EntityId, EntityRecord],
    tracked_fields: Sequence[str] = ("status",),
) -> SnapshotDiff:
    """Compare two snapshots by entity id.

    new = current ids not in previous (set difference only).
    changed = ids in both where any tracked field differs.
    Removed ids are not reported. Output follows ``current`` iteration order.
    """
    new_entries = []
    changed_entries = []
    for entity_id, record in current.items():
        before = previous.get(entity_id)
        if before is None:
            new_entries.append(record)
            continue
        changed_fields = tuple(
            name for name in tracked_fields if before.get(name) != record.get(name)
        )
        if changed_fields:
            changed_entries.append(
                EntityChange(
                    entity_id=entity_id,
                    previous=before,
                    current=record,
                    changed_fields=changed_fields,
                )
            )
    return SnapshotDiff(
        collection=collection,
        new_entries=tuple(new_entries),
        changed_entries=tuple(changed_entries),
    )
