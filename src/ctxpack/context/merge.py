"""Dedup/merge of overlapping discovery paths.

The same logical item can surface through several enumerations (a direct
subtask listing, multiple hops of the relationship graph). Each discovery is
collapsed into one ContextRecord per item id:

  - the primary relationship is the highest-priority type seen for the id
    (ties keep the earlier one);
  - every distinct relationship type seen is retained;
  - change lists are merged by change id, preferring the version that
    carries diff detail.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from ctxpack.context.models import ChangeRecord, ContextRecord, RelatedItem, Relationship
from ctxpack.context.scoring import relationship_priority

logger = logging.getLogger("ctxpack.merge")

DETAIL_FIELDS = ("diff_stat", "files_changed", "commits", "branch_info")


@dataclass
class DiscoveredItem:
    """One (item, relationship) pair from a single discovery path."""

    item: RelatedItem
    relationship: Relationship
    changes: list[ChangeRecord] = field(default_factory=list)


@dataclass
class _MergeSlot:
    item: RelatedItem
    relationships: list[Relationship]
    changes: list[ChangeRecord]


def merge_change(existing: ChangeRecord, incoming: ChangeRecord) -> ChangeRecord:
    """Merge two versions of the same change, keeping the detailed one."""
    if incoming.has_detail and not existing.has_detail:
        return incoming
    if existing.has_detail and not incoming.has_detail:
        return existing

    merged = existing.model_dump()
    merged.update(incoming.model_dump(exclude_defaults=True))
    for name in DETAIL_FIELDS:
        value = getattr(incoming, name)
        merged[name] = value if value is not None else getattr(existing, name)
    return ChangeRecord.model_validate(merged)


def merge_changes(
    existing: list[ChangeRecord], incoming: list[ChangeRecord]
) -> list[ChangeRecord]:
    """Union two change lists by id. Changes without an id are dropped."""
    by_id: dict[str, ChangeRecord] = {}
    for change in list(existing) + list(incoming):
        if not change.id:
            continue
        current = by_id.get(change.id)
        by_id[change.id] = change if current is None else merge_change(current, change)
    return list(by_id.values())


def _merge_relationship(
    relationships: list[Relationship], incoming: Relationship
) -> list[Relationship]:
    current = next((r for r in relationships if r.primary), None)
    current_priority = relationship_priority(current.type) if current else -1
    promote = relationship_priority(incoming.type) > current_priority

    merged = list(relationships)
    if not any(r.type == incoming.type for r in merged):
        merged.append(incoming.model_copy(update={"primary": False}))
    if promote:
        merged = [r.model_copy(update={"primary": r.type == incoming.type}) for r in merged]
    return merged


def merge_records(discovered: Iterable[DiscoveredItem]) -> list[ContextRecord]:
    """Collapse discoveries into one record per item id, in first-seen order."""
    slots: dict[str, _MergeSlot] = {}

    for entry in discovered:
        item_id = entry.item.item_id
        if not item_id:
            logger.warning("Discovered item without an id, skipping")
            continue

        slot = slots.get(item_id)
        if slot is None:
            slots[item_id] = _MergeSlot(
                item=entry.item,
                relationships=[entry.relationship.model_copy(update={"primary": True})],
                changes=merge_changes([], entry.changes),
            )
            continue

        slot.relationships = _merge_relationship(slot.relationships, entry.relationship)
        slot.changes = merge_changes(slot.changes, entry.changes)

    return [
        ContextRecord(item=slot.item, relationships=slot.relationships, changes=slot.changes)
        for slot in slots.values()
    ]


def discoveries_from_records(records: Iterable[ContextRecord]) -> list[DiscoveredItem]:
    """Expand records back into discoveries, primary relationship first."""
    discovered: list[DiscoveredItem] = []
    for record in records:
        ordered = sorted(record.relationships, key=lambda r: not r.primary)
        for rel in ordered:
            discovered.append(DiscoveredItem(item=record.item, relationship=rel, changes=record.changes))
    return discovered
