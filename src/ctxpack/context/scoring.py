"""Relevance scoring for related work items.

Scores are pure functions of (status, relationship type, changes) plus the
reference instant used for change recency, so identical inputs always order
identically.
"""

from __future__ import annotations

from datetime import datetime, timezone

from ctxpack.context.models import ChangeRecord, ContextRecord, RelatedItem

# Dedup priority: which relationship wins the "primary" flag
RELATIONSHIP_PRIORITY: dict[str, int] = {
    "parent": 100,
    "subtask": 95,
    "child": 90,
    "epic": 80,
    "story": 75,
    "dependency": 70,
    "blocks": 65,
    "blocked": 65,
    "relates": 60,
}
DEFAULT_RELATIONSHIP_PRIORITY = 50

# Relevance weights per relationship type
_RELATIONSHIP_WEIGHTS: dict[str, int] = {
    "parent": 100,
    "subtask": 90,
    "child": 90,
    "epic": 80,
    "dependency": 75,
    "blocks": 70,
    "blocked": 70,
    "relates": 60,
}

_STATUS_WEIGHTS: dict[str, int] = {
    "In Progress": 100,
    "Done": 90,
    "Review": 85,
    "Testing": 85,
    "To Do": 70,
}

# Secondary ordering used before change data exists
_STATUS_PRIORITY: dict[str, int] = {
    "In Progress": 100,
    "Done": 90,
    "Review": 85,
    "Testing": 85,
    "To Do": 80,
}

_CHANGE_STATUS_POINTS: dict[str, int] = {
    "MERGED": 30,
    "OPEN": 20,
    "DECLINED": 5,
}

_DEFAULT_WEIGHT = 50
_STATUS_FACTOR = 0.3
_CHANGE_FACTOR = 0.4
_CHANGE_CAP = 40
_FILE_POINTS_CAP = 20

# (max age in days, bonus)
_RECENCY_BONUS: list[tuple[int, int]] = [(30, 15), (90, 10), (180, 5)]


def relationship_priority(relationship_type: str) -> int:
    return RELATIONSHIP_PRIORITY.get(relationship_type, DEFAULT_RELATIONSHIP_PRIORITY)


def change_points(change: ChangeRecord, now: datetime | None = None) -> int:
    """Activity points for one change: lifecycle state, file volume, recency."""
    now = now or datetime.now(timezone.utc)
    points = _CHANGE_STATUS_POINTS.get(change.status, 0)
    points += min(change.changed_file_count * 2, _FILE_POINTS_CAP)

    changed_at = change.relevant_date()
    if changed_at is not None:
        days_since = (now - changed_at).total_seconds() / 86400
        for max_days, bonus in _RECENCY_BONUS:
            if days_since < max_days:
                points += bonus
                break
    return points


def relevance_score(
    item: RelatedItem,
    changes: list[ChangeRecord] | None = None,
    relationship_type: str = "relates",
    now: datetime | None = None,
) -> int:
    """Score a related item 0-100."""
    score = float(_RELATIONSHIP_WEIGHTS.get(relationship_type, _DEFAULT_WEIGHT))
    score += _STATUS_WEIGHTS.get(item.status, _DEFAULT_WEIGHT) * _STATUS_FACTOR

    if changes:
        total = sum(change_points(change, now) for change in changes)
        score += min(total * _CHANGE_FACTOR, _CHANGE_CAP)

    return max(0, min(round(score), 100))


def priority_score(
    item: RelatedItem,
    changes: list[ChangeRecord] | None = None,
    relationship_type: str = "relates",
) -> int:
    """Coarse ordering score for records that have not been fully scored."""
    score = relationship_priority(relationship_type)
    score += _STATUS_PRIORITY.get(item.status, _DEFAULT_WEIGHT)
    if changes:
        score += 20
    return score


def score_record(record: ContextRecord, now: datetime | None = None) -> ContextRecord:
    """Return a copy of `record` with its relevance score filled in."""
    return record.model_copy(
        update={
            "relevance_score": relevance_score(
                record.item, record.changes, record.relationship_type, now
            )
        }
    )


def with_priority(record: ContextRecord) -> ContextRecord:
    """Return a copy of `record` with its priority score filled in."""
    return record.model_copy(
        update={
            "priority_score": priority_score(
                record.item, record.changes, record.relationship_type
            )
        }
    )
