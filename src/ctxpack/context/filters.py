"""Recency filtering and count limiting for context records."""

from __future__ import annotations

import calendar
from datetime import datetime, timezone

from ctxpack.context.models import ContextRecord

# Hierarchy links carry structural context no matter how old they are
STRUCTURAL_TYPES = frozenset({"parent", "epic", "child"})

# Never dropped by the count limiter
ESSENTIAL_TYPES = frozenset({"parent", "child"})


def subtract_months(moment: datetime, months: int) -> datetime:
    """Step back `months` calendar months, clamping the day to the month length."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _is_recent(record: ContextRecord, cutoff: datetime) -> bool:
    item_date = record.item.latest_date()
    if item_date is not None and item_date > cutoff:
        return True
    for change in record.changes:
        changed_at = change.relevant_date()
        if changed_at is not None and changed_at > cutoff:
            return True
    return False


def filter_by_recency(
    records: list[ContextRecord],
    max_age_months: int = 6,
    now: datetime | None = None,
) -> list[ContextRecord]:
    """Keep structural records plus anything touched after the cutoff."""
    cutoff = subtract_months(now or datetime.now(timezone.utc), max_age_months)
    return [
        record
        for record in records
        if record.has_relationship(STRUCTURAL_TYPES) or _is_recent(record, cutoff)
    ]


def _by_relevance(records: list[ContextRecord]) -> list[ContextRecord]:
    # sorted() is stable: equal scores keep their input order
    return sorted(records, key=lambda r: r.relevance_score or 0, reverse=True)


def limit_context_size(records: list[ContextRecord], max_related: int = 20) -> list[ContextRecord]:
    """Cap the record count, never dropping parent/child records.

    When essential records alone exceed `max_related`, all of them are still
    returned and the cap is exceeded.
    """
    if len(records) <= max_related:
        return _by_relevance(records)

    essential = [r for r in records if r.has_relationship(ESSENTIAL_TYPES)]
    non_essential = [r for r in records if not r.has_relationship(ESSENTIAL_TYPES)]

    remaining_slots = max(0, max_related - len(essential))
    selected = essential + _by_relevance(non_essential)[:remaining_slots]
    return _by_relevance(selected)

