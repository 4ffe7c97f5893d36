"""Assemble the WorkPackage handed to the downstream consumer.

The package is the primary item plus its unified related context: the
aggregator's records, any direct subtask listings folded in through the same
dedup engine, and related-item images pulled out into `context_images`.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from ctxpack.config import TrimConfig
from ctxpack.context.aggregator import ContextAggregator
from ctxpack.context.merge import DiscoveredItem, discoveries_from_records, merge_records
from ctxpack.context.models import (
    AggregateOptions,
    AggregateResult,
    ContextRecord,
    ImageAttachment,
    RelatedItem,
    Relationship,
    WorkPackage,
)
from ctxpack.context.scoring import score_record
from ctxpack.context.summary import build_insights, build_relationship_summary, build_summary
from ctxpack.context.trimmer import trim_to_budget

logger = logging.getLogger("ctxpack.packager")


def extract_context_images(
    records: list[ContextRecord],
) -> tuple[list[ContextRecord], list[ImageAttachment]]:
    """Move images off related items, tagging each with the item it came from."""
    stripped: list[ContextRecord] = []
    images: list[ImageAttachment] = []
    for record in records:
        if not record.item.images:
            stripped.append(record)
            continue
        for image in record.item.images:
            images.append(
                image.model_copy(
                    update={
                        "source_item_id": record.item_id,
                        "source_item_summary": record.item.summary,
                    }
                )
            )
        stripped.append(
            record.model_copy(update={"item": record.item.model_copy(update={"images": []})})
        )
    return stripped, images


def unify_subtasks(
    subtasks: list[RelatedItem],
    records: list[ContextRecord],
    now: datetime | None = None,
) -> list[ContextRecord]:
    """Fold direct subtask listings into the aggregated records.

    Subtasks go first so that an item reached both ways keeps the subtask
    listing's item data. The relationship with the higher priority still
    becomes primary.
    """
    if not subtasks:
        return list(records)

    now = now or datetime.now(timezone.utc)
    discovered = [
        DiscoveredItem(
            item=subtask,
            relationship=Relationship(type="subtask", direction="outward", depth=1),
            changes=list(subtask.changes),
        )
        for subtask in subtasks
    ]
    discovered.extend(discoveries_from_records(records))

    unified = [score_record(record, now) for record in merge_records(discovered)]
    return sorted(unified, key=lambda r: r.relevance_score or 0, reverse=True)


def build_work_package(
    primary: RelatedItem,
    result: AggregateResult | None = None,
    subtasks: list[RelatedItem] | None = None,
    images: list[ImageAttachment] | None = None,
    now: datetime | None = None,
) -> WorkPackage:
    """Combine a primary item and its aggregated context into one package."""
    records = list(result.records) if result is not None else []
    filtered_out = result.summary.filtered_out if result is not None else 0

    related = unify_subtasks(subtasks or [], records, now)
    related, context_images = extract_context_images(related)

    summary = build_summary(related, len({r.item_id for r in related}) + filtered_out)
    return WorkPackage(
        primary=primary,
        related=related,
        images=list(images if images is not None else primary.images),
        context_images=context_images,
        summary=summary,
        relationship_summary=build_relationship_summary(related),
        insights=build_insights(related, summary) if related else None,
    )


async def _with_own_changes(aggregator: ContextAggregator, item: RelatedItem) -> RelatedItem:
    """Fill in an item's changes from its development info when it has none."""
    if item.changes:
        return item
    changes = await aggregator.fetch_dev_status(item.item_id)
    return item.model_copy(update={"changes": changes}) if changes else item


async def assemble_work_package(
    aggregator: ContextAggregator,
    primary: RelatedItem,
    *,
    subtasks: list[RelatedItem] | None = None,
    images: list[ImageAttachment] | None = None,
    depth: int = 2,
    max_related: int | None = None,
    max_units: int | None = None,
    timeout: float | None = None,
    trim_config: TrimConfig | None = None,
) -> WorkPackage:
    """Fetch everything known about `primary` and package it.

    The primary item and subtasks that carry no changes of their own get them
    from development info. Context is best effort: `timeout` bounds the
    aggregation, and a slow or failing upstream leaves the package with
    relationship-only context or none at all.
    """
    item_id = primary.item_id
    repos = await aggregator.detect_repositories(item_id)

    primary, *subtasks = await asyncio.gather(
        *(_with_own_changes(aggregator, item) for item in [primary, *(subtasks or [])])
    )

    options = AggregateOptions(
        depth=depth,
        include_types=list(aggregator.config.include_types),
        detected_repos=repos,
        max_related=max_related,
    )
    result = await aggregator.aggregate_context(item_id, options, timeout=timeout)
    if result.metadata.fallback_mode:
        logger.warning("Packaging %s with fallback context (%d related)", item_id, len(result.records))

    package = build_work_package(primary, result, subtasks=subtasks, images=images)
    logger.info(
        "Packaged %s with %d related items and %d context images",
        item_id,
        len(package.related),
        len(package.context_images),
    )

    trim_config = trim_config or TrimConfig()
    budget = max_units if max_units is not None else trim_config.max_units
    if budget > 0:
        package = trim_to_budget(package, budget, trim_config)
    return package
