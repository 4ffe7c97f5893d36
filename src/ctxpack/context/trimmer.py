"""Token-budget trimming of a finished WorkPackage.

Size is estimated as ceil(len(json) / 4) over the compact JSON form of the
package. While the estimate exceeds the budget, stages run in order, each
re-measuring before the next one starts:

  1. drop_images         - every related-item image
  2. drop_low_relevance  - related records, lowest relevance first, one at a time
  3. cap_changes         - primary item to 2 changes, related records to 1
  4. truncate_text       - primary details > 500 chars, related text > 200 chars
  5. drop_all_related    - whatever related records are left

Each stage is a pure function of (TrimState, budget) returning a new
TrimState. A package already within budget comes back unchanged, which makes
trimming idempotent. When stages did run, the summary fields are recomputed
from the trimmed data and a TrimReport records what was removed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from ctxpack.config import TrimConfig
from ctxpack.context.models import (
    ContextRecord,
    RelatedItem,
    TokenEstimator,
    TrimReport,
    WorkPackage,
)
from ctxpack.context.scoring import priority_score
from ctxpack.context.summary import build_insights, build_relationship_summary, build_summary

logger = logging.getLogger("ctxpack.trimmer")

TRUNCATION_MARKER = "... [truncated]"
TRIM_WARNING = "Response was trimmed to fit within the size budget. Some context may be missing."


def approx_units(package: WorkPackage) -> int:
    return TokenEstimator.estimate_model(package)


@dataclass(frozen=True)
class TrimState:
    """A package snapshot plus running removal counts."""

    package: WorkPackage
    units: int
    removed_records: int = 0
    removed_images: int = 0
    removed_changes: int = 0
    truncated_fields: int = 0

    def residual(self, budget: int) -> int:
        """Budget left over; negative while over budget."""
        return budget - self.units

    def with_package(self, package: WorkPackage, **counts: int) -> TrimState:
        return replace(self, package=package, units=approx_units(package), **counts)


Stage = Callable[[TrimState, int, TrimConfig], TrimState]


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def drop_images(state: TrimState, budget: int, config: TrimConfig) -> TrimState:
    package = state.package
    removed = len(package.context_images)
    related = []
    for record in package.related:
        if record.item.images:
            removed += len(record.item.images)
            record = record.model_copy(
                update={"item": record.item.model_copy(update={"images": []})}
            )
        related.append(record)

    if removed == 0:
        return state
    return state.with_package(
        package.model_copy(update={"context_images": [], "related": related}),
        removed_images=state.removed_images + removed,
    )


def removal_order(records: list[ContextRecord]) -> list[ContextRecord]:
    """Records in the order they should be dropped, least relevant first.

    Falls back to the coarse priority score when any record was never fully
    scored, so every record is compared on the same scale.
    """
    if all(r.relevance_score is not None for r in records):
        return sorted(records, key=lambda r: r.relevance_score or 0)
    return sorted(
        records,
        key=lambda r: (
            r.priority_score
            if r.priority_score is not None
            else priority_score(r.item, r.changes, r.relationship_type)
        ),
    )


def drop_low_relevance(state: TrimState, budget: int, config: TrimConfig) -> TrimState:
    if not state.package.related:
        return state

    doomed = removal_order(state.package.related)
    kept = list(state.package.related)
    removed = 0
    current = state
    while doomed and current.residual(budget) < 0:
        victim = doomed.pop(0)
        kept = [r for r in kept if r is not victim]
        removed += 1
        current = state.with_package(
            state.package.model_copy(update={"related": kept}),
            removed_records=state.removed_records + removed,
        )
    if removed:
        logger.info("Removed %d related records by relevance (now ~%d units)", removed, current.units)
    return current


def _cap(item: RelatedItem, limit: int) -> tuple[RelatedItem, int]:
    if len(item.changes) <= limit:
        return item, 0
    return item.model_copy(update={"changes": item.changes[:limit]}), len(item.changes) - limit


def cap_changes(state: TrimState, budget: int, config: TrimConfig) -> TrimState:
    package = state.package
    primary, removed = _cap(package.primary, config.primary_change_cap)

    related = []
    for record in package.related:
        if len(record.changes) > config.related_change_cap:
            removed += len(record.changes) - config.related_change_cap
            record = record.model_copy(update={"changes": record.changes[: config.related_change_cap]})
        item, dropped = _cap(record.item, config.related_change_cap)
        if dropped:
            removed += dropped
            record = record.model_copy(update={"item": item})
        related.append(record)

    if removed == 0:
        return state
    return state.with_package(
        package.model_copy(update={"primary": primary, "related": related}),
        removed_changes=state.removed_changes + removed,
    )


def _truncate(text: str, limit: int) -> str:
    # a cut must leave the text shorter once the marker is appended
    if len(text) <= limit + len(TRUNCATION_MARKER):
        return text
    return text[:limit] + TRUNCATION_MARKER


def truncate_text(state: TrimState, budget: int, config: TrimConfig) -> TrimState:
    package = state.package
    truncated = 0

    primary = package.primary
    details = _truncate(primary.details, config.primary_text_limit)
    if details != primary.details:
        primary = primary.model_copy(update={"details": details})
        truncated += 1

    related = []
    for record in package.related:
        updates = {}
        for name in ("description", "details"):
            original = getattr(record.item, name)
            shortened = _truncate(original, config.related_text_limit)
            if shortened != original:
                updates[name] = shortened
        if updates:
            truncated += len(updates)
            record = record.model_copy(update={"item": record.item.model_copy(update=updates)})
        related.append(record)

    if truncated == 0:
        return state
    return state.with_package(
        package.model_copy(update={"primary": primary, "related": related}),
        truncated_fields=state.truncated_fields + truncated,
    )


def drop_all_related(state: TrimState, budget: int, config: TrimConfig) -> TrimState:
    remaining = len(state.package.related)
    if remaining == 0:
        return state
    logger.info("Removed all remaining %d related records", remaining)
    return state.with_package(
        state.package.model_copy(update={"related": []}),
        removed_records=state.removed_records + remaining,
    )


TRIM_STAGES: list[tuple[str, Stage]] = [
    ("drop_images", drop_images),
    ("drop_low_relevance", drop_low_relevance),
    ("cap_changes", cap_changes),
    ("truncate_text", truncate_text),
    ("drop_all_related", drop_all_related),
]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run_stages(
    state: TrimState, max_units: int, config: TrimConfig | None = None
) -> tuple[TrimState, list[str]]:
    """Run stages while over budget. Returns the final state and the stages that changed it."""
    config = config or TrimConfig()
    applied: list[str] = []
    for name, stage in TRIM_STAGES:
        if state.units <= max_units:
            break
        before = state.units
        next_state = stage(state, max_units, config)
        if next_state is not state:
            applied.append(name)
            logger.info(
                "%s: freed ~%d units, current estimate %d",
                name, before - next_state.units, next_state.units,
            )
        state = next_state
    return state, applied


def _start_state(package: WorkPackage) -> TrimState:
    prior = package.trim
    if prior is None:
        return TrimState(package=package, units=approx_units(package))
    return TrimState(
        package=package,
        units=approx_units(package),
        removed_records=prior.removed_records,
        removed_images=prior.removed_images,
        removed_changes=prior.removed_changes,
        truncated_fields=prior.truncated_fields,
    )


def _with_derived_fields(state: TrimState, report: TrimReport) -> WorkPackage:
    """Recompute every summary field from the trimmed data and attach the report."""
    related = state.package.related
    summary = build_summary(related, report.original_related)
    return state.package.model_copy(
        update={
            "summary": summary,
            "relationship_summary": build_relationship_summary(related),
            "insights": build_insights(related, summary),
            "trim": report,
        }
    )


def trim_to_budget(
    package: WorkPackage, max_units: int, config: TrimConfig | None = None
) -> WorkPackage:
    """Shrink `package` to fit `max_units`. Best effort; never raises for size."""
    initial_units = approx_units(package)
    if initial_units <= max_units:
        return package

    prior = package.trim
    original_related = prior.original_related if prior else len(package.related)
    stages_applied = list(prior.stages_applied) if prior else []

    current = package
    changed = False
    # Attaching the report and recomputed summary can add a few units back,
    # so go round again until the package fits or nothing else can go
    while approx_units(current) > max_units:
        state, applied = run_stages(_start_state(current), max_units, config)
        if not applied:
            break
        changed = True
        stages_applied.extend(name for name in applied if name not in stages_applied)
        report = TrimReport(
            budget=max_units,
            initial_units=prior.initial_units if prior else initial_units,
            original_related=original_related,
            removed_records=state.removed_records,
            removed_images=state.removed_images,
            removed_changes=state.removed_changes,
            truncated_fields=state.truncated_fields,
            stages_applied=list(stages_applied),
        )
        current = _with_derived_fields(state, report)
        current = current.model_copy(
            update={"trim": report.model_copy(update={"final_units": approx_units(current)})}
        )

    if not changed:
        return package

    report = current.trim
    final_units = report.final_units
    if approx_units(current) > max_units:
        logger.warning("Package still exceeds budget after trimming (%d > %d)", final_units, max_units)
        current = current.model_copy(update={"trim_warning": TRIM_WARNING})

    logger.info(
        "Trimming summary: %d records, %d images, %d changes, %d fields truncated",
        report.removed_records,
        report.removed_images,
        report.removed_changes,
        report.truncated_fields,
    )
    return current
