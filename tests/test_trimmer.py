"""Tests for token-budget trimming."""

from __future__ import annotations

import pytest

from ctxpack.config import TrimConfig
from ctxpack.context.models import ImageAttachment, RelatedItem, WorkPackage
from ctxpack.context.trimmer import (
    TRIM_WARNING,
    TRUNCATION_MARKER,
    TrimState,
    approx_units,
    cap_changes,
    drop_images,
    removal_order,
    trim_to_budget,
    truncate_text,
)


def _image(name: str, size: int = 1200) -> ImageAttachment:
    return ImageAttachment(filename=name, size=size, data="A" * size)


@pytest.fixture
def package(make_record) -> WorkPackage:
    """Primary item, ten related records scored 90 down to 18, two context images."""
    related = [
        make_record(f"R-{i}", score=90 - 8 * i, description="d" * 300)
        for i in range(10)
    ]
    return WorkPackage(
        primary=RelatedItem(item_id="A-1", summary="Primary", details="short"),
        related=related,
        context_images=[_image("one.png"), _image("two.png")],
    )


def _state(package: WorkPackage) -> TrimState:
    return TrimState(package=package, units=approx_units(package))


class TestTrimToBudget:
    def test_within_budget_is_untouched(self, package):
        assert trim_to_budget(package, approx_units(package)) is package

    def test_images_and_low_relevance_records_go_first(self, package):
        budget = int(approx_units(package) / 1.6)
        trimmed = trim_to_budget(package, budget)
        report = trimmed.trim

        assert approx_units(trimmed) <= budget
        assert trimmed.trim_warning is None
        assert trimmed.context_images == []
        assert report.removed_images == 2
        assert "drop_images" in report.stages_applied
        assert "drop_low_relevance" in report.stages_applied
        assert "truncate_text" not in report.stages_applied
        assert "drop_all_related" not in report.stages_applied

        remaining = [r.relevance_score for r in trimmed.related]
        assert 0 < len(remaining) < 10
        assert min(remaining) == 90 - 8 * (len(remaining) - 1)
        assert trimmed.summary.filtered_out == report.removed_records == 10 - len(remaining)
        assert trimmed.summary.total_related == len(remaining)
        assert trimmed.relationship_summary.related == len(remaining)

    def test_idempotent(self, package):
        budget = int(approx_units(package) / 1.6)
        once = trim_to_budget(package, budget)
        assert trim_to_budget(once, budget) is once

    def test_image_removal_alone_can_suffice(self, package):
        without_images = package.model_copy(update={"context_images": []})
        trimmed = trim_to_budget(package, approx_units(without_images) + 300)
        assert trimmed.trim.stages_applied == ["drop_images"]
        assert len(trimmed.related) == 10
        assert trimmed.summary.filtered_out == 0

    def test_impossible_budget_sets_warning(self, make_change):
        primary = RelatedItem(
            item_id="A-1",
            details="x" * 4000,
            changes=[make_change(i) for i in range(5)],
        )
        package = WorkPackage(primary=primary)
        trimmed = trim_to_budget(package, 10)

        assert trimmed.trim_warning == TRIM_WARNING
        assert len(trimmed.primary.changes) == 2
        assert trimmed.primary.details.endswith(TRUNCATION_MARKER)
        assert trimmed.trim.stages_applied == ["cap_changes", "truncate_text"]
        assert trim_to_budget(trimmed, 10) is trimmed

    def test_tiny_budget_drops_every_record(self, package):
        trimmed = trim_to_budget(package, 5)
        assert trimmed.related == []
        assert trimmed.trim.removed_records == 10
        assert trimmed.summary.filtered_out == 10
        assert trimmed.trim_warning == TRIM_WARNING

    def test_counts_accumulate_across_calls(self, package):
        first = trim_to_budget(package, int(approx_units(package) / 1.6))
        second = trim_to_budget(first, int(approx_units(first) / 1.5))
        assert second.trim.removed_records > first.trim.removed_records
        assert second.trim.removed_images == 2
        assert second.trim.initial_units == first.trim.initial_units
        assert second.summary.filtered_out == 10 - len(second.related)

    def test_input_not_modified(self, package):
        trim_to_budget(package, 5)
        assert len(package.related) == 10
        assert len(package.context_images) == 2


class TestStages:
    def test_drop_images_includes_related_item_images(self, make_record):
        record = make_record("R-1", images=[{"filename": "a.png", "base64": "AAAA"}])
        package = WorkPackage(primary=RelatedItem(item_id="A-1"), related=[record],
                              images=[_image("own.png", 10)])
        state = drop_images(_state(package), 0, TrimConfig())
        assert state.removed_images == 1
        assert state.package.related[0].item.images == []
        # The primary item's own images stay
        assert len(state.package.images) == 1

    def test_drop_images_noop_returns_same_state(self):
        state = _state(WorkPackage(primary=RelatedItem(item_id="A-1")))
        assert drop_images(state, 0, TrimConfig()) is state

    def test_cap_changes(self, make_record, make_change):
        record = make_record("R-1", changes=[make_change(1), make_change(2), make_change(3)])
        primary = RelatedItem(item_id="A-1", changes=[make_change(i) for i in range(4)])
        state = cap_changes(_state(WorkPackage(primary=primary, related=[record])), 0, TrimConfig())
        assert len(state.package.primary.changes) == 2
        assert len(state.package.related[0].changes) == 1
        assert state.removed_changes == 2 + 2

    def test_truncate_text(self, make_record):
        record = make_record("R-1", description="d" * 250, details="short")
        primary = RelatedItem(item_id="A-1", details="p" * 600, description="q" * 900)
        state = truncate_text(_state(WorkPackage(primary=primary, related=[record])), 0, TrimConfig())
        package = state.package
        assert package.primary.details == "p" * 500 + TRUNCATION_MARKER
        # Only the primary item's details are truncated
        assert package.primary.description == "q" * 900
        assert package.related[0].item.description == "d" * 200 + TRUNCATION_MARKER
        assert package.related[0].item.details == "short"
        assert state.truncated_fields == 2

    def test_truncate_text_never_lengthens(self, make_record):
        record = make_record("R-1", description="d" * (200 + len(TRUNCATION_MARKER)))
        primary = RelatedItem(item_id="A-1", details="p" * 510)
        state = _state(WorkPackage(primary=primary, related=[record]))
        trimmed = truncate_text(state, 0, TrimConfig())
        assert trimmed is state
        assert trimmed.truncated_fields == 0

    def test_removal_order_by_relevance(self, make_record):
        records = [make_record("A", score=50), make_record("B", score=10), make_record("C", score=50)]
        assert [r.item_id for r in removal_order(records)] == ["B", "A", "C"]

    def test_removal_order_falls_back_to_priority(self, make_record):
        records = [
            make_record("A", "parent", status="In Progress"),
            make_record("B", "relates", score=99),
            make_record("C", "epic", status="To Do"),
        ]
        assert [r.item_id for r in removal_order(records)] == ["B", "C", "A"]
