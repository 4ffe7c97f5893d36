"""Summary statistics and insight text for related records."""

from __future__ import annotations

from collections import Counter

from ctxpack.context.models import (
    ContextInsights,
    ContextRecord,
    ContextSummary,
    RelationshipSummary,
)

COMPLETED_STATUSES = frozenset({"Done"})
ACTIVE_STATUSES = frozenset({"In Progress", "Review", "Testing"})

_TECHNOLOGIES: dict[str, str] = {
    "js": "JavaScript",
    "ts": "TypeScript",
    "jsx": "React",
    "tsx": "React/TypeScript",
    "vue": "Vue.js",
    "py": "Python",
    "java": "Java",
    "cs": "C#",
    "go": "Go",
    "rs": "Rust",
    "php": "PHP",
    "rb": "Ruby",
    "css": "CSS",
    "scss": "SCSS",
    "less": "LESS",
    "sql": "SQL",
    "json": "JSON",
    "yml": "YAML",
    "yaml": "YAML",
    "md": "Markdown",
}


def build_summary(records: list[ContextRecord], unique_before: int) -> ContextSummary:
    """Summarize the final records.

    `filtered_out` is always unique ids before any filtering minus unique ids
    that made it into `records`.
    """
    statuses = Counter(r.item.status or "Unknown" for r in records)
    total_changes = sum(len(r.changes) for r in records)
    merged_changes = sum(1 for r in records for c in r.changes if c.status == "MERGED")
    average = (
        round(sum(r.relevance_score or 0 for r in records) / len(records)) if records else 0
    )
    unique_after = len({r.item_id for r in records})

    return ContextSummary(
        total_related=len(records),
        filtered_out=max(0, unique_before - unique_after),
        completed_work=sum(statuses[s] for s in COMPLETED_STATUSES),
        active_work=sum(statuses[s] for s in ACTIVE_STATUSES),
        total_changes=total_changes,
        merged_changes=merged_changes,
        average_relevance=average,
        status_breakdown=dict(statuses),
    )


def extract_technologies(records: list[ContextRecord], limit: int = 5) -> list[str]:
    """Technologies inferred from changed file extensions, most frequent first."""
    extensions: Counter[str] = Counter()
    for record in records:
        for change in record.changes:
            for changed in change.files:
                name = changed.filename
                if "." in name:
                    extensions[name.rsplit(".", 1)[1].lower()] += 1

    technologies: list[str] = []
    for ext, _count in extensions.most_common():
        tech = _TECHNOLOGIES.get(ext)
        if tech:
            technologies.append(tech)
    return technologies[:limit]


def build_insights(records: list[ContextRecord], summary: ContextSummary) -> ContextInsights:
    insights: list[str] = []

    if summary.active_work > 0:
        insights.append(f"{summary.active_work} related items currently in active development")

    if summary.completed_work > 0 and summary.merged_changes > 0:
        insights.append(
            f"{summary.completed_work} completed items with {summary.merged_changes} "
            "merged changes provide implementation context"
        )

    technologies = extract_technologies(records)
    if technologies:
        insights.append(f"Common technologies used: {', '.join(technologies[:3])}")

    dependencies = sum(1 for r in records if r.relationship_type == "dependency")
    if dependencies:
        insights.append(f"{dependencies} dependency relationships require coordination")

    return ContextInsights(
        overview=(
            f"Found {summary.total_related} related items with "
            f"{summary.total_changes} associated changes"
        ),
        recent_activity=(
            f"{summary.active_work} items currently in progress"
            if summary.active_work > 0
            else "No active work found in related items"
        ),
        completed_work=(
            f"{summary.completed_work} items completed with implementation details"
            if summary.completed_work > 0
            else "No completed work found for reference"
        ),
        implementation_insights=insights,
    )


def build_relationship_summary(records: list[ContextRecord]) -> RelationshipSummary:
    return RelationshipSummary(
        subtasks=sum(1 for r in records if r.has_relationship({"subtask"})),
        dependencies=sum(1 for r in records if r.has_relationship({"dependency"})),
        related=sum(1 for r in records if r.has_relationship({"relates"})),
        total_unique=len({r.item_id for r in records}),
    )
