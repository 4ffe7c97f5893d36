"""Data models for work-item context aggregation."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ctxpack.config import DEFAULT_INCLUDE_TYPES


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an upstream timestamp into an aware datetime.

    Naive timestamps are taken as UTC. Anything unparseable yields None.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _blank_if_none(value: Any) -> Any:
    return "" if value is None else value


class ImageAttachment(BaseModel):
    """An image attached to a work item, carried as base64."""

    model_config = ConfigDict(frozen=True)

    filename: str = ""
    mime_type: str = Field(
        default="image/png", validation_alias=AliasChoices("mime_type", "mimeType")
    )
    size: int = 0
    data: str = Field(default="", validation_alias=AliasChoices("data", "base64"))
    is_thumbnail: bool = Field(
        default=False, validation_alias=AliasChoices("is_thumbnail", "isThumbnail")
    )
    source_item_id: str | None = None
    source_item_summary: str | None = None


class FileChangeSummary(BaseModel):
    """Per-change file counts."""

    model_config = ConfigDict(frozen=True)

    added: int = 0
    modified: int = 0
    deleted: int = 0

    @property
    def total(self) -> int:
        return self.added + self.modified + self.deleted


class ChangeFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str = ""


class ChangeRecord(BaseModel):
    """A summary of one code change (pull request) tied to a work item."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    status: str = Field(default="", validation_alias=AliasChoices("status", "state"))
    title: str = ""
    repository: str = ""
    file_change_summary: FileChangeSummary | None = Field(
        default=None,
        validation_alias=AliasChoices("file_change_summary", "fileChangeSummary"),
    )
    files: list[ChangeFile] = Field(default_factory=list)
    merged_date: str | None = Field(
        default=None, validation_alias=AliasChoices("merged_date", "mergedDate")
    )
    updated_date: str | None = Field(
        default=None, validation_alias=AliasChoices("updated_date", "updatedDate", "updated")
    )
    created_date: str | None = Field(
        default=None, validation_alias=AliasChoices("created_date", "createdDate", "created")
    )
    # Detail fields: only present when the code host returned a full diff view
    diff_stat: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("diff_stat", "diffStat")
    )
    files_changed: Any = Field(
        default=None, validation_alias=AliasChoices("files_changed", "filesChanged")
    )
    commits: list[Any] | None = None
    branch_info: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("branch_info", "branchInfo")
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)):
            return str(int(value))
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return _blank_if_none(value)

    @field_validator("title", "repository", mode="before")
    @classmethod
    def _blank(cls, value: Any) -> Any:
        return _blank_if_none(value)

    @property
    def has_detail(self) -> bool:
        return bool(self.diff_stat or self.files_changed)

    @property
    def changed_file_count(self) -> int:
        if self.file_change_summary is None:
            return 0
        return self.file_change_summary.total

    def relevant_date(self) -> datetime | None:
        """Merged date, else updated, else created."""
        for candidate in (self.merged_date, self.updated_date, self.created_date):
            parsed = parse_timestamp(candidate)
            if parsed is not None:
                return parsed
        return None


class RelatedItem(BaseModel):
    """A logical work item (ticket)."""

    model_config = ConfigDict(frozen=True)

    item_id: str = Field(
        validation_alias=AliasChoices("item_id", "itemId", "key", "jiraKey", "id")
    )
    status: str = ""
    summary: str = ""
    description: str = ""
    details: str = ""
    created: str | None = Field(
        default=None, validation_alias=AliasChoices("created", "createdDate")
    )
    updated: str | None = Field(
        default=None, validation_alias=AliasChoices("updated", "updatedDate")
    )
    images: list[ImageAttachment] = Field(
        default_factory=list, validation_alias=AliasChoices("images", "attachmentImages")
    )
    changes: list[ChangeRecord] = Field(
        default_factory=list, validation_alias=AliasChoices("changes", "pullRequests")
    )

    @field_validator("item_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("status", "summary", "description", "details", mode="before")
    @classmethod
    def _blank(cls, value: Any) -> Any:
        return _blank_if_none(value)

    def latest_date(self) -> datetime | None:
        """Updated date, else created."""
        return parse_timestamp(self.updated) or parse_timestamp(self.created)


class Relationship(BaseModel):
    """How a related item was reached from the source item."""

    model_config = ConfigDict(frozen=True)

    type: str = "relates"
    direction: str = "unknown"
    depth: int = 1
    primary: bool = False


class ContextRecord(BaseModel):
    """One related item with its merged changes and relevance."""

    model_config = ConfigDict(frozen=True)

    item: RelatedItem
    relationships: list[Relationship] = Field(default_factory=list)
    changes: list[ChangeRecord] = Field(default_factory=list)
    relevance_score: int | None = None
    priority_score: int | None = None

    @property
    def item_id(self) -> str:
        return self.item.item_id

    @property
    def primary_relationship(self) -> Relationship | None:
        for rel in self.relationships:
            if rel.primary:
                return rel
        return self.relationships[0] if self.relationships else None

    @property
    def relationship_type(self) -> str:
        rel = self.primary_relationship
        return rel.type if rel else "relates"

    def has_relationship(self, types: set[str] | frozenset[str]) -> bool:
        return any(rel.type in types for rel in self.relationships)


class ContextSummary(BaseModel):
    """Counts and histograms over the final related records."""

    model_config = ConfigDict(frozen=True)

    total_related: int = 0
    filtered_out: int = 0
    completed_work: int = 0
    active_work: int = 0
    total_changes: int = 0
    merged_changes: int = 0
    average_relevance: int = 0
    status_breakdown: dict[str, int] = Field(default_factory=dict)


class ContextInsights(BaseModel):
    """Human-readable observations about the related work."""

    model_config = ConfigDict(frozen=True)

    overview: str = "No related items found"
    recent_activity: str = "No active work found"
    completed_work: str = "No completed work found"
    implementation_insights: list[str] = Field(default_factory=list)


class ContextMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    generated_at: str
    scope: str | None = None
    fallback_mode: bool | None = None
    filtering_applied: bool = False
    total_related: int = 0
    max_depth_reached: int = 0
    relationship_types: list[str] = Field(default_factory=list)


class AggregateResult(BaseModel):
    """The complete output of one aggregation pass. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    source_item_id: str
    records: list[ContextRecord] = Field(default_factory=list)
    summary: ContextSummary = Field(default_factory=ContextSummary)
    insights: ContextInsights = Field(default_factory=ContextInsights)
    metadata: ContextMetadata

    @property
    def is_empty(self) -> bool:
        return not self.records


class AggregateOptions(BaseModel):
    """Per-request aggregation options. Unset limits fall back to ContextConfig."""

    depth: int = 2
    include_types: list[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE_TYPES))
    repo_scope: str | None = None
    detected_repos: list[str] = Field(default_factory=list)
    max_age_months: int | None = None
    max_related: int | None = None


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: AggregateResult
    expiry: float


class CacheStats(BaseModel):
    total: int = 0
    valid: int = 0
    expired: int = 0
    hit_rate: float = 0.0


class RelationshipSummary(BaseModel):
    """Relationship-type counts over the unified related list."""

    model_config = ConfigDict(frozen=True)

    subtasks: int = 0
    dependencies: int = 0
    related: int = 0
    total_unique: int = 0


class TrimReport(BaseModel):
    """What the token-budget trimmer removed."""

    model_config = ConfigDict(frozen=True)

    budget: int
    initial_units: int
    final_units: int = 0
    original_related: int = 0
    removed_records: int = 0
    removed_images: int = 0
    removed_changes: int = 0
    truncated_fields: int = 0
    stages_applied: list[str] = Field(default_factory=list)


class WorkPackage(BaseModel):
    """The payload handed to the downstream consumer."""

    model_config = ConfigDict(frozen=True)

    primary: RelatedItem
    related: list[ContextRecord] = Field(default_factory=list)
    images: list[ImageAttachment] = Field(default_factory=list)
    context_images: list[ImageAttachment] = Field(default_factory=list)
    summary: ContextSummary = Field(default_factory=ContextSummary)
    relationship_summary: RelationshipSummary = Field(default_factory=RelationshipSummary)
    insights: ContextInsights | None = None
    trim: TrimReport | None = None
    trim_warning: str | None = None


class TokenEstimator:
    """Estimate budget units for payloads."""

    # Rough heuristic: 1 unit ≈ 4 characters of serialized JSON
    CHARS_PER_UNIT = 4

    @classmethod
    def estimate(cls, text: str | None) -> int:
        """Estimate units for a string."""
        if not text:
            return 0
        return math.ceil(len(text) / cls.CHARS_PER_UNIT)

    @classmethod
    def estimate_model(cls, model: BaseModel) -> int:
        """Estimate units for a model by its compact JSON form."""
        return cls.estimate(model.model_dump_json(exclude_none=True))
