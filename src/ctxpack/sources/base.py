"""Collaborator interfaces: relationship resolution and change lookup.

Upstream payloads are loosely typed. Everything that crosses into the
aggregation pipeline goes through `coerce_resolver_response` or
`coerce_change_response` first, which validate into fixed shapes and skip
entries that cannot be repaired.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator

from ctxpack.context.models import ChangeRecord, RelatedItem
from ctxpack.exceptions import MalformedUpstreamDataError

logger = logging.getLogger("ctxpack.sources")


def _validate_each(model: type[BaseModel], entries: Any, what: str) -> list[Any]:
    if not isinstance(entries, list):
        return []
    valid = []
    for entry in entries:
        if isinstance(entry, model):
            valid.append(entry)
            continue
        try:
            valid.append(model.model_validate(entry))
        except ValidationError as e:
            logger.warning("Skipping malformed %s: %s", what, e.errors()[0].get("msg", e))
    return valid


class ResolvedRelationship(BaseModel):
    """One edge of the relationship graph as reported by the resolver."""

    item_id: str = Field(validation_alias=AliasChoices("item_id", "itemId", "issueKey", "key"))
    item: RelatedItem | None = Field(default=None, validation_alias=AliasChoices("item", "issue"))
    relationship_type: str = Field(
        default="relates",
        validation_alias=AliasChoices("relationship_type", "relationshipType", "relationship", "type"),
    )
    direction: str = "unknown"
    depth: int = 1

    @model_validator(mode="before")
    @classmethod
    def _inherit_item_id(cls, data: Any) -> Any:
        # Resolvers often omit the id on the nested item payload
        if not isinstance(data, dict):
            return data
        item_id = next((data[k] for k in ("item_id", "itemId", "issueKey", "key") if data.get(k)), None)
        for key in ("item", "issue"):
            item = data.get(key)
            if isinstance(item, dict) and item_id is not None:
                if not any(item.get(k) for k in ("item_id", "itemId", "key", "jiraKey", "id")):
                    data = {**data, key: {**item, "item_id": item_id}}
        return data

    @model_validator(mode="after")
    def _ensure_item(self) -> ResolvedRelationship:
        if self.item is None:
            self.item = RelatedItem(item_id=self.item_id)
        return self


class ResolvedGraph(BaseModel):
    source_item_id: str = Field(
        default="", validation_alias=AliasChoices("source_item_id", "sourceItemId", "sourceIssue")
    )
    relationships: list[ResolvedRelationship] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("relationships", mode="before")
    @classmethod
    def _drop_malformed(cls, value: Any) -> list[Any]:
        return _validate_each(ResolvedRelationship, value, "relationship")


class ResolverResponse(BaseModel):
    success: bool = False
    data: ResolvedGraph | None = None
    error: str | None = None


class ChangeLookupData(BaseModel):
    changes: list[ChangeRecord] = Field(
        default_factory=list, validation_alias=AliasChoices("changes", "pullRequests")
    )

    @field_validator("changes", mode="before")
    @classmethod
    def _drop_malformed(cls, value: Any) -> list[Any]:
        return _validate_each(ChangeRecord, value, "change record")


class ChangeLookupResponse(BaseModel):
    success: bool = False
    data: ChangeLookupData = Field(default_factory=ChangeLookupData)
    error: str | None = None

    @property
    def changes(self) -> list[ChangeRecord]:
        return self.data.changes if self.success else []


class RelationshipResolver(ABC):
    """Resolves the multi-hop relationship graph of a work item."""

    @abstractmethod
    async def resolve(
        self, item_id: str, depth: int = 2, include_types: list[str] | None = None
    ) -> ResolverResponse | dict[str, Any]:
        """Return the depth-limited, type-filtered relationships of `item_id`."""
        ...


class ChangeLookup(ABC):
    """Looks up code-change summaries for a work item."""

    @abstractmethod
    async def find(
        self, item_id: str, repo_scope: str | None = None
    ) -> ChangeLookupResponse | dict[str, Any] | list[Any]:
        """Return changes for `item_id`, optionally limited to one repository."""
        ...

    @abstractmethod
    async def dev_status(self, item_id: str) -> list[ChangeRecord] | list[dict[str, Any]]:
        """Return change summaries from the tracker's development panel."""
        ...


def coerce_resolver_response(raw: Any) -> ResolverResponse:
    """Validate a resolver payload into a ResolverResponse."""
    if isinstance(raw, ResolverResponse):
        return raw
    if not isinstance(raw, dict):
        raise MalformedUpstreamDataError(f"Unexpected resolver payload: {type(raw).__name__}")
    try:
        return ResolverResponse.model_validate(raw)
    except ValidationError as e:
        raise MalformedUpstreamDataError(f"Invalid resolver payload: {e}") from e


def coerce_change_response(raw: Any) -> ChangeLookupResponse:
    """Validate a change lookup payload. A bare list is taken as the change list."""
    if isinstance(raw, ChangeLookupResponse):
        return raw
    if isinstance(raw, list):
        return ChangeLookupResponse(success=True, data=ChangeLookupData(changes=raw))
    if not isinstance(raw, dict):
        return ChangeLookupResponse(success=False, error="empty change lookup payload")
    try:
        return ChangeLookupResponse.model_validate(raw)
    except ValidationError as e:
        raise MalformedUpstreamDataError(f"Invalid change lookup payload: {e}") from e


def coerce_changes(raw: Any) -> list[ChangeRecord]:
    """Validate a dev-status style list of change summaries."""
    return _validate_each(ChangeRecord, raw, "change record")


def repository_name(repository: str) -> str:
    """`workspace/repo` -> `repo`."""
    return repository.split("/", 1)[1] if "/" in repository else repository
