"""Shared test fixtures for ctxpack."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from ctxpack.context.models import (
    ChangeRecord,
    ContextRecord,
    RelatedItem,
    Relationship,
)
from ctxpack.sources.base import ChangeLookup, RelationshipResolver

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


class StubResolver(RelationshipResolver):
    """Resolver returning a fixed list of raw relationship payloads."""

    def __init__(
        self,
        relationships: list[dict[str, Any]] | None = None,
        error: Exception | None = None,
        fail_times: int | None = None,
        payload: Any = None,
        delay: float = 0.0,
    ) -> None:
        self.relationships = relationships or []
        self.error = error
        self.fail_times = fail_times
        self.payload = payload
        self.delay = delay
        self.calls = 0

    async def resolve(self, item_id, depth=2, include_types=None):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None and (self.fail_times is None or self.calls <= self.fail_times):
            raise self.error
        if self.payload is not None:
            return self.payload
        return {
            "success": True,
            "data": {"sourceItemId": item_id, "relationships": self.relationships},
        }


class StubChangeLookup(ChangeLookup):
    """Change lookup over raw payloads, with optional per-item failures."""

    def __init__(
        self,
        changes: dict[str, list[dict[str, Any]]] | None = None,
        failing: set[str] | None = None,
        fail_all: bool = False,
        dev: dict[str, list[dict[str, Any]]] | None = None,
        dev_error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.changes = changes or {}
        self.failing = failing or set()
        self.fail_all = fail_all
        self.dev = dev or {}
        self.dev_error = dev_error
        self.delay = delay
        self.calls: list[tuple[str, str | None]] = []
        self.in_flight = 0
        self.peak = 0

    async def find(self, item_id, repo_scope=None):
        self.calls.append((item_id, repo_scope))
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_all or item_id in self.failing:
                raise ConnectionError(f"code host unreachable for {item_id}")
            return {"success": True, "data": {"pullRequests": self.changes.get(item_id, [])}}
        finally:
            self.in_flight -= 1

    async def dev_status(self, item_id):
        if self.dev_error is not None:
            raise self.dev_error
        return self.dev.get(item_id, [])


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def stub_resolver():
    return StubResolver


@pytest.fixture
def stub_lookup():
    return StubChangeLookup


@pytest.fixture
def make_item():
    def factory(item_id: str, status: str = "To Do", days_ago: int | None = 10, **fields) -> RelatedItem:
        data: dict[str, Any] = {"item_id": item_id, "status": status, "summary": f"Summary of {item_id}"}
        if days_ago is not None:
            data["updated"] = iso(NOW - timedelta(days=days_ago))
        data.update(fields)
        return RelatedItem.model_validate(data)

    return factory


@pytest.fixture
def make_change():
    def factory(change_id: int | str, status: str = "MERGED", days_ago: int | None = 10, **fields) -> ChangeRecord:
        data: dict[str, Any] = {"id": change_id, "status": status, "title": f"Change {change_id}"}
        if days_ago is not None:
            data["merged_date"] = iso(NOW - timedelta(days=days_ago))
        data.update(fields)
        return ChangeRecord.model_validate(data)

    return factory


@pytest.fixture
def make_record(make_item):
    def factory(
        item_id: str,
        relationship: str = "relates",
        score: int | None = None,
        status: str = "To Do",
        changes: list[ChangeRecord] | None = None,
        **item_fields,
    ) -> ContextRecord:
        return ContextRecord(
            item=make_item(item_id, status=status, **item_fields),
            relationships=[Relationship(type=relationship, primary=True)],
            changes=changes or [],
            relevance_score=score,
        )

    return factory


def relationship_payload(
    item_id: str, relationship: str = "relates", status: str = "To Do", days_ago: int = 10, depth: int = 1
) -> dict[str, Any]:
    """A camelCase relationship entry as an upstream resolver would send it."""
    return {
        "issueKey": item_id,
        "relationshipType": relationship,
        "direction": "outward",
        "depth": depth,
        "issue": {
            "status": status,
            "summary": f"Summary of {item_id}",
            "updated": iso(NOW - timedelta(days=days_ago)),
        },
    }


@pytest.fixture
def rel():
    return relationship_payload


def _workspace_data() -> dict[str, Any]:
    # Relative to the real clock: the CLI and packager do not take one
    today = datetime.now(timezone.utc)
    recent = iso(today - timedelta(days=5))
    old = iso(today - timedelta(days=5 * 365))
    return {
        "items": [
            {"key": "PROJ-1", "status": "In Progress", "summary": "Checkout redesign",
             "details": "Rebuild the checkout flow.", "updated": recent},
            {"key": "PROJ-2", "status": "In Progress", "summary": "Payments epic", "updated": old},
            {"key": "PROJ-3", "status": "Done", "summary": "Card form",
             "updated": recent,
             "attachmentImages": [{"filename": "mock.png", "mimeType": "image/png", "base64": "aGVsbG8="}]},
            {"key": "PROJ-4", "status": "In Progress", "summary": "Address lookup", "updated": recent},
            {"key": "PROJ-5", "status": "To Do", "summary": "Legacy tax rules", "updated": old},
        ],
        "links": [
            {"source": "PROJ-1", "target": "PROJ-2", "type": "parent"},
            {"source": "PROJ-1", "target": "PROJ-3", "type": "subtask"},
            {"source": "PROJ-1", "target": "PROJ-4", "type": "relates"},
            {"source": "PROJ-4", "target": "PROJ-5", "type": "dependency"},
        ],
        "changes": {
            "PROJ-1": [{"id": 1, "state": "OPEN", "title": "WIP checkout", "repository": "acme/api",
                        "updatedDate": recent}],
            "PROJ-3": [{"id": 7, "state": "MERGED", "title": "Card form", "repository": "acme/api",
                        "mergedDate": recent, "files": [{"filename": "form.tsx"}]}],
            "PROJ-4": [{"id": 9, "state": "MERGED", "title": "Lookup client", "repository": "acme/web",
                        "mergedDate": recent, "files": [{"filename": "lookup.py"}]}],
        },
    }


@pytest.fixture
def workspace_file(tmp_path: Path) -> Path:
    """A small workspace: PROJ-1 with a parent, a subtask and a related item."""
    path = tmp_path / "workspace.json"
    path.write_text(json.dumps(_workspace_data(), indent=2))
    return path


@pytest.fixture
def ctx_project(tmp_path: Path, workspace_file: Path) -> Path:
    """A directory initialized for ctxpack with the sample workspace."""
    (tmp_path / ".ctxpack").mkdir()
    return tmp_path
